from typing import List


def percentile(samples: List[float], percent: float) -> float:
    """Linear-interpolated percentile (phi * (n - 1) rank), the same
    definition Prometheus uses for `quantile_over_time`."""
    if not samples:
        raise ValueError("samples must not be empty")
    if not (0 <= percent <= 100):
        raise ValueError("percent must be between 0 and 100")
    s = sorted(samples)
    n = len(s)
    if n == 1:
        return float(s[0])
    # rank using linear interpolation (0-based index)
    idx = (percent / 100.0) * (n - 1)
    lower = int(idx // 1)
    upper = int(idx // 1 + (0 if idx.is_integer() else 1))
    if upper >= n:
        return float(s[-1])
    if lower == upper:
        return float(s[lower])
    frac = idx - lower
    return float(min(s[lower] + frac * (s[upper] - s[lower]), s[upper]))


def p100(samples: List[float]) -> float:
    return percentile(samples, 100.0)
