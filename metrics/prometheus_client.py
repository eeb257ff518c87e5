import logging
import time
from typing import List, Tuple, Dict, Any, Optional

import requests

from config import (
    PROMETHEUS_URL, PROMETHEUS_TIMEOUT_SECONDS, PROMETHEUS_RETRY_COUNT,
    PROMETHEUS_RETRY_BACKOFF_BASE, PROMETHEUS_STEP,
)
from analysis.recommendation import (
    InvalidStatistics, ResourceDimension, UsageSample, UsageStatistics,
)
from normalize.series import values_from_series, cores_to_millicores, bytes_to_mib

logger = logging.getLogger(__name__)


class PrometheusError(Exception):
    pass


class PrometheusConnectionError(PrometheusError):
    """Prometheus could not be reached after all retries"""
    pass


class PrometheusQueryError(PrometheusError):
    """Prometheus answered but rejected the query"""
    pass


def _now() -> float:
    return time.time()


def _get(path: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
    """GET against PROMETHEUS_URL with retry and exponential backoff on
    connection failures. HTTP error statuses are not retried."""
    url = f"{PROMETHEUS_URL.rstrip('/')}{path}"
    attempts = max(PROMETHEUS_RETRY_COUNT, 1)
    last_error: Optional[Exception] = None
    for attempt in range(attempts):
        try:
            return requests.get(url, params=params, timeout=PROMETHEUS_TIMEOUT_SECONDS)
        except (requests.ConnectionError, requests.Timeout) as e:
            last_error = e
            if attempt + 1 < attempts:
                delay = PROMETHEUS_RETRY_BACKOFF_BASE * (2 ** attempt)
                logger.debug(f"Prometheus request failed ({e}), retrying in {delay}s")
                time.sleep(delay)
        except requests.RequestException as e:
            raise PrometheusConnectionError(f"request failed: {e}")
    raise PrometheusConnectionError(f"request failed after {attempts} attempt(s): {last_error}")


def _check_payload(r: requests.Response) -> Dict[str, Any]:
    if r.status_code != 200:
        raise PrometheusQueryError(f"prometheus returned status {r.status_code}: {r.text}")
    try:
        data = r.json()
    except ValueError as e:
        raise PrometheusQueryError(f"prometheus returned invalid JSON: {e}")
    if data.get("status") != "success":
        raise PrometheusQueryError(f"prometheus error: {data}")
    return data


def check_health() -> bool:
    """True when `/-/healthy` answers 200."""
    try:
        r = _get("/-/healthy")
    except PrometheusError as e:
        logger.debug(f"health check failed: {e}")
        return False
    return r.status_code == 200


def query_instant(promql: str) -> List[Dict[str, Any]]:
    """Query `/api/v1/query` and return `data.result`."""
    r = _get("/api/v1/query", params={"query": promql})
    return _check_payload(r).get("data", {}).get("result", [])


def query_range(promql: str, start_ts: Optional[float] = None, end_ts: Optional[float] = None,
                step: str = "15s", minutes: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    Query Prometheus `/api/v1/query_range` and return `data.result`.
    Default window is the last `minutes` (60 when not given).
    """
    if end_ts is None:
        end_ts = _now()
    if start_ts is None:
        start_ts = end_ts - int((minutes if minutes is not None else 60) * 60)

    params = {
        "query": promql,
        "start": str(start_ts),
        "end": str(end_ts),
        "step": step,
    }
    r = _get("/api/v1/query_range", params=params)
    return _check_payload(r).get("data", {}).get("result", [])


def parse_matrix_values(matrix: Dict[str, Any]) -> List[Tuple[float, float]]:
    """
    Parse a Prometheus matrix result (single timeseries) into list of (timestamp, value).
    Expects `matrix` to be one element of `data['result']` as returned from query_range.
    """
    values = matrix.get("values") or []
    parsed: List[Tuple[float, float]] = []
    for ts_str, val_str in values:
        try:
            ts = float(ts_str)
            val = float(val_str)
        except Exception:
            continue
        parsed.append((ts, val))
    return parsed


def instant_value(result: List[Dict[str, Any]]) -> Optional[float]:
    """First sample value of an instant vector, or None when empty / NaN."""
    if not result:
        return None
    value = result[0].get("value") or []
    if len(value) < 2:
        return None
    try:
        v = float(value[1])
    except (TypeError, ValueError):
        return None
    if v != v:
        return None
    return v


# =============================================================================
# Usage queries
# =============================================================================
_REGEX_SPECIAL = set('\\.+*?()[]{}|^$')


def pod_regex(deployment: str) -> str:
    """PromQL regex for the pods of a deployment's ReplicaSets.

    Pods are named `<deployment>-<pod-template-hash>-<suffix>`, so a
    sibling such as `api-gateway-...` does not match `api`. The result is
    escaped for use inside a double-quoted PromQL string.
    """
    escaped = ''.join('\\' + c if c in _REGEX_SPECIAL else c for c in deployment)
    return escaped.replace('\\', '\\\\') + '-[a-z0-9]+-[a-z0-9]+'


def usage_expression(deployment: str, namespace: str, dimension: ResourceDimension) -> str:
    """Per-pod usage of a deployment: the busiest pod at each evaluation.

    Summed over the containers of a pod, never across pods: the same basis
    as `discovery.current_requests`.
    """
    selector = (
        f'namespace="{namespace}",pod=~"{pod_regex(deployment)}",container!="",container!="POD"'
    )
    if dimension is ResourceDimension.CPU:
        return f'max(sum by (pod) (rate(container_cpu_usage_seconds_total{{{selector}}}[5m])))'
    return f'max(sum by (pod) (container_memory_working_set_bytes{{{selector}}}))'


def statistics_queries(deployment: str, namespace: str, dimension: ResourceDimension,
                       lookback_days: int, percentile: float) -> Dict[str, str]:
    expr = usage_expression(deployment, namespace, dimension)
    window = f"[{lookback_days}d:{PROMETHEUS_STEP}]"
    return {
        "p50": f"quantile_over_time(0.5, {expr}{window})",
        "percentile": f"quantile_over_time({percentile / 100:g}, {expr}{window})",
        "p99": f"quantile_over_time(0.99, {expr}{window})",
        "max": f"max_over_time({expr}{window})",
    }


def to_native_unit(value: Optional[float], dimension: ResourceDimension):
    """Cores -> millicores, bytes -> MiB."""
    if dimension is ResourceDimension.CPU:
        return cores_to_millicores(value)
    return bytes_to_mib(value)


def fetch_statistics(deployment: str, namespace: str, dimension: ResourceDimension,
                     lookback_days: int, percentile: float) -> UsageStatistics:
    """P50 / Pxx / P99 / Max over the lookback window, computed by Prometheus.

    Raises InvalidStatistics when Prometheus has no usage data for the
    deployment and PrometheusError on transport/query failure.
    """
    queries = statistics_queries(deployment, namespace, dimension, lookback_days, percentile)
    values: Dict[str, Any] = {}
    for key, promql in queries.items():
        raw = instant_value(query_instant(promql))
        if raw is None:
            raise InvalidStatistics(
                f"no {dimension.value} usage data for {namespace}/{deployment} ({key})"
            )
        values[key] = to_native_unit(raw, dimension)
    logger.debug(f"{namespace}/{deployment} {dimension.value} statistics: {values}")
    return UsageStatistics(rank=percentile, **values)


def fetch_samples(deployment: str, namespace: str, dimension: ResourceDimension,
                  lookback_days: int) -> List[UsageSample]:
    """Raw deployment usage samples over the lookback window (native unit)."""
    expr = usage_expression(deployment, namespace, dimension)
    end_ts = _now()
    result = query_range(expr, start_ts=end_ts - lookback_days * 86400, end_ts=end_ts,
                         step=PROMETHEUS_STEP)
    samples: List[UsageSample] = []
    for res in result:
        series = parse_matrix_values(res)
        for ts, v in series:
            if not values_from_series([(ts, v)]):
                continue
            samples.append(UsageSample(
                entity=deployment,
                namespace=namespace,
                dimension=dimension,
                timestamp=ts,
                value=float(to_native_unit(v, dimension)),
            ))
    return samples
