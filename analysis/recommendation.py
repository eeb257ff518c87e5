"""Right-sizing recommendation engine.

Pure, synchronous calculations: usage statistics in, request/limit
recommendation plus warnings out. No I/O, no shared state, safe to call
concurrently for any number of (deployment, dimension) pairs.

All arithmetic is done in ``Decimal`` so repeated ceiling rounds never
drift.
"""
import math
from dataclasses import dataclass, field, replace
from decimal import Decimal, ROUND_CEILING
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from normalize import math as m


# =============================================================================
# Errors
# =============================================================================
class SizingError(Exception):
    """Base class for recommendation engine validation failures"""
    pass


class InvalidStatistics(SizingError):
    """Usage statistics are empty, negative, non-finite or out of order.

    Recoverable per deployment: skip it and continue the batch.
    """
    pass


class InvalidConfiguration(SizingError):
    """A sizing setting makes a correct recommendation impossible.

    This is a caller defect and should abort the run.
    """
    pass


class InvalidInput(SizingError):
    """Bad baseline passed to compare_to_existing"""
    pass


# =============================================================================
# Data model
# =============================================================================
class ResourceDimension(Enum):
    CPU = "cpu"
    MEMORY = "memory"

    @property
    def unit(self) -> str:
        return "m" if self is ResourceDimension.CPU else "Mi"

    @property
    def compressible(self) -> bool:
        # CPU is throttled at the limit, memory is OOMKilled
        return self is ResourceDimension.CPU


class WarningKind(Enum):
    NEAR_LIMIT_SATURATION = "near_limit_saturation"
    UNDER_UTILIZED = "under_utilized"
    INCREASE_NEEDED = "increase_needed"


def _dec(value: Any) -> Decimal:
    """Exact Decimal from int/float/str/Decimal. Floats go through repr."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("boolean is not a numeric value")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value))


def _num(value: Decimal) -> Any:
    """Decimal to int when integral, float otherwise (for JSON output)."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


@dataclass(frozen=True)
class UsageSample:
    entity: str
    namespace: str
    dimension: ResourceDimension
    timestamp: float
    value: float


@dataclass(frozen=True)
class UsageStatistics:
    """P50 / configured percentile / P99 / Max in the dimension's native unit
    (millicores for CPU, MiB for memory).

    ``rank`` is the percentile the ``percentile`` field was computed for.
    """
    p50: Any
    percentile: Any
    p99: Any
    max: Any
    rank: float = 95.0
    sample_count: Optional[int] = None

    @classmethod
    def from_samples(cls, samples: Iterable[Any], rank: float = 95.0) -> "UsageStatistics":
        """Build statistics from raw values (or UsageSample objects).

        Raises InvalidStatistics if the sequence is empty or holds a
        negative or non-finite value.
        """
        values = []
        for s in samples:
            v = s.value if isinstance(s, UsageSample) else s
            if v is None:
                raise InvalidStatistics("sample value is missing")
            fv = float(v)
            if not math.isfinite(fv):
                raise InvalidStatistics(f"sample value is not finite: {v}")
            if fv < 0:
                raise InvalidStatistics(f"sample value is negative: {v}")
            values.append(fv)
        if not values:
            raise InvalidStatistics("no usage samples in lookback window")
        if not (50 < rank < 100):
            raise InvalidConfiguration(f"percentile must be in (50, 100), got {rank}")
        return cls(
            p50=m.percentile(values, 50.0),
            percentile=m.percentile(values, rank),
            p99=m.percentile(values, 99.0),
            max=m.p100(values),
            rank=rank,
            sample_count=len(values),
        )

    def as_decimals(self) -> Tuple[Decimal, Decimal, Decimal, Decimal]:
        """Validate and return (p50, percentile, p99, max) as Decimals."""
        out = []
        for name in ("p50", "percentile", "p99", "max"):
            raw = getattr(self, name)
            if raw is None:
                raise InvalidStatistics(f"{name} is missing")
            try:
                d = _dec(raw)
            except (ArithmeticError, TypeError, ValueError):
                raise InvalidStatistics(f"{name} is not numeric: {raw!r}")
            if not d.is_finite():
                raise InvalidStatistics(f"{name} is not finite: {raw}")
            if d < 0:
                raise InvalidStatistics(f"{name} is negative: {raw}")
            out.append(d)
        p50, pxx, p99, mx = out
        if p50 > pxx:
            raise InvalidStatistics(f"p50 ({_fmt(p50)}) exceeds p{self.rank:g} ({_fmt(pxx)})")
        if pxx > mx:
            raise InvalidStatistics(f"p{self.rank:g} ({_fmt(pxx)}) exceeds max ({_fmt(mx)})")
        if p99 > mx:
            raise InvalidStatistics(f"p99 ({_fmt(p99)}) exceeds max ({_fmt(mx)})")
        if p50 > p99:
            raise InvalidStatistics(f"p50 ({_fmt(p50)}) exceeds p99 ({_fmt(p99)})")
        return p50, pxx, p99, mx

    def to_dict(self) -> Dict[str, Any]:
        return {
            "p50": _num(_dec(self.p50)),
            "percentile": _num(_dec(self.percentile)),
            "p99": _num(_dec(self.p99)),
            "max": _num(_dec(self.max)),
            "percentile_rank": self.rank,
            "sample_count": self.sample_count,
        }


def _fmt(value: Decimal) -> str:
    return format(value.normalize(), "f")


@dataclass(frozen=True)
class SizingConfig:
    """Multipliers, rounding steps and warning thresholds for one dimension."""
    request_multiplier: Any
    limit_multiplier: Any
    request_step: Any
    limit_step: Any
    percentile: float = 95.0
    saturation_threshold_fraction: Any = "0.9"
    under_utilized_threshold: Any = None

    @classmethod
    def for_dimension(cls, dimension: ResourceDimension, **overrides) -> "SizingConfig":
        """Defaults for ``dimension`` with keyword overrides applied.

        Unknown keys raise InvalidConfiguration.
        """
        base = _DEFAULTS[dimension]
        unknown = set(overrides) - set(base.__dataclass_fields__)
        if unknown:
            raise InvalidConfiguration(f"unknown sizing option(s): {', '.join(sorted(unknown))}")
        return replace(base, **{k: v for k, v in overrides.items() if v is not None or k == "under_utilized_threshold"})

    def validate(self) -> None:
        """Raise InvalidConfiguration unless every setting is usable."""
        try:
            percentile = float(self.percentile)
        except (TypeError, ValueError):
            raise InvalidConfiguration(f"percentile is not numeric: {self.percentile!r}")
        if not (50 < percentile < 100):
            raise InvalidConfiguration(f"percentile must be in (50, 100), got {self.percentile}")
        for name in ("request_multiplier", "limit_multiplier", "saturation_threshold_fraction"):
            value = self._decimal(name)
            if value <= 0:
                raise InvalidConfiguration(f"{name} must be positive, got {getattr(self, name)}")
        for name in ("request_step", "limit_step"):
            if self._decimal(name) <= 0:
                raise InvalidConfiguration(f"{name} must be positive, got {getattr(self, name)}")
        if self.under_utilized_threshold is not None and self._decimal("under_utilized_threshold") < 0:
            raise InvalidConfiguration(
                f"under_utilized_threshold must not be negative, got {self.under_utilized_threshold}"
            )

    def _decimal(self, name: str) -> Decimal:
        raw = getattr(self, name)
        try:
            d = _dec(raw)
        except (ArithmeticError, TypeError, ValueError):
            raise InvalidConfiguration(f"{name} is not numeric: {raw!r}")
        if not d.is_finite():
            raise InvalidConfiguration(f"{name} is not finite: {raw}")
        return d

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_multiplier": float(_dec(self.request_multiplier)),
            "limit_multiplier": float(_dec(self.limit_multiplier)),
            "request_step": _num(_dec(self.request_step)),
            "limit_step": _num(_dec(self.limit_step)),
            "percentile": self.percentile,
            "saturation_threshold_fraction": float(_dec(self.saturation_threshold_fraction)),
            "under_utilized_threshold": (
                None if self.under_utilized_threshold is None
                else _num(_dec(self.under_utilized_threshold))
            ),
        }


_DEFAULTS: Dict[ResourceDimension, SizingConfig] = {
    ResourceDimension.CPU: SizingConfig(
        request_multiplier="1.2",
        limit_multiplier="1.5",
        request_step=50,
        limit_step=100,
        under_utilized_threshold=50,
    ),
    ResourceDimension.MEMORY: SizingConfig(
        request_multiplier="1.3",
        limit_multiplier="1.3",
        request_step=64,
        limit_step=128,
    ),
}


@dataclass(frozen=True)
class SizingWarning:
    kind: WarningKind
    metric: str
    value: Decimal
    threshold: Decimal

    @property
    def margin(self) -> Decimal:
        """Signed distance of the metric from its threshold."""
        return self.value - self.threshold

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "metric": self.metric,
            "value": _num(self.value),
            "threshold": _num(self.threshold),
            "margin": _num(self.margin),
        }


@dataclass(frozen=True)
class Recommendation:
    dimension: ResourceDimension
    request_value: int
    limit_value: int
    warnings: Tuple[SizingWarning, ...] = field(default_factory=tuple)

    @property
    def unit(self) -> str:
        return self.dimension.unit

    def has_warning(self, kind: WarningKind) -> bool:
        return any(w.kind is kind for w in self.warnings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimension": self.dimension.value,
            "unit": self.unit,
            "request": self.request_value,
            "limit": self.limit_value,
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass(frozen=True)
class DeltaReport:
    dimension: ResourceDimension
    current_request: Decimal
    recommended_request: int
    direction: str
    percent: Decimal
    warnings: Tuple[SizingWarning, ...] = field(default_factory=tuple)

    @property
    def is_reduction(self) -> bool:
        return self.direction == "reduction"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_request": _num(self.current_request),
            "recommended_request": self.recommended_request,
            "direction": self.direction,
            "percent": float(self.percent),
            "warnings": [w.to_dict() for w in self.warnings],
        }


# =============================================================================
# Operations
# =============================================================================
def ceil_to_multiple(x: Any, step: Any) -> Decimal:
    """Smallest multiple of ``step`` that is >= ``x``.

    Raises InvalidConfiguration for a non-numeric or non-positive step and
    InvalidInput for a non-numeric, non-finite or negative ``x``.
    """
    try:
        s = _dec(step)
    except (ArithmeticError, TypeError, ValueError):
        raise InvalidConfiguration(f"rounding step is not numeric: {step!r}")
    if not s.is_finite() or s <= 0:
        raise InvalidConfiguration(f"rounding step must be positive, got {step}")
    try:
        d = _dec(x)
    except (ArithmeticError, TypeError, ValueError):
        raise InvalidInput(f"value to round is not numeric: {x!r}")
    if not d.is_finite() or d < 0:
        raise InvalidInput(f"value to round must be finite and non-negative, got {x}")
    q = (d / s).to_integral_value(rounding=ROUND_CEILING)
    return q * s


def compute_recommendation(stats: UsageStatistics, dimension: ResourceDimension,
                           config: Optional[SizingConfig] = None) -> Recommendation:
    """Suggested request/limit for one dimension of one deployment.

    request = ceil(P50 * request_multiplier, request_step)
    limit   = ceil(Pxx * limit_multiplier, limit_step)

    Raises InvalidConfiguration or InvalidStatistics; never returns a
    partial result.
    """
    if config is None:
        config = SizingConfig.for_dimension(dimension)
    config.validate()
    p50, pxx, p99, _mx = stats.as_decimals()
    if float(stats.rank) != float(config.percentile):
        raise InvalidStatistics(
            f"statistics were computed for p{stats.rank:g}, configuration expects p{float(config.percentile):g}"
        )

    request_step = config._decimal("request_step")
    limit_step = config._decimal("limit_step")

    # an idle workload still gets one step so the values stay positive
    request = max(ceil_to_multiple(p50 * config._decimal("request_multiplier"), request_step), request_step)
    limit = max(ceil_to_multiple(pxx * config._decimal("limit_multiplier"), limit_step), limit_step)

    if limit < request:
        raise InvalidConfiguration(
            f"{dimension.value} limit {_fmt(limit)}{dimension.unit} is below request "
            f"{_fmt(request)}{dimension.unit}; check multipliers and rounding steps"
        )
    if request != request.to_integral_value() or limit != limit.to_integral_value():
        raise InvalidConfiguration(
            f"{dimension.value} rounding steps must produce whole {dimension.unit} values"
        )

    warnings = []
    saturation_at = limit * config._decimal("saturation_threshold_fraction")
    if p99 > saturation_at:
        warnings.append(SizingWarning(WarningKind.NEAR_LIMIT_SATURATION, "p99", p99, saturation_at))
    if config.under_utilized_threshold is not None:
        floor = config._decimal("under_utilized_threshold")
        if p50 < floor:
            warnings.append(SizingWarning(WarningKind.UNDER_UTILIZED, "p50", p50, floor))

    return Recommendation(
        dimension=dimension,
        request_value=int(request),
        limit_value=int(limit),
        warnings=tuple(warnings),
    )


def compare_to_existing(recommendation: Recommendation, current_request: Any) -> DeltaReport:
    """Percentage change from the currently configured request.

    A deployment with no request set has nothing to compare against:
    callers should skip the comparison rather than pass zero.
    """
    if current_request is None:
        raise InvalidInput("current request is not set")
    try:
        current = _dec(current_request)
    except (ArithmeticError, TypeError, ValueError):
        raise InvalidInput(f"current request is not numeric: {current_request!r}")
    if not current.is_finite() or current <= 0:
        raise InvalidInput(f"current request must be positive, got {current_request}")

    recommended = Decimal(recommendation.request_value)
    if current > recommended:
        return DeltaReport(
            dimension=recommendation.dimension,
            current_request=current,
            recommended_request=recommendation.request_value,
            direction="reduction",
            percent=(current - recommended) / current * 100,
        )

    percent = (recommended - current) / current * 100
    warnings: Tuple[SizingWarning, ...] = ()
    if percent > 0:
        warnings = (SizingWarning(WarningKind.INCREASE_NEEDED, "request", recommended, current),)
    return DeltaReport(
        dimension=recommendation.dimension,
        current_request=current,
        recommended_request=recommendation.request_value,
        direction="increase",
        percent=percent,
        warnings=warnings,
    )
