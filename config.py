import os
import re
import logging
import sys
from typing import Optional, List, Dict, Any
from urllib.parse import urlparse

import yaml


# =============================================================================
# Logging Configuration
# =============================================================================
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT: str = os.getenv(
    "LOG_FORMAT",
    "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)


def setup_logging():
    """Configure application-wide logging.

    Logs go to stderr; stdout carries the report.
    """
    level = getattr(logging, LOG_LEVEL, logging.INFO)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)]
    )
    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


# =============================================================================
# Prometheus Configuration
# =============================================================================
PROMETHEUS_URL: str = os.getenv("PROMETHEUS_URL", "http://prometheus-server.monitoring.svc:9090")
PROMETHEUS_TIMEOUT_SECONDS: int = int(os.getenv("PROMETHEUS_TIMEOUT_SECONDS", "30"))
PROMETHEUS_RETRY_COUNT: int = int(os.getenv("PROMETHEUS_RETRY_COUNT", "3"))
PROMETHEUS_RETRY_BACKOFF_BASE: int = int(os.getenv("PROMETHEUS_RETRY_BACKOFF_BASE", "1"))
# Subquery resolution for quantile_over_time / range queries
PROMETHEUS_STEP: str = os.getenv("PROMETHEUS_STEP", "5m")

# =============================================================================
# Analysis Scope
# =============================================================================
NAMESPACE: str = os.getenv("NAMESPACE", "production")
LOOKBACK_DAYS: int = int(os.getenv("LOOKBACK_DAYS", "30"))
PERCENTILE: float = float(os.getenv("PERCENTILE", "95"))
# "quantiles": Prometheus computes P50/Pxx/P99/Max server-side
# "samples": fetch the raw range and compute percentiles locally
STATISTICS_SOURCE: str = os.getenv("STATISTICS_SOURCE", "quantiles")
MIN_OBSERVATION_WINDOW_MINUTES: int = int(os.getenv("MIN_OBSERVATION_WINDOW_MINUTES", "60"))
EXCLUDED_NAMESPACES: str = os.getenv("EXCLUDED_NAMESPACES", "kube-system,kube-public")
ANALYSIS_WORKERS: int = int(os.getenv("ANALYSIS_WORKERS", "4"))

# Optional YAML file with per-dimension sizing overrides:
#   cpu:
#     request_multiplier: 1.25
#     limit_step: 200
#   memory:
#     limit_multiplier: 1.5
SIZING_CONFIG_PATH: Optional[str] = os.getenv("SIZING_CONFIG_PATH")

# Output directory for {namespace}_recommendations.json
OUTPUT_DIR: str = os.getenv("OUTPUT_DIR", "output")


def get_recommendations_output_path(namespace: str, output_dir: Optional[str] = None) -> str:
    """Namespace-specific output path: {namespace}_recommendations.json"""
    return os.path.join(output_dir or OUTPUT_DIR, f"{namespace}_recommendations.json")


def excluded_namespaces() -> List[str]:
    return [s.strip() for s in (EXCLUDED_NAMESPACES or "").split(',') if s.strip()]


def load_sizing_overrides(path: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
    """Load per-dimension overrides from YAML.

    Returns {"cpu": {...}, "memory": {...}}; missing file path -> empty
    sections. Raises ConfigValidationError on unreadable or malformed YAML.
    """
    path = path if path is not None else SIZING_CONFIG_PATH
    overrides: Dict[str, Dict[str, Any]] = {"cpu": {}, "memory": {}}
    if not path:
        return overrides
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigValidationError(f"cannot load sizing config {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigValidationError(f"sizing config {path} must be a mapping")
    for key, section in data.items():
        if key not in overrides:
            raise ConfigValidationError(f"sizing config {path}: unknown section '{key}'")
        if section is None:
            continue
        if not isinstance(section, dict):
            raise ConfigValidationError(f"sizing config {path}: section '{key}' must be a mapping")
        overrides[key] = dict(section)
    return overrides


__all__ = [
    "PROMETHEUS_URL",
    "PROMETHEUS_TIMEOUT_SECONDS",
    "PROMETHEUS_RETRY_COUNT",
    "PROMETHEUS_RETRY_BACKOFF_BASE",
    "PROMETHEUS_STEP",
    "NAMESPACE",
    "LOOKBACK_DAYS",
    "PERCENTILE",
    "STATISTICS_SOURCE",
    "MIN_OBSERVATION_WINDOW_MINUTES",
    "EXCLUDED_NAMESPACES",
    "ANALYSIS_WORKERS",
    "SIZING_CONFIG_PATH",
    "OUTPUT_DIR",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "setup_logging",
    "validate_config",
    "get_recommendations_output_path",
    "excluded_namespaces",
    "load_sizing_overrides",
]


# =============================================================================
# Configuration Validation
# =============================================================================
class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""
    pass


def _validate_positive_int(name: str, value: int) -> None:
    if value <= 0:
        raise ConfigValidationError(f"{name} must be positive, got {value}")


def _validate_url(name: str, value: str) -> None:
    try:
        result = urlparse(value)
        if not all([result.scheme, result.netloc]):
            raise ValueError("Missing scheme or netloc")
        if result.scheme not in ('http', 'https'):
            raise ValueError(f"Invalid scheme: {result.scheme}")
    except Exception as e:
        raise ConfigValidationError(f"{name} is not a valid URL: {value} ({e})")


def _validate_percentile(value: float) -> None:
    if not (50 < value < 100):
        raise ConfigValidationError(f"PERCENTILE must be between 50 and 100 (exclusive), got {value}")


def _validate_statistics_source(value: str) -> None:
    if value not in ('quantiles', 'samples'):
        raise ConfigValidationError(
            f"STATISTICS_SOURCE must be 'quantiles' or 'samples', got '{value}'"
        )


def _validate_regex(name: str, value: Optional[str]) -> None:
    if value is None:
        return
    try:
        re.compile(value)
    except re.error as e:
        raise ConfigValidationError(f"{name} is not a valid regex: {value} ({e})")


def validate_config(prometheus_url: Optional[str] = None,
                    lookback_days: Optional[int] = None,
                    percentile: Optional[float] = None,
                    deployment_regex: Optional[str] = None) -> None:
    """Validate configuration values on startup.

    Explicit arguments (CLI flags) take precedence over the module values.

    Raises:
        ConfigValidationError: If any configuration value is invalid
    """
    errors = []
    checks = [
        lambda: _validate_positive_int("PROMETHEUS_TIMEOUT_SECONDS", PROMETHEUS_TIMEOUT_SECONDS),
        lambda: _validate_positive_int("PROMETHEUS_RETRY_COUNT", PROMETHEUS_RETRY_COUNT),
        lambda: _validate_positive_int("ANALYSIS_WORKERS", ANALYSIS_WORKERS),
        lambda: _validate_positive_int(
            "LOOKBACK_DAYS", lookback_days if lookback_days is not None else LOOKBACK_DAYS
        ),
        lambda: _validate_percentile(percentile if percentile is not None else PERCENTILE),
        lambda: _validate_url("PROMETHEUS_URL", prometheus_url or PROMETHEUS_URL),
        lambda: _validate_statistics_source(STATISTICS_SOURCE),
        lambda: _validate_regex("--deployment-regex", deployment_regex),
    ]
    for check in checks:
        try:
            check()
        except ConfigValidationError as e:
            errors.append(str(e))

    if errors:
        raise ConfigValidationError(
            "Configuration validation failed:\n  - " + "\n  - ".join(errors)
        )
