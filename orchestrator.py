"""Orchestrator: health check -> discovery -> statistics -> recommendations ->
render -> atomic write.
Read-only: Prometheus is the source of truth and nothing is applied to the
cluster. All defaults come from config.py; CLI flags override them.
"""
import argparse
import logging
from datetime import datetime, timezone
import os
import sys
import tempfile
from typing import List, Dict, Any, Optional

import config
from config import setup_logging, validate_config, ConfigValidationError, get_recommendations_output_path
from metrics import discovery as discovery_mod
from metrics import prometheus_client as prom
from metrics.prometheus_client import PrometheusError
from analysis import deployment_analysis as dep_analysis
from analysis.recommendation import (
    InvalidConfiguration, ResourceDimension, SizingConfig, UsageStatistics,
)
from normalize.series import is_window_sufficient
from report import render

logger = logging.getLogger(__name__)

# Prometheus failures for a single deployment do not abort the batch
ISOLATED_ERRORS = dep_analysis.ISOLATED_ERRORS + (PrometheusError,)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _atomic_write(path: str, data: str) -> None:
    dirp = os.path.dirname(path) or '.'
    fd, tmp = tempfile.mkstemp(prefix='.tmp_recommendations_', dir=dirp)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(data)
        # Atomic replace
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            try:
                os.remove(tmp)
            except OSError:
                pass


def build_sizing_configs(percentile: float,
                         overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> Dict[ResourceDimension, SizingConfig]:
    """Per-dimension SizingConfig from defaults + YAML overrides + CLI percentile.

    Validated up front so a bad setting aborts before any query is made.
    """
    overrides = overrides or {}
    configs: Dict[ResourceDimension, SizingConfig] = {}
    for dimension in ResourceDimension:
        section = dict(overrides.get(dimension.value) or {})
        if "percentile" in section:
            raise InvalidConfiguration(
                f"{dimension.value}: percentile is set per run (--percentile / PERCENTILE), not per dimension"
            )
        section["percentile"] = percentile
        cfg = SizingConfig.for_dimension(dimension, **section)
        cfg.validate()
        configs[dimension] = cfg
    return configs


def collect_statistics(deployment: str, namespace: str, lookback_days: int, percentile: float,
                       source: str = "quantiles"):
    """Statistics for both dimensions plus evidence notes about data quality."""
    stats: Dict[ResourceDimension, UsageStatistics] = {}
    evidence: List[str] = []
    for dimension in ResourceDimension:
        if source == "samples":
            samples = prom.fetch_samples(deployment, namespace, dimension, lookback_days)
            series = [(s.timestamp, s.value) for s in samples]
            min_minutes = config.MIN_OBSERVATION_WINDOW_MINUTES
            if samples and not is_window_sufficient(series, min_samples=5, min_duration_seconds=min_minutes * 60):
                evidence.append(f"{dimension.value}: observation window shorter than {min_minutes} minutes or missing samples")
            stats[dimension] = UsageStatistics.from_samples(samples, rank=percentile)
        else:
            stats[dimension] = prom.fetch_statistics(deployment, namespace, dimension, lookback_days, percentile)
    return stats, evidence


def run_once(namespace: str, deployment: Optional[str] = None, lookback_days: Optional[int] = None,
             percentile: Optional[float] = None, prometheus_url: Optional[str] = None,
             configs: Optional[Dict[ResourceDimension, SizingConfig]] = None,
             workers: Optional[int] = None, source: Optional[str] = None,
             deployment_regex: Optional[str] = None) -> Dict[str, Any]:
    """Analyze one namespace and return the output document.

    Raises PrometheusError when Prometheus is unreachable or discovery
    fails and InvalidConfiguration on a sizing defect.
    """
    lookback_days = lookback_days if lookback_days is not None else config.LOOKBACK_DAYS
    percentile = percentile if percentile is not None else config.PERCENTILE
    workers = workers if workers is not None else config.ANALYSIS_WORKERS
    source = source or config.STATISTICS_SOURCE
    if prometheus_url:
        prom.PROMETHEUS_URL = prometheus_url
    if configs is None:
        configs = build_sizing_configs(percentile, config.load_sizing_overrides())

    logger.info(f"Analyzing namespace: {namespace}")
    logger.info(f"Prometheus URL: {prom.PROMETHEUS_URL}")

    if not prom.check_health():
        raise prom.PrometheusConnectionError(f"Cannot connect to Prometheus at {prom.PROMETHEUS_URL}")

    deps = discovery_mod.discover_deployments(namespace, deployment=deployment,
                                              deployment_regex=deployment_regex)
    deployments = deps.get('deployments', [])
    logger.info(f"Found {len(deployments)} deployment(s) in {namespace}")

    def analyze_one(spec: Dict[str, Any]) -> Dict[str, Any]:
        name = spec['name']
        logger.info(f"[{namespace}/{name}] analyzing usage over last {lookback_days} days")
        stats, evidence = collect_statistics(name, namespace, lookback_days, percentile, source)
        current = discovery_mod.current_requests(name, namespace)
        return dep_analysis.analyze_deployment(spec, stats, current, configs, evidence)

    results = dep_analysis.analyze_deployments(
        deployments, analyze_one, workers=workers, isolated=ISOLATED_ERRORS
    )

    failed = [r for r in results if r.get('insufficient_data')]
    return {
        'generated_at': _now_iso(),
        'analysis_scope': {
            'namespace': namespace,
            'lookback_days': lookback_days,
            'percentile': percentile,
            'statistics_source': source,
            'prometheus_url': prom.PROMETHEUS_URL,
            **deps.get('discovery_filters', {}),
        },
        'sizing_config': {d.value: c.to_dict() for d, c in configs.items()},
        'summary': {
            'deployment_count': len(results),
            'recommended_count': len(results) - len(failed),
            'skipped_count': len(failed),
            'warning_count': sum(len(r.get('warnings', [])) for r in results),
        },
        'deployment_analysis': results,
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Analyze Kubernetes deployment resource usage from Prometheus "
                    "and recommend requests/limits."
    )
    parser.add_argument('--namespace', default=config.NAMESPACE,
                        help=f"Namespace to analyze (default: {config.NAMESPACE})")
    parser.add_argument('--deployment', default=None,
                        help="Specific deployment (default: all)")
    parser.add_argument('--deployment-regex', default=None,
                        help="Only analyze discovered deployments whose name matches this regex")
    parser.add_argument('--days', type=int, default=config.LOOKBACK_DAYS,
                        help=f"Lookback period in days (default: {config.LOOKBACK_DAYS})")
    parser.add_argument('--percentile', type=float, default=config.PERCENTILE,
                        help=f"Percentile used for limits (default: {config.PERCENTILE:g})")
    parser.add_argument('--prometheus-url', default=config.PROMETHEUS_URL,
                        help="Prometheus server URL")
    parser.add_argument('--format', choices=('text', 'yaml', 'json'), default='text',
                        help="Output format on stdout (default: text)")
    parser.add_argument('--output-dir', default=config.OUTPUT_DIR,
                        help=f"Directory for the JSON result (default: {config.OUTPUT_DIR})")
    return parser


def _render(out: Dict[str, Any], fmt: str) -> str:
    if fmt == 'json':
        return render.render_json(out) + "\n"
    if fmt == 'yaml':
        docs = []
        for record in out['deployment_analysis']:
            if record.get('insufficient_data'):
                continue
            docs.append(f"# {record['namespace']}/{record['deployment']}\n{render.render_yaml(record)}")
        return "---\n".join(docs)
    return render.render_report(out)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # Setup logging first
    setup_logging()

    # Validate configuration
    try:
        validate_config(prometheus_url=args.prometheus_url, lookback_days=args.days,
                        percentile=args.percentile, deployment_regex=args.deployment_regex)
        configs = build_sizing_configs(args.percentile, config.load_sizing_overrides())
        logger.info("Configuration validated successfully")
    except (ConfigValidationError, InvalidConfiguration) as e:
        logger.error(f"Configuration error: {e}")
        return 1

    try:
        out = run_once(args.namespace, deployment=args.deployment, lookback_days=args.days,
                       percentile=args.percentile, prometheus_url=args.prometheus_url,
                       configs=configs, deployment_regex=args.deployment_regex)
    except InvalidConfiguration as e:
        logger.error(f"Configuration error, aborting run: {e}")
        return 1
    except PrometheusError as e:
        logger.error(f"{e}")
        logger.error("Make sure Prometheus is running and accessible")
        return 1

    os.makedirs(args.output_dir, exist_ok=True)
    output_path = get_recommendations_output_path(args.namespace, args.output_dir)
    _atomic_write(output_path, render.render_json(out))
    logger.info(f"Wrote recommendations to {output_path}")

    sys.stdout.write(_render(out, args.format))

    summary = out['summary']
    logger.info(
        f"Analysis complete: {summary['recommended_count']} recommended, "
        f"{summary['skipped_count']} skipped"
    )
    return 0 if summary['skipped_count'] == 0 else 1


if __name__ == '__main__':
    raise SystemExit(main())
