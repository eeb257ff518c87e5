import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Any, Optional

from analysis.recommendation import (
    InvalidConfiguration, InvalidInput, InvalidStatistics, ResourceDimension,
    SizingConfig, UsageStatistics, compare_to_existing, compute_recommendation,
)

logger = logging.getLogger(__name__)

# Per-deployment conditions: recorded on the deployment, batch continues.
# InvalidConfiguration is not listed: it aborts the run.
ISOLATED_ERRORS = (InvalidStatistics, InvalidInput)


def analyze_deployment(deployment_spec: Dict[str, Any],
                       stats_by_dimension: Dict[ResourceDimension, UsageStatistics],
                       current: Optional[Dict[str, Any]] = None,
                       configs: Optional[Dict[ResourceDimension, SizingConfig]] = None,
                       evidence: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Produce the `deployment_analysis` JSON object for one deployment.

    `deployment_spec` must contain `name` and `namespace`.
    `current` maps "cpu"/"memory" to the configured request (millicores /
    MiB) or None when not set; missing requests skip the comparison.

    Engine errors propagate unchanged; nothing partial is returned.
    """
    current = current or {}
    configs = configs or {}
    result: Dict[str, Any] = {
        "deployment": deployment_spec.get("name"),
        "namespace": deployment_spec.get("namespace"),
        "replicas": deployment_spec.get("replicas"),
        "insufficient_data": False,
        "evidence": list(evidence or []),
        "usage": {},
        "current_requests": {},
        "recommendation": {},
        "delta": {},
        "warnings": [],
    }

    for dimension in ResourceDimension:
        stats = stats_by_dimension.get(dimension)
        if stats is None:
            raise InvalidStatistics(f"no {dimension.value} statistics for {result['deployment']}")
        rec = compute_recommendation(stats, dimension, configs.get(dimension))
        result["usage"][dimension.value] = stats.to_dict()
        result["recommendation"][dimension.value] = rec.to_dict()
        result["warnings"].extend(dict(w.to_dict(), dimension=dimension.value) for w in rec.warnings)

        cur = current.get(dimension.value)
        result["current_requests"][dimension.value] = float(cur) if cur is not None else None
        if cur is None:
            result["delta"][dimension.value] = None
            continue
        delta = compare_to_existing(rec, cur)
        result["delta"][dimension.value] = delta.to_dict()
        result["warnings"].extend(dict(w.to_dict(), dimension=dimension.value) for w in delta.warnings)

    return result


def _failed_record(deployment_spec: Dict[str, Any], error: Exception) -> Dict[str, Any]:
    return {
        "deployment": deployment_spec.get("name"),
        "namespace": deployment_spec.get("namespace"),
        "replicas": deployment_spec.get("replicas"),
        "insufficient_data": True,
        "evidence": [str(error)],
        "error": type(error).__name__,
    }


def analyze_deployments(deployments: List[Dict[str, Any]],
                        analyze_one: Callable[[Dict[str, Any]], Dict[str, Any]],
                        workers: int = 1,
                        isolated: tuple = ISOLATED_ERRORS) -> List[Dict[str, Any]]:
    """Run `analyze_one` for every deployment, in parallel when `workers` > 1.

    Errors listed in `isolated` are recorded on that deployment and the
    rest of the batch continues; anything else (InvalidConfiguration in
    particular) propagates and aborts the batch. Output order follows
    `deployments`.
    """
    def _run(spec: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return analyze_one(spec)
        except InvalidConfiguration:
            raise
        except isolated as e:
            logger.warning(f"[{spec.get('namespace')}/{spec.get('name')}] skipped: {e}")
            return _failed_record(spec, e)

    if workers <= 1 or len(deployments) <= 1:
        return [_run(spec) for spec in deployments]

    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(_run, deployments))
