import logging
import re
from typing import List, Dict, Any, Optional

from .prometheus_client import query_instant, instant_value, to_native_unit, pod_regex
from analysis.recommendation import ResourceDimension
from config import excluded_namespaces

logger = logging.getLogger(__name__)


def discover_deployments(namespace: str, deployment: Optional[str] = None,
                         deployment_regex: Optional[str] = None) -> Dict[str, Any]:
    """
    List deployments in `namespace` via kube-state-metrics
    (`kube_deployment_spec_replicas`).

    Returns dict with keys:
      - deployments: list of {name, namespace, replicas}
      - discovery_filters: recorded filters applied

    A single `deployment` bypasses the query entirely. Prometheus errors
    propagate: without a deployment list there is nothing to analyze.
    """
    exclude = excluded_namespaces()
    filters = {
        'namespace': namespace,
        'deployment': deployment,
        'deployment_regex': deployment_regex,
        'excluded_namespaces': exclude,
    }

    if deployment:
        return {
            'deployments': [{'name': deployment, 'namespace': namespace, 'replicas': None}],
            'discovery_filters': filters,
        }

    if namespace in exclude:
        logger.warning(f"Namespace {namespace} is in EXCLUDED_NAMESPACES, nothing to analyze")
        return {'deployments': [], 'discovery_filters': filters}

    result = query_instant(f'kube_deployment_spec_replicas{{namespace="{namespace}"}}')
    dep_map: Dict[str, Dict[str, Any]] = {}
    for res in result:
        metric = res.get('metric', {})
        name = metric.get('deployment') or metric.get('deployment_name') or metric.get('name')
        if not name:
            continue
        if deployment_regex and not re.search(deployment_regex, name):
            continue
        replicas = instant_value([res])
        dep_map[name] = {
            'name': name,
            'namespace': namespace,
            'replicas': int(replicas) if replicas is not None else None,
        }

    deployments = [dep_map[k] for k in sorted(dep_map)]
    return {'deployments': deployments, 'discovery_filters': filters}


def current_requests(deployment: str, namespace: str) -> Dict[str, Any]:
    """Currently configured per-pod request of a deployment.

    Returns {"cpu": millicores | None, "memory": MiB | None}; None means
    the request is not set (or kube-state-metrics does not export it).
    """
    out: Dict[str, Any] = {}
    for dimension in ResourceDimension:
        promql = (
            f'max(sum by (pod) (kube_pod_container_resource_requests{{'
            f'namespace="{namespace}",pod=~"{pod_regex(deployment)}",resource="{dimension.value}"}}))'
        )
        value = instant_value(query_instant(promql))
        out[dimension.value] = to_native_unit(value, dimension) if value else None
    return out
