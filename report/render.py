"""Presentation of deployment analysis records: text report, YAML
`resources:` block, JSON.

Works on the JSON-ready dicts produced by
`analysis.deployment_analysis.analyze_deployment`, so it renders a saved
output file exactly like a live run.
"""
import json
from typing import Any, Dict, List, Optional

import yaml

RULE = "━" * 53
LABELS = {"cpu": "CPU", "memory": "memory"}


def _fmt(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return f"{value:.1f}"
    return str(value)


def resources_block(record: Dict[str, Any]) -> Dict[str, Any]:
    """The `resources:` mapping to paste into a container spec."""
    cpu = record["recommendation"]["cpu"]
    mem = record["recommendation"]["memory"]
    return {
        "resources": {
            "requests": {"cpu": f"{cpu['request']}m", "memory": f"{mem['request']}Mi"},
            "limits": {"cpu": f"{cpu['limit']}m", "memory": f"{mem['limit']}Mi"},
        }
    }


def render_yaml(record: Dict[str, Any]) -> str:
    return yaml.safe_dump(resources_block(record), default_flow_style=False, sort_keys=False)


def render_json(output: Dict[str, Any]) -> str:
    return json.dumps(output, indent=2)


def render_usage_table(record: Dict[str, Any], rank: float = 95) -> str:
    lines = [
        "┌─────────────────┬──────────┬──────────┬──────────┬──────────┐",
        f"│ Metric          │ P50      │ {('P' + format(rank, 'g')):<8} │ P99      │ Max      │",
        "├─────────────────┼──────────┼──────────┼──────────┼──────────┤",
    ]
    for dim, label, unit in (("cpu", "CPU", "m"), ("memory", "Memory", "Mi")):
        usage = record["usage"][dim]
        cells = [f"{_fmt(usage.get(k)) + unit:>8}" for k in ("p50", "percentile", "p99", "max")]
        lines.append(f"│ {label:<15} │ " + " │ ".join(cells) + " │")
    lines.append("└─────────────────┴──────────┴──────────┴──────────┴──────────┘")
    return "\n".join(lines)


def render_recommendations(record: Dict[str, Any], configs: Optional[Dict[str, Dict[str, Any]]] = None,
                           rank: float = 95) -> str:
    configs = configs or {}
    cpu = record["recommendation"]["cpu"]
    mem = record["recommendation"]["memory"]
    cpu_cfg = configs.get("cpu", {})
    mem_cfg = configs.get("memory", {})
    pxx = f"P{rank:g}"
    lines = [
        f"  CPU Request:    {cpu['request']}m  (P50 × {cpu_cfg.get('request_multiplier', 1.2):g})",
        f"  CPU Limit:      {cpu['limit']}m  ({pxx} × {cpu_cfg.get('limit_multiplier', 1.5):g})",
        f"  Memory Request: {mem['request']}Mi (P50 × {mem_cfg.get('request_multiplier', 1.3):g})",
        f"  Memory Limit:   {mem['limit']}Mi ({pxx} × {mem_cfg.get('limit_multiplier', 1.3):g})",
    ]
    return "\n".join(lines)


def render_impact(record: Dict[str, Any]) -> str:
    lines: List[str] = []
    for dim, label in (("cpu", "CPU"), ("memory", "Memory")):
        delta = record["delta"].get(dim)
        if delta is None:
            continue
        if delta["direction"] == "reduction":
            lines.append(f"  ✓ {label} Request reduction: {delta['percent']:.0f}%")
        else:
            lines.append(f"  ⚠ {label} Request increase: {delta['percent']:.0f}% (may be needed)")
    return "\n".join(lines) if lines else "  Current requests not set, nothing to compare"


def render_warnings(record: Dict[str, Any]) -> str:
    lines: List[str] = []
    recs = record["recommendation"]
    for w in record.get("warnings", []):
        dim = w["dimension"]
        unit = recs[dim]["unit"]
        kind = w["kind"]
        if kind == "near_limit_saturation" and dim == "memory":
            lines.append(f"  ⚠ P99 Memory ({_fmt(w['value'])}{unit}) is close to recommended limit "
                         f"({recs[dim]['limit']}{unit})")
            lines.append("     Risk of OOMKill! Consider increasing memory limit")
        elif kind == "near_limit_saturation":
            lines.append(f"  ⚠ P99 CPU ({_fmt(w['value'])}{unit}) is close to recommended limit "
                         f"({recs[dim]['limit']}{unit})")
            lines.append("     Consider increasing limit or investigating high CPU usage")
        elif kind == "under_utilized":
            lines.append(f"  ℹ Very low {LABELS[dim]} usage "
                         f"(P50 {_fmt(w['value'])}{unit}). Consider consolidating with other services")
    return "\n".join(lines) if lines else "  None"


def render_deployment(record: Dict[str, Any], configs: Optional[Dict[str, Dict[str, Any]]] = None,
                      rank: float = 95) -> str:
    """Full text section for one deployment."""
    header = [RULE, f"Deployment: {record['namespace']}/{record['deployment']}", RULE]
    if record.get("insufficient_data"):
        return "\n".join(header + ["", "Insufficient data:"] + [f"  {e}" for e in record["evidence"]])

    current = record.get("current_requests", {})
    parts = header + [
        "",
        "Current Requests:",
        f"  CPU:    {_fmt(current.get('cpu')) + 'm' if current.get('cpu') is not None else 'not set'}",
        f"  Memory: {_fmt(current.get('memory')) + 'Mi' if current.get('memory') is not None else 'not set'}",
        "",
        render_usage_table(record, rank),
        "",
        "Recommendations:",
        "",
        render_recommendations(record, configs, rank),
        "",
        "YAML Configuration:",
        "",
        render_yaml(record).rstrip(),
        "",
        "Potential Impact:",
        "",
        render_impact(record),
        "",
        "Warnings:",
        "",
        render_warnings(record),
    ]
    for note in record.get("evidence", []):
        parts.append(f"  ℹ {note}")
    return "\n".join(parts)


def render_report(output: Dict[str, Any]) -> str:
    """Text report for a whole run (the JSON written by the orchestrator)."""
    scope = output.get("analysis_scope", {})
    rank = scope.get("percentile", 95)
    configs = output.get("sizing_config", {})
    parts = [
        RULE,
        "  Kubernetes Resource Analysis",
        RULE,
        "",
        f"Namespace: {scope.get('namespace')}",
        f"Lookback: {scope.get('lookback_days')} days",
        f"Percentile: P{rank:g}",
        f"Prometheus: {scope.get('prometheus_url')}",
    ]
    for record in output.get("deployment_analysis", []):
        parts += ["", render_deployment(record, configs, rank)]
    parts += [
        "",
        RULE,
        "Analysis Complete",
        RULE,
        "",
        "To apply recommendations:",
    ]
    for record in output.get("deployment_analysis", []):
        if not record.get("insufficient_data"):
            parts.append(f"  {kubectl_command(record)}")
    return "\n".join(parts) + "\n"


def kubectl_command(record: Dict[str, Any]) -> str:
    """`kubectl set resources` command applying one recommendation."""
    cpu = record["recommendation"]["cpu"]
    mem = record["recommendation"]["memory"]
    return (
        f"kubectl set resources deployment {record['deployment']} -n {record['namespace']} "
        f"--requests=cpu={cpu['request']}m,memory={mem['request']}Mi "
        f"--limits=cpu={cpu['limit']}m,memory={mem['limit']}Mi"
    )
