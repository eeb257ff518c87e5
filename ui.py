#!/usr/bin/env python3
"""
Web view for right-sizing recommendations.

Read-only: serves the {namespace}_recommendations.json files written by
orchestrator.py. Nothing here queries Prometheus or touches the cluster.
"""
import json
import logging
import re
import time
from datetime import datetime, timezone
from pathlib import Path

from flask import Flask, jsonify, Response, request

from config import setup_logging, OUTPUT_DIR, NAMESPACE, get_recommendations_output_path
from report import render

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

app = Flask(__name__)

# RFC 1123 label, as Kubernetes requires for namespace names
NAMESPACE_NAME = re.compile(r'[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?')

# Metrics for observability
_metrics = {
    'requests_total': 0,
    'requests_by_endpoint': {},
    'errors_total': 0,
    'start_time': time.time()
}


def _record_request(endpoint: str):
    """Record request metrics"""
    _metrics['requests_total'] += 1
    _metrics['requests_by_endpoint'][endpoint] = _metrics['requests_by_endpoint'].get(endpoint, 0) + 1


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def load_json(filepath):
    """Load JSON file safely"""
    try:
        filepath = Path(filepath)
        if not filepath.exists():
            return None
        with open(filepath, 'r') as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f"Error loading {filepath}: {e}")
        _metrics['errors_total'] += 1
        return None


def get_available_namespaces():
    """Namespaces that have a recommendations file in OUTPUT_DIR"""
    out_dir = Path(OUTPUT_DIR)
    if not out_dir.is_dir():
        return []
    suffix = '_recommendations.json'
    return sorted(p.name[:-len(suffix)] for p in out_dir.glob(f'*{suffix}'))


def load_recommendations(namespace: str):
    """Output document for `namespace`, or None (also for a name that is not
    a valid Kubernetes namespace, which keeps lookups inside OUTPUT_DIR)"""
    if not NAMESPACE_NAME.fullmatch(namespace or ''):
        return None
    return load_json(get_recommendations_output_path(namespace, OUTPUT_DIR))


def _find_record(namespace: str, name: str):
    data = load_recommendations(namespace)
    if not data:
        return None
    for record in data.get('deployment_analysis', []):
        if record.get('deployment') == name:
            return record
    return None


@app.route('/')
def index():
    """Text report for a namespace (same as the CLI text output)"""
    _record_request('/')
    namespace = request.args.get('namespace', NAMESPACE)
    data = load_recommendations(namespace)
    if not data:
        return Response(
            f"No recommendations for namespace '{namespace}'. Run: python orchestrator.py --namespace {namespace}\n",
            status=404, mimetype='text/plain'
        )
    return Response(render.render_report(data), mimetype='text/plain')


@app.route('/api/namespaces')
def get_namespaces():
    """API endpoint to list analyzed namespaces"""
    _record_request('/api/namespaces')
    return jsonify({'namespaces': get_available_namespaces(), 'default_namespace': NAMESPACE})


@app.route('/api/recommendations')
def get_recommendations():
    """API endpoint for a namespace's full output document"""
    _record_request('/api/recommendations')
    namespace = request.args.get('namespace', NAMESPACE)
    data = load_recommendations(namespace)
    if data:
        return jsonify(data)
    return jsonify({"error": "Not found"}), 404


@app.route('/api/recommendations/<namespace>/<name>')
def get_deployment(namespace, name):
    """API endpoint for one deployment's record"""
    _record_request('/api/recommendations/<namespace>/<name>')
    record = _find_record(namespace, name)
    if record:
        return jsonify(record)
    return jsonify({"error": "Not found"}), 404


@app.route('/api/recommendations/<namespace>/<name>/yaml')
def get_deployment_yaml(namespace, name):
    """`resources:` block for one deployment"""
    _record_request('/api/recommendations/<namespace>/<name>/yaml')
    record = _find_record(namespace, name)
    if not record:
        return jsonify({"error": "Not found"}), 404
    if record.get('insufficient_data'):
        return jsonify({"error": "Insufficient data", "evidence": record.get('evidence', [])}), 409
    return Response(render.render_yaml(record), mimetype='application/yaml')


@app.route('/health')
def health():
    """Health check endpoint for liveness probes"""
    _record_request('/health')
    return jsonify({"status": "healthy", "timestamp": _timestamp()})


@app.route('/ready')
def ready():
    """Readiness check endpoint - verifies at least one recommendations file exists"""
    _record_request('/ready')
    namespaces = get_available_namespaces()
    if namespaces:
        return jsonify({
            "status": "ready",
            "namespaces_available": len(namespaces),
            "namespaces": namespaces,
            "timestamp": _timestamp()
        })
    return jsonify({
        "status": "not_ready",
        "reason": "No recommendation files found",
        "timestamp": _timestamp()
    }), 503


@app.route('/metrics')
def metrics():
    """Prometheus metrics endpoint for self-monitoring"""
    _record_request('/metrics')
    uptime = time.time() - _metrics['start_time']

    lines = [
        "# HELP rightsizing_ui_requests_total Total number of HTTP requests",
        "# TYPE rightsizing_ui_requests_total counter",
        f"rightsizing_ui_requests_total {_metrics['requests_total']}",
        "",
        "# HELP rightsizing_ui_errors_total Total number of errors",
        "# TYPE rightsizing_ui_errors_total counter",
        f"rightsizing_ui_errors_total {_metrics['errors_total']}",
        "",
        "# HELP rightsizing_ui_uptime_seconds UI uptime in seconds",
        "# TYPE rightsizing_ui_uptime_seconds gauge",
        f"rightsizing_ui_uptime_seconds {uptime:.2f}",
        "",
        "# HELP rightsizing_ui_namespaces_available Namespaces with a recommendations file",
        "# TYPE rightsizing_ui_namespaces_available gauge",
        f"rightsizing_ui_namespaces_available {len(get_available_namespaces())}",
        "",
        "# HELP rightsizing_ui_requests_by_endpoint Requests per endpoint",
        "# TYPE rightsizing_ui_requests_by_endpoint counter",
    ]
    for endpoint, count in _metrics['requests_by_endpoint'].items():
        lines.append(f'rightsizing_ui_requests_by_endpoint{{endpoint="{endpoint}"}} {count}')

    return Response('\n'.join(lines) + '\n', mimetype='text/plain')


if __name__ == '__main__':
    logger.info("Right-sizing recommendations UI")
    logger.info("Report: http://127.0.0.1:8080/?namespace=<ns>")
    logger.info("Health: http://127.0.0.1:8080/health")
    logger.info("Stop with: Ctrl+C")
    app.run(debug=False, host='127.0.0.1', port=8080)
