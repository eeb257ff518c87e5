"""
Test fixtures and configuration for pytest
"""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from analysis.recommendation import ResourceDimension, UsageStatistics  # noqa: E402


def instant_response(value, metric=None):
    """Prometheus /api/v1/query payload with a single sample (or none)."""
    result = []
    if value is not None:
        result.append({"metric": metric or {}, "value": [1704355200, str(value)]})
    return {"status": "success", "data": {"resultType": "vector", "result": result}}


@pytest.fixture
def mock_prometheus_response():
    """Mock Prometheus instant query response"""
    return instant_response("0.5", {"pod": "api-server-abc123"})


@pytest.fixture
def mock_range_response():
    """Mock Prometheus range query response (one summed series)"""
    return {
        "status": "success",
        "data": {
            "resultType": "matrix",
            "result": [
                {
                    "metric": {},
                    "values": [
                        [1704355200, "0.2"],
                        [1704355500, "0.25"],
                        [1704355800, "NaN"],
                        [1704356100, "0.3"],
                    ]
                }
            ]
        }
    }


@pytest.fixture
def cpu_stats():
    """P50=200m, P95=450m: recommends 250m request / 700m limit"""
    return UsageStatistics(p50=200, percentile=450, p99=500, max=600)


@pytest.fixture
def memory_stats():
    """P50=384Mi, P95=768Mi: recommends 512Mi request / 1024Mi limit"""
    return UsageStatistics(p50=384, percentile=768, p99=800, max=900)


@pytest.fixture
def stats_by_dimension(cpu_stats, memory_stats):
    return {ResourceDimension.CPU: cpu_stats, ResourceDimension.MEMORY: memory_stats}


@pytest.fixture
def sample_record():
    """A deployment analysis record as written to the output JSON"""
    return {
        "deployment": "api-server",
        "namespace": "production",
        "replicas": 3,
        "insufficient_data": False,
        "evidence": [],
        "usage": {
            "cpu": {"p50": 200, "percentile": 450, "p99": 650, "max": 800,
                    "percentile_rank": 95.0, "sample_count": None},
            "memory": {"p50": 384, "percentile": 768, "p99": 800, "max": 900,
                       "percentile_rank": 95.0, "sample_count": None},
        },
        "current_requests": {"cpu": 1000.0, "memory": 256.0},
        "recommendation": {
            "cpu": {"dimension": "cpu", "unit": "m", "request": 250, "limit": 700, "warnings": []},
            "memory": {"dimension": "memory", "unit": "Mi", "request": 512, "limit": 1024, "warnings": []},
        },
        "delta": {
            "cpu": {"current_request": 1000, "recommended_request": 250,
                    "direction": "reduction", "percent": 75.0, "warnings": []},
            "memory": {"current_request": 256, "recommended_request": 512,
                       "direction": "increase", "percent": 100.0, "warnings": []},
        },
        "warnings": [
            {"kind": "near_limit_saturation", "metric": "p99", "value": 650,
             "threshold": 630, "margin": 20, "dimension": "cpu"},
            {"kind": "increase_needed", "metric": "request", "value": 512,
             "threshold": 256, "margin": 256, "dimension": "memory"},
        ],
    }


@pytest.fixture
def sample_output(sample_record):
    """Full orchestrator output document"""
    skipped = {
        "deployment": "batch-worker",
        "namespace": "production",
        "replicas": None,
        "insufficient_data": True,
        "evidence": ["no cpu usage data for production/batch-worker (p50)"],
        "error": "InvalidStatistics",
    }
    return {
        "generated_at": "2026-01-04T10:00:00+00:00",
        "analysis_scope": {
            "namespace": "production",
            "lookback_days": 30,
            "percentile": 95.0,
            "statistics_source": "quantiles",
            "prometheus_url": "http://localhost:9090",
        },
        "sizing_config": {
            "cpu": {"request_multiplier": 1.2, "limit_multiplier": 1.5},
            "memory": {"request_multiplier": 1.3, "limit_multiplier": 1.3},
        },
        "summary": {"deployment_count": 2, "recommended_count": 1, "skipped_count": 1, "warning_count": 2},
        "deployment_analysis": [sample_record, skipped],
    }


@pytest.fixture
def temp_output_dir(tmp_path):
    """Temporary directory for test output files"""
    output_dir = tmp_path / "output"
    output_dir.mkdir()
    return output_dir
