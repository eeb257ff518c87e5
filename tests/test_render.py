import json

import yaml

from report import render


def test_yaml_block(sample_record):
    doc = yaml.safe_load(render.render_yaml(sample_record))

    assert doc == {
        'resources': {
            'requests': {'cpu': '250m', 'memory': '512Mi'},
            'limits': {'cpu': '700m', 'memory': '1024Mi'},
        }
    }
    # requests before limits, like a hand-written manifest
    assert render.render_yaml(sample_record).index('requests') < render.render_yaml(sample_record).index('limits')


def test_usage_table(sample_record):
    table = render.render_usage_table(sample_record, rank=95.0)

    assert '│ P95      │' in table
    cpu_row = [line for line in table.splitlines() if line.startswith('│ CPU')][0]
    assert '200m' in cpu_row and '450m' in cpu_row and '650m' in cpu_row and '800m' in cpu_row
    mem_row = [line for line in table.splitlines() if line.startswith('│ Memory')][0]
    assert '384Mi' in mem_row and '900Mi' in mem_row


def test_recommendation_lines_show_multipliers(sample_record):
    text = render.render_recommendations(
        sample_record,
        {'cpu': {'request_multiplier': 1.2, 'limit_multiplier': 1.5},
         'memory': {'request_multiplier': 1.3, 'limit_multiplier': 1.3}},
    )

    assert 'CPU Request:    250m  (P50 × 1.2)' in text
    assert 'CPU Limit:      700m  (P95 × 1.5)' in text
    assert 'Memory Limit:   1024Mi (P95 × 1.3)' in text


def test_impact(sample_record):
    text = render.render_impact(sample_record)

    assert 'CPU Request reduction: 75%' in text
    assert 'Memory Request increase: 100% (may be needed)' in text


def test_impact_without_current_requests(sample_record):
    sample_record['delta'] = {'cpu': None, 'memory': None}

    assert 'nothing to compare' in render.render_impact(sample_record)


def test_warnings_text(sample_record):
    text = render.render_warnings(sample_record)

    assert 'P99 CPU (650m) is close to recommended limit (700m)' in text
    assert 'OOMKill' not in text


def test_memory_and_under_utilized_warnings(sample_record):
    sample_record['warnings'] = [
        {'kind': 'near_limit_saturation', 'metric': 'p99', 'value': 950, 'threshold': 921.6,
         'margin': 28.4, 'dimension': 'memory'},
        {'kind': 'under_utilized', 'metric': 'p50', 'value': 20, 'threshold': 50,
         'margin': -30, 'dimension': 'cpu'},
    ]

    text = render.render_warnings(sample_record)

    assert 'P99 Memory (950Mi) is close to recommended limit (1024Mi)' in text
    assert 'Risk of OOMKill!' in text
    assert 'Very low CPU usage (P50 20m)' in text


def test_no_warnings(sample_record):
    sample_record['warnings'] = []
    assert render.render_warnings(sample_record).strip() == 'None'


def test_kubectl_command(sample_record):
    assert render.kubectl_command(sample_record) == (
        'kubectl set resources deployment api-server -n production '
        '--requests=cpu=250m,memory=512Mi --limits=cpu=700m,memory=1024Mi'
    )


def test_report(sample_output):
    text = render.render_report(sample_output)

    assert 'Namespace: production' in text
    assert 'Lookback: 30 days' in text
    assert 'Percentile: P95' in text
    assert 'Deployment: production/api-server' in text
    assert 'Current Requests:' in text
    assert '  CPU:    1000m' in text
    assert 'Deployment: production/batch-worker' in text
    assert 'Insufficient data:' in text
    assert 'no cpu usage data for production/batch-worker (p50)' in text
    assert 'kubectl set resources deployment api-server' in text
    assert 'kubectl set resources deployment batch-worker' not in text


def test_json_roundtrip(sample_output):
    assert json.loads(render.render_json(sample_output)) == sample_output


def test_usage_table_rank_99(sample_record):
    sample_record['usage']['cpu'].update({'percentile': 640, 'p99': 650, 'percentile_rank': 99.0})

    table = render.render_usage_table(sample_record, rank=99.0)

    assert '│ P99      │ P99      │' in table
    cpu_row = [line for line in table.splitlines() if line.startswith('│ CPU')][0]
    assert '640m' in cpu_row and '650m' in cpu_row
