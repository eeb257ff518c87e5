"""
Tests for UI endpoints
"""
import json

import pytest
import yaml

import ui
from ui import app, load_json


@pytest.fixture
def out_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(ui, 'OUTPUT_DIR', str(tmp_path))
    monkeypatch.setattr(ui, 'NAMESPACE', 'production')
    return tmp_path


@pytest.fixture
def written(out_dir, sample_output):
    (out_dir / 'production_recommendations.json').write_text(json.dumps(sample_output))
    return out_dir


@pytest.fixture
def client():
    """Flask test client"""
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client


class TestHealthEndpoint:
    """Tests for /health endpoint"""

    def test_health_returns_200(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'healthy'
        assert 'timestamp' in data


class TestReadyEndpoint:
    """Tests for /ready endpoint"""

    def test_ready_when_recommendations_exist(self, client, written):
        response = client.get('/ready')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'ready'
        assert data['namespaces'] == ['production']

    def test_not_ready_without_files(self, client, out_dir):
        response = client.get('/ready')

        assert response.status_code == 503
        assert json.loads(response.data)['status'] == 'not_ready'


class TestRecommendationsAPI:

    def test_namespaces(self, client, written):
        (written / 'staging_recommendations.json').write_text('{}')

        data = json.loads(client.get('/api/namespaces').data)

        assert data['namespaces'] == ['production', 'staging']
        assert data['default_namespace'] == 'production'

    def test_full_document(self, client, written):
        response = client.get('/api/recommendations?namespace=production')

        assert response.status_code == 200
        assert json.loads(response.data)['summary']['recommended_count'] == 1

    def test_missing_namespace(self, client, out_dir):
        response = client.get('/api/recommendations?namespace=nope')

        assert response.status_code == 404

    def test_single_deployment(self, client, written):
        response = client.get('/api/recommendations/production/api-server')

        assert response.status_code == 200
        assert json.loads(response.data)['recommendation']['cpu']['limit'] == 700

    def test_unknown_deployment(self, client, written):
        assert client.get('/api/recommendations/production/ghost').status_code == 404

    def test_yaml(self, client, written):
        response = client.get('/api/recommendations/production/api-server/yaml')

        assert response.status_code == 200
        assert response.mimetype == 'application/yaml'
        doc = yaml.safe_load(response.data)
        assert doc['resources']['limits'] == {'cpu': '700m', 'memory': '1024Mi'}

    def test_yaml_insufficient_data(self, client, written):
        response = client.get('/api/recommendations/production/batch-worker/yaml')

        assert response.status_code == 409
        assert json.loads(response.data)['evidence']


class TestIndex:

    def test_text_report(self, client, written):
        response = client.get('/')

        assert response.status_code == 200
        assert response.mimetype == 'text/plain'
        assert b'Deployment: production/api-server' in response.data

    def test_no_report(self, client, out_dir):
        response = client.get('/?namespace=staging')

        assert response.status_code == 404
        assert b'orchestrator.py --namespace staging' in response.data


class TestMetrics:

    def test_counters(self, client, written):
        client.get('/health')
        response = client.get('/metrics')

        body = response.data.decode()
        assert 'rightsizing_ui_requests_total' in body
        assert 'rightsizing_ui_namespaces_available 1' in body
        assert 'rightsizing_ui_requests_by_endpoint{endpoint="/health"}' in body


class TestLoadJson:

    def test_missing_file(self, tmp_path):
        assert load_json(tmp_path / 'missing.json') is None

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / 'bad.json'
        path.write_text('{not json')

        assert load_json(path) is None


class TestNamespaceNames:

    @pytest.fixture
    def outside(self, tmp_path, monkeypatch, sample_output):
        out = tmp_path / 'output'
        out.mkdir()
        monkeypatch.setattr(ui, 'OUTPUT_DIR', str(out))
        (tmp_path / 'secret_recommendations.json').write_text(json.dumps(sample_output))
        return tmp_path

    @pytest.mark.parametrize("namespace", ["../secret", "..%2Fsecret", "/etc/passwd", "Production", ""])
    def test_rejected(self, client, outside, namespace):
        assert client.get(f'/api/recommendations?namespace={namespace}').status_code == 404

    def test_index_rejects_traversal(self, client, outside):
        assert client.get('/?namespace=../secret').status_code == 404

    def test_load_recommendations_stays_in_output_dir(self, outside):
        assert ui.load_recommendations('../secret') is None
