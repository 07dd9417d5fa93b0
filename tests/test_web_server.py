"""
Tests for the web API server.
"""

import json
import urllib.error
import urllib.request
from datetime import datetime, timezone

import pytest


class TestWebServer:
    """Tests for WebServer."""

    def test_web_server_import(self):
        from battery_monitor.web import WebServer
        assert WebServer is not None

    def test_web_server_initialization(self):
        from battery_monitor.web.web_server import WebServer

        server = WebServer(port=9999, bind_address='127.0.0.1')
        assert server.port == 9999
        assert server.bind_address == '127.0.0.1'
        assert server.scheduler is None
        assert server._running is False

    def test_stop_without_start(self):
        from battery_monitor.web.web_server import WebServer

        WebServer(port=9999).stop()


def _get(base_url, path):
    """GET returning (status, headers, body bytes), including HTTP errors."""
    try:
        response = urllib.request.urlopen(base_url + path, timeout=2)
        return response.status, response.headers, response.read()
    except urllib.error.HTTPError as e:
        return e.code, e.headers, e.read()


class TestWebServerIntegration:
    """Integration tests for WebServer (requires network)."""

    @pytest.fixture
    def scheduler(self, mixed_samples, fake_clock):
        from battery_monitor.engine.cycling_scheduler import CyclingScheduler

        return CyclingScheduler(mixed_samples, clock=fake_clock)

    @pytest.fixture
    def base_url(self, scheduler):
        """Start a server on a free local port."""
        from battery_monitor.dataset.loader import summarize
        from battery_monitor.web.web_server import WebServer, WebRequestHandler

        server = WebServer(port=0, bind_address='127.0.0.1')
        server.set_scheduler(scheduler, dataset_summary=summarize(scheduler.samples))
        try:
            server.start()
        except OSError as e:
            pytest.skip(f"Cannot bind test server: {e}")

        yield f'http://127.0.0.1:{server.port}'

        server.stop()
        WebRequestHandler.scheduler = None
        WebRequestHandler.dataset_summary = None

    def test_latest(self, base_url, scheduler):
        status, headers, body = _get(base_url, '/api/latest')

        assert status == 200
        assert headers['Content-Type'] == 'application/json'
        assert headers['Access-Control-Allow-Origin'] == '*'

        data = json.loads(body)
        assert data == scheduler.get_latest().to_dict()
        assert data['timestamp'] == '2024-01-01T00:00:00.000Z'
        assert data['diagnostics']['charging'] is False
        assert isinstance(data['diagnostics']['anomalies'], list)

    def test_latest_follows_ticks(self, base_url, scheduler):
        scheduler.tick()
        scheduler.tick()

        data = json.loads(_get(base_url, '/api/latest')[2])
        # Second tick replays the nested sample at index 1
        assert data['telemetry']['temp'] == 43
        assert data['diagnostics']['charging'] is True

    def test_latest_round_trips(self, base_url, scheduler):
        from battery_monitor.interfaces.diagnostic_record import DiagnosticRecord

        body = _get(base_url, '/api/latest')[2]
        assert DiagnosticRecord.from_json(body.decode()) == scheduler.get_latest()

    def test_all_samples(self, base_url, mixed_samples):
        status, _, body = _get(base_url, '/api/all')

        assert status == 200
        assert json.loads(body) == mixed_samples

    def test_api_health(self, base_url):
        status, _, body = _get(base_url, '/api/health')

        data = json.loads(body)
        assert status == 200
        assert data['ok'] is True
        datetime.strptime(data['now'], '%Y-%m-%dT%H:%M:%S.%fZ')

    def test_health(self, base_url):
        status, _, body = _get(base_url, '/health')

        assert status == 200
        assert body == b'OK\n'

    def test_status(self, base_url):
        status, _, body = _get(base_url, '/status')

        data = json.loads(body)
        assert status == 200
        assert data['dataset_size'] == 3
        assert data['cursor'] == 0
        assert data['dataset_summary']['temp']['max'] == 50.0

    def test_metrics(self, base_url, scheduler):
        scheduler.tick()
        status, headers, body = _get(base_url, '/metrics')

        content = body.decode()
        assert status == 200
        assert headers['Content-Type'].startswith('text/plain')
        assert 'battery_monitor_ticks_total 1' in content
        assert 'battery_monitor_cursor 1' in content
        assert 'battery_monitor_health_score 95' in content

    def test_trailing_slash(self, base_url):
        assert _get(base_url, '/api/latest/')[0] == 200

    def test_unknown_path(self, base_url):
        status, _, body = _get(base_url, '/api/nope')

        assert status == 404
        assert json.loads(body)['error'] == 'Not Found'

    def test_cors_preflight(self, base_url):
        request = urllib.request.Request(base_url + '/api/latest', method='OPTIONS')
        response = urllib.request.urlopen(request, timeout=2)

        assert response.status == 204
        assert response.headers['Access-Control-Allow-Origin'] == '*'
        assert 'GET' in response.headers['Access-Control-Allow-Methods']


class TestNoScheduler:
    """Routes before a scheduler is attached."""

    @pytest.fixture
    def base_url(self):
        from battery_monitor.web.web_server import WebServer, WebRequestHandler

        WebRequestHandler.scheduler = None
        server = WebServer(port=0, bind_address='127.0.0.1')
        try:
            server.start()
        except OSError as e:
            pytest.skip(f"Cannot bind test server: {e}")

        yield f'http://127.0.0.1:{server.port}'

        server.stop()

    @pytest.mark.parametrize("path", ['/api/latest', '/api/all', '/status', '/metrics'])
    def test_data_routes_unavailable(self, base_url, path):
        assert _get(base_url, path)[0] == 503

    def test_health_still_answers(self, base_url):
        assert _get(base_url, '/health')[0] == 200
        assert json.loads(_get(base_url, '/api/health')[2])['ok'] is True


class TestPrometheusMetrics:
    """Tests for Prometheus metrics formatting."""

    def test_prometheus_format(self):
        from battery_monitor.web.web_server import WebRequestHandler

        handler = WebRequestHandler.__new__(WebRequestHandler)

        status = {
            'tick_count': 42,
            'tick_errors': 0,
            'cursor': 3,
            'dataset_size': 12,
            'uptime_seconds': 126.0,
            'latest': {
                'timestamp': '2024-01-01T00:00:00.000Z',
                'telemetry': {'temp': 47, 'voltage': 376, 'current': -130, 'soc': 12, 'soh': 70},
                'diagnostics': {
                    'risk': 'HIGH',
                    'fireRisk': 'MEDIUM',
                    'healthScore': 61,
                    'RUL_months': 30,
                    'anomalies': ['High Temperature', 'Overvoltage', 'Low SoC'],
                },
            },
        }

        metrics = handler._format_prometheus_metrics(status)

        assert 'battery_monitor_ticks_total 42' in metrics
        assert 'battery_monitor_dataset_samples 12' in metrics
        assert 'battery_monitor_health_score 61' in metrics
        assert 'battery_monitor_rul_months 30' in metrics
        assert 'battery_monitor_risk{kind="overall"} 2' in metrics
        assert 'battery_monitor_risk{kind="fire"} 1' in metrics
        assert 'battery_monitor_anomalies 3' in metrics
        assert 'battery_monitor_telemetry{field="voltage"} 376' in metrics

    def test_prometheus_without_latest(self):
        from battery_monitor.web.web_server import WebRequestHandler

        handler = WebRequestHandler.__new__(WebRequestHandler)
        metrics = handler._format_prometheus_metrics({})

        assert 'battery_monitor_ticks_total 0' in metrics
        assert 'battery_monitor_telemetry' not in metrics
