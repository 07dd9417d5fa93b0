"""
Web Server for battery-monitor.

Provides HTTP endpoints for:
- JSON API endpoints for the latest diagnostic record and the raw dataset
- Liveness probes for process supervisors and load balancers
- JSON status and Prometheus-compatible metrics

Endpoints:
    GET /api/latest  - Latest DiagnosticRecord
    GET /api/all     - Original telemetry dataset
    GET /api/health  - {"ok": true, "now": "<ISO-8601>"}
    GET /health      - Plain-text health check (200 OK if running)
    GET /status      - JSON scheduler status
    GET /metrics     - Prometheus metrics

All JSON responses allow any origin so a browser dashboard served from
elsewhere can poll them.

Usage:
    from battery_monitor.web import WebServer

    server = WebServer(port=4000)
    server.set_scheduler(scheduler)
    server.start()
"""

import json
import logging
import threading
from http.server import HTTPServer, BaseHTTPRequestHandler
from socketserver import ThreadingMixIn
from typing import Any, Dict, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

RISK_VALUES = {'LOW': 0, 'MEDIUM': 1, 'HIGH': 2}


class WebRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for API endpoints."""

    # Class-level references
    scheduler = None
    dataset_summary: Optional[Dict[str, Dict[str, float]]] = None

    def log_message(self, format, *args):
        """Route access logging through the module logger at DEBUG."""
        logger.debug("%s - %s", self.address_string(), format % args)

    def do_GET(self):
        """Handle GET requests."""
        path = urlparse(self.path).path.rstrip('/') or '/'

        if path == '/api/latest':
            self._handle_api_latest()
        elif path == '/api/all':
            self._handle_api_all()
        elif path == '/api/health':
            self._handle_api_health()
        elif path == '/health':
            self._handle_health()
        elif path == '/status':
            self._handle_status()
        elif path == '/metrics':
            self._handle_metrics()
        else:
            self._send_json({'error': 'Not Found', 'path': path}, 404)

    def do_OPTIONS(self):
        """CORS preflight."""
        self.send_response(204)
        self.send_header('Access-Control-Allow-Origin', '*')
        self.send_header('Access-Control-Allow-Methods', 'GET, OPTIONS')
        self.send_header('Access-Control-Allow-Headers', 'Content-Type')
        self.end_headers()

    def _send_json(self, data: Any, status: int = 200):
        """Send JSON response."""
        body = json.dumps(data, indent=2).encode()
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', str(len(body)))
        self.send_header('Access-Control-Allow-Origin', '*')
        self.end_headers()
        self.wfile.write(body)

    def _send_text(self, text: str, status: int = 200, content_type: str = 'text/plain'):
        body = text.encode()
        self.send_response(status)
        self.send_header('Content-Type', content_type)
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    # =========================================================================
    # Data API
    # =========================================================================

    def _handle_api_latest(self):
        """Latest diagnostic record."""
        if not self.scheduler:
            self._send_json({'error': 'No scheduler connected'}, 503)
            return

        try:
            self._send_json(self.scheduler.get_latest().to_dict())
        except Exception as e:
            logger.exception(f"/api/latest failed: {e}")
            self._send_json({'error': str(e)}, 500)

    def _handle_api_all(self):
        """The original dataset, unmodified."""
        if not self.scheduler:
            self._send_json({'error': 'No scheduler connected'}, 503)
            return

        try:
            self._send_json(self.scheduler.get_all_samples())
        except Exception as e:
            logger.exception(f"/api/all failed: {e}")
            self._send_json({'error': str(e)}, 500)

    def _handle_api_health(self):
        """JSON liveness probe; answers even without a scheduler."""
        if self.scheduler:
            self._send_json(self.scheduler.health_check())
            return

        from ..engine.cycling_scheduler import format_timestamp, utc_now
        self._send_json({'ok': True, 'now': format_timestamp(utc_now())})

    # =========================================================================
    # Health endpoints
    # =========================================================================

    def _handle_health(self):
        """Basic health check - returns 200 if server is running."""
        self._send_text('OK\n')

    def _handle_status(self):
        """JSON status with scheduler information."""
        if not self.scheduler:
            self._send_json({'error': 'No scheduler connected'}, 503)
            return

        try:
            status = self.scheduler.get_status()
            if self.dataset_summary:
                status['dataset_summary'] = self.dataset_summary
            self._send_json(status)
        except Exception as e:
            self._send_json({'error': str(e)}, 500)

    def _handle_metrics(self):
        """Prometheus-compatible metrics."""
        if not self.scheduler:
            self._send_text('# No scheduler connected\n', 503)
            return

        try:
            metrics = self._format_prometheus_metrics(self.scheduler.get_status())
            self._send_text(metrics, content_type='text/plain; version=0.0.4')
        except Exception as e:
            self._send_text(f'# Error: {e}\n', 500)

    def _format_prometheus_metrics(self, status: Dict[str, Any]) -> str:
        """Format status as Prometheus metrics."""
        latest = status.get('latest') or {}
        diagnostics = latest.get('diagnostics', {})
        telemetry = latest.get('telemetry', {})

        lines = [
            '# HELP battery_monitor_ticks_total Total scheduler ticks',
            '# TYPE battery_monitor_ticks_total counter',
            f'battery_monitor_ticks_total {status.get("tick_count", 0)}',
            '',
            '# HELP battery_monitor_tick_errors_total Ticks that raised an exception',
            '# TYPE battery_monitor_tick_errors_total counter',
            f'battery_monitor_tick_errors_total {status.get("tick_errors", 0)}',
            '',
            '# HELP battery_monitor_cursor Index of the next sample to replay',
            '# TYPE battery_monitor_cursor gauge',
            f'battery_monitor_cursor {status.get("cursor", 0)}',
            '',
            '# HELP battery_monitor_dataset_samples Number of samples in the replayed dataset',
            '# TYPE battery_monitor_dataset_samples gauge',
            f'battery_monitor_dataset_samples {status.get("dataset_size", 0)}',
            '',
            '# HELP battery_monitor_uptime_seconds Scheduler uptime in seconds',
            '# TYPE battery_monitor_uptime_seconds gauge',
            f'battery_monitor_uptime_seconds {status.get("uptime_seconds", 0):.1f}',
            '',
            '# HELP battery_monitor_health_score Latest health score (0-100)',
            '# TYPE battery_monitor_health_score gauge',
            f'battery_monitor_health_score {diagnostics.get("healthScore", 0)}',
            '',
            '# HELP battery_monitor_rul_months Latest remaining useful life estimate in months',
            '# TYPE battery_monitor_rul_months gauge',
            f'battery_monitor_rul_months {diagnostics.get("RUL_months", 0)}',
            '',
            '# HELP battery_monitor_risk Latest risk level (0=LOW, 1=MEDIUM, 2=HIGH)',
            '# TYPE battery_monitor_risk gauge',
            f'battery_monitor_risk{{kind="overall"}} {RISK_VALUES.get(diagnostics.get("risk"), 0)}',
            f'battery_monitor_risk{{kind="fire"}} {RISK_VALUES.get(diagnostics.get("fireRisk"), 0)}',
            '',
            '# HELP battery_monitor_anomalies Number of anomalies in the latest record',
            '# TYPE battery_monitor_anomalies gauge',
            f'battery_monitor_anomalies {len(diagnostics.get("anomalies", []))}',
        ]

        if telemetry:
            lines.extend([
                '',
                '# HELP battery_monitor_telemetry Latest replayed telemetry value',
                '# TYPE battery_monitor_telemetry gauge',
            ])
            for name, value in telemetry.items():
                lines.append(f'battery_monitor_telemetry{{field="{name}"}} {value}')

        lines.append('')
        return '\n'.join(lines)


class WebServer:
    """
    HTTP server for the battery-monitor API.

    Runs in a background thread. Requests are handled on their own threads
    and only read from the scheduler.
    """

    def __init__(self, port: int = 4000, bind_address: str = '0.0.0.0'):
        """
        Initialize the web server.

        Args:
            port: HTTP port to listen on (0 picks a free port)
            bind_address: Address to bind to (default: all interfaces)
        """
        self.port = port
        self.bind_address = bind_address
        self.server: Optional[HTTPServer] = None
        self.thread: Optional[threading.Thread] = None
        self.scheduler = None
        self._running = False

    def set_scheduler(self, scheduler, dataset_summary: Optional[Dict[str, Dict[str, float]]] = None):
        """
        Connect to a CyclingScheduler for data.

        Args:
            scheduler: CyclingScheduler instance
            dataset_summary: Optional per-field dataset statistics for /status
        """
        self.scheduler = scheduler
        WebRequestHandler.scheduler = scheduler
        WebRequestHandler.dataset_summary = dataset_summary

    def start(self):
        """
        Start the web server in a background thread.

        Raises:
            OSError: If the address cannot be bound
        """
        if self._running:
            logger.warning("Web server already running")
            return

        # Use ThreadingMixIn for concurrent request handling
        class ThreadedHTTPServer(ThreadingMixIn, HTTPServer):
            daemon_threads = True
            allow_reuse_address = True

        try:
            self.server = ThreadedHTTPServer(
                (self.bind_address, self.port),
                WebRequestHandler
            )
        except OSError as e:
            logger.error(f"Failed to start web server on {self.bind_address}:{self.port}: {e}")
            raise

        # Pick up the real port when 0 was requested
        self.port = self.server.server_address[1]
        self._running = True

        self.thread = threading.Thread(
            target=self._serve,
            name="WebServer",
            daemon=True
        )
        self.thread.start()

        logger.info(f"Web server started on http://{self.bind_address}:{self.port}")
        logger.info(f"  GET /api/latest - Latest diagnostic record")
        logger.info(f"  GET /api/all    - Telemetry dataset")
        logger.info(f"  GET /api/health - Liveness probe")
        logger.info(f"  GET /metrics    - Prometheus metrics")

    def _serve(self):
        """Server loop (runs in background thread)."""
        self.server.serve_forever(poll_interval=0.5)

    def stop(self):
        """Stop the web server."""
        if not self._running:
            return
        self._running = False
        if self.server:
            self.server.shutdown()
            self.server.server_close()
            self.server = None
        if self.thread:
            self.thread.join(timeout=2.0)
        logger.info("Web server stopped")
