"""
Health Monitoring HTTP Server for timedown.

Exposes the registry's countdowns for monitoring systems and simple
health checks.

Endpoints:
    GET /health     - Basic health check (200 OK if running)
    GET /status     - JSON snapshot of every countdown
    GET /metrics    - Prometheus-compatible metrics

Usage:
    from timedown.output.health_server import HealthServer

    server = HealthServer(port=8080)
    server.set_registry(registry)
    server.start()
"""

import json
import logging
import threading
import time
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

STATE_VALUES = {'CREATED': 1, 'STARTED': 2, 'STOPPED': 3, 'ENDED': 4, 'DESTROYED': 5}


def _escape_label(value: str) -> str:
    """Escape a label value for the Prometheus text format."""
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


class HealthRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for health endpoints."""

    # Class-level reference to status callback
    get_status: Optional[Callable[[], Dict[str, Any]]] = None

    def log_message(self, format, *args):
        """Route HTTP access logging to debug."""
        logger.debug("%s - %s", self.address_string(), format % args)

    def do_GET(self):
        """Handle GET requests."""
        if self.path == '/health':
            self._handle_health()
        elif self.path == '/status':
            self._handle_status()
        elif self.path == '/metrics':
            self._handle_metrics()
        else:
            self.send_error(404, "Not Found")

    def _send(self, code: int, content_type: str, body: bytes):
        self.send_response(code)
        self.send_header('Content-Type', content_type)
        self.end_headers()
        self.wfile.write(body)

    def _handle_health(self):
        """Basic health check - returns 200 if server is running."""
        self._send(200, 'text/plain', b'OK\n')

    def _handle_status(self):
        """Return JSON status of every countdown."""
        if not self.get_status:
            self._send(503, 'application/json', json.dumps({'error': 'No registry connected'}).encode())
            return
        try:
            status = self.get_status()
        except Exception as e:
            logger.exception(f"Status request failed: {e}")
            self._send(500, 'application/json', json.dumps({'error': str(e)}).encode())
            return
        self._send(200, 'application/json', json.dumps(status, indent=2).encode())

    def _handle_metrics(self):
        """Return Prometheus-compatible metrics."""
        if not self.get_status:
            self._send(503, 'text/plain', b'# No registry connected\n')
            return
        try:
            metrics = self._format_prometheus_metrics(self.get_status())
        except Exception as e:
            logger.exception(f"Metrics request failed: {e}")
            self._send(500, 'text/plain', f'# Error: {e}\n'.encode())
            return
        self._send(200, 'text/plain; version=0.0.4', metrics.encode())

    def _format_prometheus_metrics(self, status: Dict[str, Any]) -> str:
        """Format status as Prometheus metrics."""
        countdowns = status.get('countdowns', {})
        lines = [
            '# HELP timedown_countdowns Number of countdowns in the registry',
            '# TYPE timedown_countdowns gauge',
            f'timedown_countdowns {len(countdowns)}',
            '',
            '# HELP timedown_uptime_seconds Server uptime in seconds',
            '# TYPE timedown_uptime_seconds gauge',
            f'timedown_uptime_seconds {status.get("uptime_seconds", 0):.1f}',
        ]

        if countdowns:
            remaining, state, lateness, ticks = [], [], [], []
            for name, cd in countdowns.items():
                label = f'{{countdown="{_escape_label(name)}"}}'
                remaining.append(f'timedown_countdown_remaining_ms{label} {cd.get("remaining_ms") or 0}')
                state.append(f'timedown_countdown_state{label} {STATE_VALUES.get(cd.get("state"), 0)}')
                lateness.append(
                    f'timedown_countdown_tick_lateness_ms{label} {cd.get("lateness_mean_ms", 0):.3f}'
                )
                ticks.append(f'timedown_countdown_ticks_total{label} {cd.get("ticks", 0)}')

            lines.extend([
                '',
                '# HELP timedown_countdown_remaining_ms Remaining time in milliseconds',
                '# TYPE timedown_countdown_remaining_ms gauge',
                *remaining,
                '',
                '# HELP timedown_countdown_state Countdown state (1=CREATED, 2=STARTED, 3=STOPPED, 4=ENDED, 5=DESTROYED)',
                '# TYPE timedown_countdown_state gauge',
                *state,
                '',
                '# HELP timedown_countdown_tick_lateness_ms Mean scheduler lateness per tick',
                '# TYPE timedown_countdown_tick_lateness_ms gauge',
                *lateness,
                '',
                '# HELP timedown_countdown_ticks_total Ticks since the countdown last started fresh',
                '# TYPE timedown_countdown_ticks_total counter',
                *ticks,
            ])

        lines.append('')
        return '\n'.join(lines)


class HealthServer:
    """
    HTTP server for health monitoring.

    Runs in a background thread and reports on a Registry.
    """

    def __init__(self, port: int = 8080, bind_address: str = '127.0.0.1'):
        """
        Initialize the health server.

        Args:
            port: HTTP port to listen on
            bind_address: Address to bind to (default: loopback only)
        """
        self.port = port
        self.bind_address = bind_address
        self.server: Optional[HTTPServer] = None
        self.thread: Optional[threading.Thread] = None
        self.registry = None
        self.start_time = time.time()
        self._running = False

    def set_registry(self, registry):
        """
        Connect to a Registry for status reporting.

        Args:
            registry: Registry instance
        """
        self.registry = registry
        HealthRequestHandler.get_status = self._get_status

    def _get_status(self) -> Dict[str, Any]:
        """Get current status from the registry."""
        if self.registry is None:
            return {'error': 'No registry connected'}
        return {
            'timestamp': time.time(),
            'uptime_seconds': time.time() - self.start_time,
            'destroyed': self.registry.destroyed,
            'countdowns': self.registry.snapshot(),
        }

    def start(self):
        """Start the health server in a background thread."""
        if self._running:
            logger.warning("Health server already running")
            return

        try:
            self.server = HTTPServer(
                (self.bind_address, self.port),
                HealthRequestHandler
            )
        except OSError as e:
            logger.error(f"Failed to start health server: {e}")
            return

        # Set timeout so handle_request doesn't block forever
        self.server.timeout = 0.5
        self._running = True
        self.start_time = time.time()

        self.thread = threading.Thread(
            target=self._serve,
            name="HealthServer",
            daemon=True
        )
        self.thread.start()

        logger.info(f"Health server started on http://{self.bind_address}:{self.port}")
        logger.info("  GET /health  - Health check")
        logger.info("  GET /status  - JSON status")
        logger.info("  GET /metrics - Prometheus metrics")

    def _serve(self):
        """Server loop (runs in background thread)."""
        while self._running and self.server:
            try:
                self.server.handle_request()
            except OSError:
                # Socket closed by stop()
                break

    def stop(self):
        """Stop the health server."""
        if not self._running:
            return
        self._running = False
        if self.thread:
            self.thread.join(timeout=2.0)
            self.thread = None
        if self.server:
            self.server.server_close()
            self.server = None
        HealthRequestHandler.get_status = None
        logger.info("Health server stopped")
