"""
Prometheus Metrics Exporter module for ln-exporter

This module provides a lightweight, thread-safe Prometheus metrics exporter
using only the Python standard library (no prometheus_client or flask).

Features:
- Pull-model collection: registered collectors are asked for samples on
  every /metrics request, nothing is gathered on a timer
- Thread-safe collector registry using threading.Lock
- Support for labels (e.g., {chan_id="...", balance_type="local"})
- Background HTTP server for /metrics and /health
- Standard Prometheus text format output

All metric names are prefixed with 'ln_' to avoid collisions.
"""

import re
import socket
import threading
import time
from dataclasses import dataclass
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
from typing import Dict, List, Optional, Tuple, Iterable


class MetricType:
    """Metric type constants."""
    GAUGE = "gauge"


@dataclass(frozen=True)
class MetricSample:
    """
    One (name, labels, value) unit of exposed telemetry.

    Labels are stored as a sorted tuple of (key, value) pairs so samples are
    hashable and compare equal regardless of the order labels were given in.
    """
    name: str
    labels: Tuple[Tuple[str, str], ...]
    value: float

    @classmethod
    def of(cls, name: str, value: float,
           labels: Optional[Dict[str, str]] = None) -> 'MetricSample':
        return cls(name, tuple(sorted((labels or {}).items())), value)

    def label(self, key: str) -> Optional[str]:
        for k, v in self.labels:
            if k == key:
                return v
        return None


class EncodeError(Exception):
    """Raised when gathered samples cannot be rendered to text format."""


_METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
_LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def _escape_label_value(value: str) -> str:
    return value.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n')


def _format_value(value: float) -> str:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise EncodeError(f"Non-numeric sample value: {value!r}")
    if isinstance(value, int):
        return str(value)
    if value != value:
        return "NaN"
    if value in (float('inf'), float('-inf')):
        return "+Inf" if value > 0 else "-Inf"
    return repr(value)


def encode_text(samples: Iterable[MetricSample]) -> str:
    """
    Format samples in Prometheus text format.

    Samples sharing a name are grouped under one HELP/TYPE header, in the
    order the name was first seen.

    Raises:
        EncodeError: if a sample has an invalid name or value
    """
    families: Dict[str, List[MetricSample]] = {}
    for sample in samples:
        if not _METRIC_NAME_RE.match(sample.name):
            raise EncodeError(f"Invalid metric name: {sample.name!r}")
        for key, _ in sample.labels:
            if not _LABEL_NAME_RE.match(key):
                raise EncodeError(f"Invalid label name {key!r} on {sample.name}")
        families.setdefault(sample.name, []).append(sample)

    lines = []
    for name, family in families.items():
        help_text = METRIC_HELP.get(name, "")
        if help_text:
            lines.append(f"# HELP {name} {help_text}")
        # Everything is exposed gauge-shaped, including the cumulative payment totals
        lines.append(f"# TYPE {name} {MetricType.GAUGE}")

        for sample in family:
            value = _format_value(sample.value)
            if sample.labels:
                label_strs = [f'{k}="{_escape_label_value(str(v))}"' for k, v in sample.labels]
                lines.append(f"{name}{{{','.join(label_strs)}}} {value}")
            else:
                lines.append(f"{name} {value}")

    lines.append("")
    return "\n".join(lines)


class _ExporterHTTPServer(ThreadingHTTPServer):
    """One thread per request; quick rebind after restart."""
    allow_reuse_address = True
    daemon_threads = True


class PrometheusExporter:
    """
    Lightweight pull-model Prometheus exporter.

    Usage:
        exporter = PrometheusExporter(host="127.0.0.1", port=29090, plugin=plugin)
        exporter.register(collector)
        exporter.start_server()

    A collector is any object with a ``collect()`` method returning a list of
    MetricSample. Each /metrics request calls every registered collector once.
    """

    CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

    def __init__(self, host: str = "127.0.0.1", port: int = 29090, plugin=None):
        """
        Initialize the Prometheus exporter.

        Args:
            host: Interface to bind the HTTP server to
            port: HTTP server port (0 picks a free port)
            plugin: Optional object with a ``log(message, level)`` method
        """
        self.host = host
        self.port = port
        self.plugin = plugin

        self._lock = threading.Lock()
        self._collectors: List = []

        self._server: Optional[ThreadingHTTPServer] = None
        self._server_thread: Optional[threading.Thread] = None
        self._running = False

    def _log(self, message: str, level: str = 'info'):
        """Log a message using the plugin logger if available."""
        if self.plugin:
            self.plugin.log(message, level=level)

    def register(self, collector) -> None:
        with self._lock:
            if collector in self._collectors:
                raise ValueError("Collector already registered")
            self._collectors.append(collector)

    def unregister(self, collector) -> None:
        with self._lock:
            self._collectors.remove(collector)

    def gather(self) -> List[MetricSample]:
        """Run every registered collector and concatenate their samples."""
        with self._lock:
            collectors = list(self._collectors)

        samples: List[MetricSample] = []
        for collector in collectors:
            samples.extend(collector.collect())
        return samples

    def format_prometheus(self) -> str:
        """
        Gather and format all metrics in Prometheus text format.

        Returns:
            String in Prometheus text exposition format
        """
        return encode_text(self.gather())

    def handle(self, method: str, path: str) -> Tuple[int, str, bytes]:
        """
        Route a request to a (status, content type, body) response.

        /health never touches the collectors.
        """
        path = path.split('?', 1)[0]

        if method == 'GET' and path == '/health':
            return 200, 'text/plain', b''

        if method == 'GET' and path == '/metrics':
            try:
                content = self.format_prometheus()
            except EncodeError as e:
                self._log(f"Failed to encode metrics: {e}", level='error')
                return 500, 'text/plain', b'Failed to encode metrics'
            return 200, self.CONTENT_TYPE, content.encode('utf-8')

        return 404, 'text/plain', b''

    def _create_request_handler(self):
        """Create a request handler class with access to the exporter."""
        exporter = self

        class MetricsHandler(BaseHTTPRequestHandler):
            """HTTP request handler for /metrics and /health."""

            def log_message(self, format, *args):
                # Requests are logged once in _respond
                pass

            def _respond(self):
                start_time = time.monotonic()
                status, content_type, body = exporter.handle(self.command, self.path)
                try:
                    self.send_response(status)
                    self.send_header('Content-Type', content_type)
                    self.send_header('Content-Length', str(len(body)))
                    self.end_headers()
                    if self.command != 'HEAD':
                        self.wfile.write(body)
                except (BrokenPipeError, ConnectionResetError):
                    # Client went away; the scrape pass already ran to completion
                    pass

                exporter._log(
                    f"{self.command} {self.path} {self.client_address[0]} "
                    f"{status} {time.monotonic() - start_time:.6f}"
                )

            do_GET = _respond
            do_HEAD = _respond
            do_POST = _respond
            do_PUT = _respond
            do_DELETE = _respond
            do_PATCH = _respond

        return MetricsHandler

    def start_server(self) -> bool:
        """
        Start the HTTP server in a background thread.

        Returns:
            True if server started successfully, False otherwise
        """
        if self._running:
            self._log("Prometheus server already running")
            return True

        try:
            handler = self._create_request_handler()
            self._server = _ExporterHTTPServer((self.host, self.port), handler)
            self.port = self._server.server_address[1]

            self._server_thread = threading.Thread(
                target=self._run_server,
                daemon=True,
                name="prometheus-exporter"
            )
            self._server_thread.start()
            self._running = True

            self._log(f"Exporter listening at {self.host}:{self.port}")
            return True

        except OSError as e:
            if e.errno == 98:  # Address already in use
                self._log(
                    f"Exporter port {self.port} is already in use. Metrics will not be exported.",
                    level='error'
                )
            elif isinstance(e, socket.gaierror):
                self._log(f"Cannot resolve listen host {self.host}: {e}", level='error')
            else:
                self._log(f"Failed to start Prometheus server: {e}", level='error')
            return False

    def _run_server(self):
        """Run the HTTP server (called in background thread)."""
        try:
            self._server.serve_forever()
        except Exception as e:
            self._log(f"Prometheus server error: {e}", level='error')
            self._running = False

    def stop_server(self):
        """Stop the HTTP server."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._running = False
            self._log("Prometheus metrics server stopped")

    def is_running(self) -> bool:
        """Check if the server is running."""
        return self._running


# Metric name constants for consistency across modules
class MetricNames:
    """
    Standard metric names for ln-exporter.

    All names are prefixed with 'ln_' to avoid collisions.
    """

    # getinfo (Gauges)
    NUM_PEERS_TOTAL = "ln_num_peers_total"
    BLOCK_HEIGHT = "ln_block_height"

    # listsendpays (cumulative, exposed as gauges)
    OUTGOING_PAYMENTS = "ln_outgoing_payments"
    PAYMENT_FAILURE_REASONS = "ln_payment_failure_reasons"
    TOTAL_FEE_MSAT = "ln_total_fee_msat"

    # listpeerchannels (Gauges)
    CHANNEL_BALANCE_TOTAL_SAT = "ln_channel_balance_total_sat"

    # Exporter health (Gauges)
    SCRAPE_SUCCESS = "ln_scrape_success"
    SCRAPE_DURATION_SECONDS = "ln_scrape_duration_seconds"


# Help text for each metric
METRIC_HELP = {
    MetricNames.NUM_PEERS_TOTAL: "Number of peers currently connected to the node",
    MetricNames.BLOCK_HEIGHT: "Block height the node is synced to",
    MetricNames.OUTGOING_PAYMENTS: "Outgoing payments observed since exporter start, by status",
    MetricNames.PAYMENT_FAILURE_REASONS: "Outgoing payments observed since exporter start, by failure reason",
    MetricNames.TOTAL_FEE_MSAT: "Routing fees paid on outgoing payments since exporter start, in msat",
    MetricNames.CHANNEL_BALANCE_TOTAL_SAT: "Channel balance in sats, by balance type",
    MetricNames.SCRAPE_SUCCESS: "1 if the last scrape of this RPC call succeeded, 0 otherwise",
    MetricNames.SCRAPE_DURATION_SECONDS: "Duration of the last scrape of this RPC call",
}
