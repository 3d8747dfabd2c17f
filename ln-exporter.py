#!/usr/bin/env python3
"""
ln-exporter: A Prometheus exporter plugin for Core Lightning

Serves node metrics over HTTP in Prometheus text format:
- GET /metrics  peer count, block height, cumulative outgoing payment
                counts and fees, per-channel balances
- GET /health   always 200, never touches the node

Metrics are gathered when scraped, not on a timer. Every scrape runs
getinfo, listsendpays and listpeerchannels once over a single serialized
RPC connection. Payment totals are accumulated incrementally from the
listsendpays created index for the lifetime of the plugin.

Dependencies:
- pyln-client: Core Lightning plugin framework
- Core Lightning 23.11+ (listsendpays index/start)

License: MIT
"""

import os
import signal
import sys
from typing import Any, Dict, Optional

from pyln.client import LightningRpc, Plugin

from ln_exporter.cache import ListPaymentsCache
from ln_exporter.collector import NodeCollector
from ln_exporter.config import DEFAULT_LISTEN_ADDR, ConfigError, ExporterConfig
from ln_exporter.metrics import PrometheusExporter
from ln_exporter.rpc import NodeRpc


plugin = Plugin()

# Global instances (initialized in init)
config: Optional[ExporterConfig] = None
payments_cache: Optional[ListPaymentsCache] = None
metrics_exporter: Optional[PrometheusExporter] = None


# =============================================================================
# PLUGIN OPTIONS
# =============================================================================

plugin.add_option(
    name='ln-exporter-listen-addr',
    default=DEFAULT_LISTEN_ADDR,
    description=f'host:port the metrics HTTP server binds to (default: {DEFAULT_LISTEN_ADDR})'
)

plugin.add_option(
    name='ln-exporter-payments-page-size',
    default='0',
    description='Max payments read from listsendpays per scrape, 0 for no limit (default: 0)'
)


# =============================================================================
# INITIALIZATION
# =============================================================================

@plugin.init()
def init(options: Dict[str, Any], configuration: Dict[str, Any], plugin: Plugin, **kwargs):
    """
    Initialize the exporter.

    1. Parse and validate options
    2. Open a dedicated RPC connection for scraping
    3. Register the collector and start the HTTP server
    """
    global config, payments_cache, metrics_exporter

    plugin.log("Initializing ln-exporter plugin...")

    try:
        config = ExporterConfig.from_options(options, configuration)
    except ConfigError as e:
        plugin.log(f"Invalid configuration: {e}", level='error')
        return {'disable': str(e)}

    # The scraper gets its own connection so pulls never contend with
    # pyln-client's use of plugin.rpc
    rpc_socket_path = getattr(plugin.rpc, 'socket_path', None) or config.rpc_file
    if not os.path.exists(rpc_socket_path):
        return {'disable': f"Lightning RPC socket not found: {rpc_socket_path}"}

    node = NodeRpc(LightningRpc(rpc_socket_path))
    payments_cache = ListPaymentsCache()
    collector = NodeCollector(node, payments_cache, plugin=plugin,
                              payments_page_size=config.payments_page_size)
    plugin.log(f"RPC connection ready (socket={rpc_socket_path})")

    metrics_exporter = PrometheusExporter(host=config.listen_host, port=config.listen_port, plugin=plugin)
    metrics_exporter.register(collector)
    if not metrics_exporter.start_server():
        return {'disable': f"Could not start metrics server on {config.listen_addr}"}

    def handle_shutdown_signal(signum, frame):
        """
        Handle SIGTERM for clean shutdown.

        CLN sends SIGTERM when `lightning-cli plugin stop ln-exporter` is called.
        A scrape pass in flight on a server thread is abandoned with the process.
        """
        plugin.log("Received SIGTERM, stopping metrics server...")
        if metrics_exporter:
            metrics_exporter.stop_server()
        sys.exit(0)

    signal.signal(signal.SIGTERM, handle_shutdown_signal)

    plugin.log(f"ln-exporter initialized, serving metrics at http://{config.listen_addr}/metrics")


# =============================================================================
# RPC METHODS
# =============================================================================

@plugin.method("ln-exporter-status")
def exporter_status(plugin: Plugin):
    """
    Show the exporter's listen address and accumulated payment totals.
    """
    if config is None or payments_cache is None:
        return {"error": "ln-exporter not initialized"}

    with payments_cache.lock:
        payments = payments_cache.to_dict()

    return {
        "listen_addr": config.listen_addr,
        "server_running": metrics_exporter.is_running() if metrics_exporter else False,
        "payments": payments,
    }


# =============================================================================
# ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    plugin.run()
