"""
Standalone runner: ``python -m ln_exporter --rpc-file ~/.lightning/bitcoin/lightning-rpc``

Same exporter as the plugin, talking to lightningd over its RPC socket
instead of running inside it. Startup errors (missing socket, bad listen
address) exit the process; nothing after startup does.
"""

import argparse
import logging
import os
import signal
import sys
import threading

from pyln.client import LightningRpc

from .cache import ListPaymentsCache
from .collector import NodeCollector
from .config import DEFAULT_LISTEN_ADDR, DEFAULT_RPC_FILE, ConfigError, ExporterConfig, parse_listen_addr
from .metrics import PrometheusExporter
from .rpc import NodeRpc


LOGGING_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warn': logging.WARNING,
    'error': logging.ERROR,
}


class StandaloneLog:
    """Plugin-style ``log(message, level)`` sink backed by the logging module."""

    def __init__(self, name: str = 'ln_exporter'):
        self._logger = logging.getLogger(name)

    def log(self, message: str, level: str = 'info'):
        self._logger.log(LOGGING_LEVELS.get(level, logging.INFO), message)


def parse_args(argv=None) -> ExporterConfig:
    parser = argparse.ArgumentParser(prog='ln-exporter', description='Prometheus exporter for Core Lightning')
    parser.add_argument('--rpc-file', default=DEFAULT_RPC_FILE,
                        help=f'Path to the lightningd RPC socket (default: {DEFAULT_RPC_FILE})')
    parser.add_argument('--exporter-listen-addr', default=DEFAULT_LISTEN_ADDR,
                        help=f'host:port to serve /metrics on (default: {DEFAULT_LISTEN_ADDR})')
    parser.add_argument('--payments-page-size', type=int, default=0,
                        help='Max payments read per scrape, 0 for no limit (default: 0)')
    parser.add_argument('--log-level', default='info', choices=sorted(LOGGING_LEVELS))
    args = parser.parse_args(argv)

    try:
        host, port = parse_listen_addr(args.exporter_listen_addr)
        config = ExporterConfig(
            rpc_file=os.path.expanduser(args.rpc_file),
            listen_host=host,
            listen_port=port,
            payments_page_size=args.payments_page_size,
            log_level=args.log_level,
        )
        config.validate()
    except ConfigError as e:
        parser.error(str(e))

    return config


def main(argv=None) -> int:
    config = parse_args(argv)

    logging.basicConfig(
        level=LOGGING_LEVELS[config.log_level],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    log = StandaloneLog()

    if not os.path.exists(config.rpc_file):
        log.log(f"Lightning RPC socket not found: {config.rpc_file}", level='error')
        return 1

    node = NodeRpc(LightningRpc(config.rpc_file))
    collector = NodeCollector(node, ListPaymentsCache(), plugin=log,
                              payments_page_size=config.payments_page_size)
    log.log(f"Using lightningd RPC socket at {config.rpc_file}")

    exporter = PrometheusExporter(host=config.listen_host, port=config.listen_port, plugin=log)
    exporter.register(collector)
    if not exporter.start_server():
        return 1

    shutdown_event = threading.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, lambda *_: shutdown_event.set())

    shutdown_event.wait()
    exporter.stop_server()
    return 0


if __name__ == '__main__':
    sys.exit(main())
