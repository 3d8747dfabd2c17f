"""
Configuration module for ln-exporter

Contains the ExporterConfig dataclass that holds the startup parameters
for the exporter, whether it runs as a Core Lightning plugin or standalone.

Configuration is validated once at startup; an invalid value is the only
kind of error that is allowed to stop the process.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, Tuple


DEFAULT_LISTEN_ADDR = '127.0.0.1:29090'
DEFAULT_RPC_FILE = '~/.lightning/bitcoin/lightning-rpc'

# Range constraints for numeric fields
CONFIG_FIELD_RANGES: Dict[str, tuple] = {
    'listen_port': (0, 65535),
    'payments_page_size': (0, 1_000_000),
}

LOG_LEVELS = ('debug', 'info', 'warn', 'error')


class ConfigError(ValueError):
    """Raised when a startup option cannot be parsed or is out of range."""


def parse_listen_addr(value: str) -> Tuple[str, int]:
    """
    Parse a ``host:port`` listen address.

    IPv6 hosts must be bracketed (``[::1]:29090``).

    Raises:
        ConfigError: if the address is malformed
    """
    value = (value or '').strip()
    host, sep, port_str = value.rpartition(':')
    if not sep or not host:
        raise ConfigError(f"Invalid listen address '{value}' (expected host:port)")

    if host.startswith('['):
        if not host.endswith(']'):
            raise ConfigError(f"Invalid listen address '{value}' (unterminated IPv6 bracket)")
        host = host[1:-1]
    elif ':' in host:
        raise ConfigError(f"Invalid listen address '{value}' (bracket IPv6 hosts)")

    try:
        port = int(port_str)
    except ValueError:
        raise ConfigError(f"Invalid port '{port_str}' in listen address '{value}'")

    return host, port


@dataclass
class ExporterConfig:
    """
    Configuration container for the exporter.

    In plugin mode the RPC socket comes from lightningd itself and rpc_file
    is informational only.
    """

    # Path to the lightningd JSON-RPC unix socket
    rpc_file: str = DEFAULT_RPC_FILE

    # HTTP server bind address
    listen_host: str = '127.0.0.1'
    listen_port: int = 29090

    # Max payments read per scrape (0 = no limit); the cursor picks up the rest
    payments_page_size: int = 0

    # Standalone runner only; in plugin mode lightningd's --log-level applies
    log_level: str = 'info'

    @property
    def listen_addr(self) -> str:
        if ':' in self.listen_host:
            return f"[{self.listen_host}]:{self.listen_port}"
        return f"{self.listen_host}:{self.listen_port}"

    def validate(self) -> None:
        """
        Check ranges and enumerations.

        Raises:
            ConfigError: on the first invalid field
        """
        for key, (min_val, max_val) in CONFIG_FIELD_RANGES.items():
            value = getattr(self, key)
            if not (min_val <= value <= max_val):
                raise ConfigError(f"Value {value} out of range [{min_val}, {max_val}] for {key}")

        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"Unknown log level '{self.log_level}' (expected one of {', '.join(LOG_LEVELS)})")

    @classmethod
    def from_options(cls, options: Dict[str, Any], configuration: Dict[str, Any] = None) -> 'ExporterConfig':
        """
        Build a validated config from plugin options.

        Args:
            options: Plugin options as passed to the init hook
            configuration: lightningd configuration from the init hook, used
                to locate the RPC socket
        """
        configuration = configuration or {}
        host, port = parse_listen_addr(options.get('ln-exporter-listen-addr', DEFAULT_LISTEN_ADDR))

        try:
            page_size = int(options.get('ln-exporter-payments-page-size', 0))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid ln-exporter-payments-page-size: {e}")

        rpc_file = DEFAULT_RPC_FILE
        ldir = configuration.get('lightning-dir')
        rpcfile = configuration.get('rpc-file')
        if ldir and rpcfile:
            rpc_file = rpcfile if os.path.isabs(rpcfile) else os.path.join(ldir, rpcfile)

        config = cls(
            rpc_file=os.path.expanduser(rpc_file),
            listen_host=host,
            listen_port=port,
            payments_page_size=page_size,
        )
        config.validate()
        return config
