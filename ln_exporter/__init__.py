"""
ln-exporter package

Prometheus exporter for a Core Lightning node:
- rpc: serialized RPC handle and response translation
- cache: incremental payment-log aggregates
- scrapers: getinfo / listsendpays / listpeerchannels scrape routines
- collector: one scrape pass per metrics pull
- metrics: text exposition and the /metrics + /health HTTP server
- config: startup configuration
"""

from .cache import ListPaymentsCache
from .collector import NodeCollector
from .config import ConfigError, ExporterConfig
from .metrics import MetricNames, MetricSample, PrometheusExporter
from .rpc import (
    ChannelBalance, FailureReason, NodeInfo, NodeRpc, Payment, PaymentStatus, PaymentsPage,
)

__version__ = '0.1.0'

__all__ = [
    'ListPaymentsCache',
    'NodeCollector',
    'ConfigError',
    'ExporterConfig',
    'MetricNames',
    'MetricSample',
    'PrometheusExporter',
    'ChannelBalance',
    'FailureReason',
    'NodeInfo',
    'NodeRpc',
    'Payment',
    'PaymentStatus',
    'PaymentsPage',
]
