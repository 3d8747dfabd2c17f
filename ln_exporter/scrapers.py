"""
Scrapers for ln-exporter

One scrape routine per metric family. Each takes the RPC handle (already
held exclusively by the caller) and returns the samples for its family:

- scrape_getinfo: peer count and block height
- scrape_listpayments: cumulative payment counts and fees (uses the cache)
- scrape_listchannels: per-channel balances

The scrape_* functions raise whatever the RPC call raised. run_scraper is
the boundary that turns a failure into a log line and zero samples.
"""

import time
from typing import Callable, List, Tuple

from .cache import ListPaymentsCache
from .metrics import MetricNames, MetricSample
from .rpc import FailureReason, NodeRpc, PaymentStatus


PAYMENT_STATUS_LABELS = {
    PaymentStatus.UNKNOWN: "unknown",
    PaymentStatus.IN_FLIGHT: "in_flight",
    PaymentStatus.SUCCEEDED: "succeeded",
    PaymentStatus.FAILED: "failed",
}

FAILURE_REASON_LABELS = {
    FailureReason.NONE: "none",
    FailureReason.TIMEOUT: "timeout",
    FailureReason.NO_ROUTE: "no_route",
    FailureReason.ERROR: "error",
    FailureReason.INCORRECT_PAYMENT_DETAILS: "incorrect_payment_details",
    FailureReason.INSUFFICIENT_BALANCE: "insufficient_balance",
}

for _enum, _table in ((PaymentStatus, PAYMENT_STATUS_LABELS), (FailureReason, FAILURE_REASON_LABELS)):
    _missing = set(_enum) - set(_table)
    if _missing:
        raise RuntimeError(f"No label for {_enum.__name__} members: {sorted(m.name for m in _missing)}")

def scrape_getinfo(node: NodeRpc) -> List[MetricSample]:
    info = node.get_node_info()
    return [
        MetricSample.of(MetricNames.NUM_PEERS_TOTAL, info.peer_count),
        MetricSample.of(MetricNames.BLOCK_HEIGHT, info.block_height),
    ]


def scrape_listpayments(node: NodeRpc, cache: ListPaymentsCache, page_size: int = 0) -> List[MetricSample]:
    """
    Poll the payment log from the cache cursor and emit the running totals.

    Samples always reflect the full accumulated state, whether or not the
    poll brought anything new. The cache is only mutated after the RPC call
    returned, so a failed call leaves it untouched.
    """
    page = node.list_payments(include_incomplete=True, cursor=cache.cursor, limit=page_size)
    cache.apply_page(page)
    return payment_samples(cache)


def payment_samples(cache: ListPaymentsCache) -> List[MetricSample]:
    samples = []

    for status, count in cache.status_counts.items():
        samples.append(MetricSample.of(
            MetricNames.OUTGOING_PAYMENTS, count, {"status": PAYMENT_STATUS_LABELS[status]}
        ))

    for reason, count in cache.failure_reason_counts.items():
        samples.append(MetricSample.of(
            MetricNames.PAYMENT_FAILURE_REASONS, count, {"reason": FAILURE_REASON_LABELS[reason]}
        ))

    samples.append(MetricSample.of(MetricNames.TOTAL_FEE_MSAT, cache.total_fee_msat))
    return samples


def scrape_listchannels(node: NodeRpc) -> List[MetricSample]:
    samples = []

    for channel in node.list_channels():
        active = "true" if channel.active else "false"
        for balance_type, value in (
            ("local", channel.local_balance),
            ("remote", channel.remote_balance),
            ("unsettled", channel.unsettled_balance),
        ):
            samples.append(MetricSample.of(
                MetricNames.CHANNEL_BALANCE_TOTAL_SAT,
                value,
                {
                    "chan_id": channel.chan_id,
                    "active": active,
                    "channel_point": channel.channel_point,
                    "balance_type": balance_type,
                },
            ))

    return samples


def run_scraper(name: str, scrape: Callable[[], List[MetricSample]], plugin=None) -> Tuple[List[MetricSample], bool, float]:
    """
    Run one scraper, isolating its failure from the rest of the pass.

    Returns:
        Tuple of (samples, succeeded, duration in seconds). A failed scraper
        yields no samples.
    """
    if plugin:
        plugin.log(f"Scraping {name}", level='debug')

    start = time.monotonic()
    try:
        samples = scrape()
        ok = True
    except Exception as e:
        # RpcError, socket errors and malformed responses are all handled alike
        if plugin:
            plugin.log(f"Failed to collect {name} metrics ERROR={e!r}", level='error')
        samples = []
        ok = False

    return samples, ok, time.monotonic() - start
