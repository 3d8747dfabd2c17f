"""
Collector for ln-exporter

Runs one scrape pass per metrics pull. The pass holds the RPC handle for
its whole duration, so concurrent pulls serialize: a second pull waits
until the first has finished all three scrapers before issuing any call.
The payment cache lock is taken only around the listsendpays round trip.

There is no cancellation. A pass started for a request whose client went
away still runs to completion, since it may already have advanced the
cache.
"""

from typing import List

from .cache import ListPaymentsCache
from .metrics import MetricNames, MetricSample
from .rpc import NodeRpc
from .scrapers import run_scraper, scrape_getinfo, scrape_listchannels, scrape_listpayments


class NodeCollector:
    """
    Pull-triggered collector over a Lightning node.

    Both shared resources are explicit dependencies so tests and the
    plugin can hand in their own.
    """

    def __init__(self, node: NodeRpc, cache: ListPaymentsCache, plugin=None, payments_page_size: int = 0):
        self.node = node
        self.cache = cache
        self.plugin = plugin
        self.payments_page_size = payments_page_size

    def _scrape_payments(self) -> List[MetricSample]:
        with self.cache.lock:
            return scrape_listpayments(self.node, self.cache, self.payments_page_size)

    def collect(self) -> List[MetricSample]:
        """Run node info, payments and channels scrapers in that order."""
        samples: List[MetricSample] = []
        health: List[MetricSample] = []

        with self.node.exclusive():
            for name, scrape in (
                ("getinfo", lambda: scrape_getinfo(self.node)),
                ("listpayments", self._scrape_payments),
                ("listchannels", lambda: scrape_listchannels(self.node)),
            ):
                scraped, ok, duration = run_scraper(name, scrape, self.plugin)
                samples.extend(scraped)
                health.append(MetricSample.of(MetricNames.SCRAPE_SUCCESS, 1 if ok else 0, {"scraper": name}))
                health.append(MetricSample.of(MetricNames.SCRAPE_DURATION_SECONDS, duration, {"scraper": name}))

        return samples + health
