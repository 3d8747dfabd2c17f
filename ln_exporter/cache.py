"""
Incremental aggregation state for the payment log.

listsendpays is an append-only log that is re-polled from the last known
cursor on every scrape. ListPaymentsCache keeps the cursor and the running
totals for the lifetime of the process so that each payment is counted
exactly once and the exposed values only ever grow.

Precondition: lightningd assigns a strictly increasing index to every new
entry, so a page reporting a higher index than the cursor only contains
unseen entries. Pages are not deduplicated by payment identity; if the
upstream ever re-delivers entries under an advancing index they are counted
again.

Nothing here is persisted. A restart starts from cursor 0 and re-counts
the whole log.
"""

import threading
from collections import Counter
from typing import Any, Dict

from .rpc import FailureReason, PaymentsPage


class ListPaymentsCache:
    """
    Cursor plus running aggregates over the payment log.

    Callers mutate the cache only while holding ``lock``.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.cursor = 0
        self.status_counts: Counter = Counter()
        self.failure_reason_counts: Counter = Counter()
        self.total_fee_msat = 0

    def apply_page(self, page: PaymentsPage) -> bool:
        """
        Fold a page into the running totals.

        A page only counts if it reports a non-zero index past the cursor;
        anything else means nothing new and leaves the cache untouched.

        Returns:
            True if the page was aggregated
        """
        if page.next_cursor <= 0 or page.next_cursor <= self.cursor:
            return False

        for payment in page.payments:
            self.status_counts[payment.status] += 1
            self.failure_reason_counts[payment.failure_reason or FailureReason.NONE] += 1
            self.total_fee_msat += max(0, payment.fee_msat)

        self.cursor = page.next_cursor
        return True

    def total_payments(self) -> int:
        return sum(self.status_counts.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cursor': self.cursor,
            'status_counts': {s.value: n for s, n in self.status_counts.items()},
            'failure_reason_counts': {r.value: n for r, n in self.failure_reason_counts.items()},
            'total_fee_msat': self.total_fee_msat,
        }
