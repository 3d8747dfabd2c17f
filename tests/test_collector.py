"""
Tests for NodeCollector - one scrape pass per metrics pull.

Tests:
- Fixed scraper order and concatenated output
- Independent scraper failure
- Serialization of concurrent passes on the RPC handle
"""

import threading
import time
from unittest.mock import MagicMock

from pyln.client import RpcError

from ln_exporter.cache import ListPaymentsCache
from ln_exporter.collector import NodeCollector
from ln_exporter.metrics import MetricNames
from ln_exporter.rpc import NodeRpc

from conftest import make_rpc


SCRAPE_FAMILIES = {
    MetricNames.NUM_PEERS_TOTAL,
    MetricNames.BLOCK_HEIGHT,
    MetricNames.OUTGOING_PAYMENTS,
    MetricNames.PAYMENT_FAILURE_REASONS,
    MetricNames.TOTAL_FEE_MSAT,
    MetricNames.CHANNEL_BALANCE_TOTAL_SAT,
}


def names(samples):
    return [s.name for s in samples]


def health(samples):
    return {s.label("scraper"): s.value for s in samples if s.name == MetricNames.SCRAPE_SUCCESS}


class TestCollect:

    def test_scraper_order(self, node, cache, mock_rpc, mock_plugin):
        collector = NodeCollector(node, cache, plugin=mock_plugin)

        samples = collector.collect()

        assert [c.args[0] for c in mock_rpc.call.call_args_list] == [
            "getinfo", "listsendpays", "listpeerchannels",
        ]
        family_order = [n for n in names(samples) if n in SCRAPE_FAMILIES]
        assert family_order[:2] == [MetricNames.NUM_PEERS_TOTAL, MetricNames.BLOCK_HEIGHT]
        assert family_order[-3:] == [MetricNames.CHANNEL_BALANCE_TOTAL_SAT] * 3
        assert health(samples) == {"getinfo": 1, "listpayments": 1, "listchannels": 1}

    def test_getinfo_failure_does_not_abort_pass(self, listsendpays_response, listpeerchannels_response, mock_plugin):
        """Node info fails, payments and channels still come through."""
        rpc = make_rpc({
            "getinfo": RpcError("getinfo", {}, {"code": -1, "message": "unavailable"}),
            "listsendpays": listsendpays_response,
            "listpeerchannels": listpeerchannels_response,
        })
        collector = NodeCollector(NodeRpc(rpc), ListPaymentsCache(), plugin=mock_plugin)

        emitted = set(names(collector.collect()))

        assert MetricNames.NUM_PEERS_TOTAL not in emitted
        assert MetricNames.BLOCK_HEIGHT not in emitted
        assert MetricNames.OUTGOING_PAYMENTS in emitted
        assert MetricNames.TOTAL_FEE_MSAT in emitted
        assert MetricNames.CHANNEL_BALANCE_TOTAL_SAT in emitted

    def test_unexpected_error_does_not_abort_pass(self, listsendpays_response, listpeerchannels_response, mock_plugin):
        """An error outside the RPC error types is isolated the same way."""
        rpc = make_rpc({
            "getinfo": RuntimeError("unexpected"),
            "listsendpays": listsendpays_response,
            "listpeerchannels": listpeerchannels_response,
        })
        collector = NodeCollector(NodeRpc(rpc), ListPaymentsCache(), plugin=mock_plugin)

        samples = collector.collect()
        emitted = set(names(samples))

        assert MetricNames.NUM_PEERS_TOTAL not in emitted
        assert MetricNames.OUTGOING_PAYMENTS in emitted
        assert MetricNames.CHANNEL_BALANCE_TOTAL_SAT in emitted
        assert health(samples) == {"getinfo": 0, "listpayments": 1, "listchannels": 1}
        mock_plugin.log.assert_any_call(
            "Failed to collect getinfo metrics ERROR=RuntimeError('unexpected')", level='error'
        )

    def test_all_failing_returns_only_health(self, mock_plugin):
        rpc = make_rpc({
            "getinfo": OSError("down"),
            "listsendpays": OSError("down"),
            "listpeerchannels": OSError("down"),
        })
        collector = NodeCollector(NodeRpc(rpc), ListPaymentsCache(), plugin=mock_plugin)

        samples = collector.collect()

        assert not set(names(samples)) & SCRAPE_FAMILIES
        assert health(samples) == {"getinfo": 0, "listpayments": 0, "listchannels": 0}

    def test_locks_released_after_failure(self, mock_plugin):
        rpc = make_rpc({
            "getinfo": OSError("down"),
            "listsendpays": OSError("down"),
            "listpeerchannels": OSError("down"),
        })
        node = NodeRpc(rpc)
        cache = ListPaymentsCache()

        NodeCollector(node, cache, plugin=mock_plugin).collect()

        assert not node.locked()
        assert not cache.lock.locked()

    def test_payments_accumulate_across_pulls(self, getinfo_response, listpeerchannels_response, listsendpays_response):
        new_payment = {"payments": [{"created_index": 4, "status": "complete",
                                     "amount_msat": 1000, "amount_sent_msat": 1001}]}
        rpc = make_rpc({
            "getinfo": getinfo_response,
            "listsendpays": [listsendpays_response, {"payments": []}, new_payment],
            "listpeerchannels": listpeerchannels_response,
        })
        cache = ListPaymentsCache()
        collector = NodeCollector(NodeRpc(rpc), cache)

        collector.collect()
        collector.collect()
        samples = collector.collect()

        succeeded = [s.value for s in samples
                     if s.name == MetricNames.OUTGOING_PAYMENTS and s.label("status") == "succeeded"]
        assert succeeded == [2]
        assert cache.cursor == 4
        assert cache.total_fee_msat == 11

    def test_payments_page_size_is_passed(self, node, cache, mock_rpc):
        NodeCollector(node, cache, payments_page_size=25).collect()

        mock_rpc.call.assert_any_call('listsendpays', {'index': 'created', 'start': 1, 'limit': 25})


class TestConcurrency:
    """Concurrent pulls serialize on the RPC handle."""

    def test_passes_never_interleave(self, getinfo_response, listsendpays_response, listpeerchannels_response):
        in_flight = []
        max_in_flight = [0]
        calls = []
        guard = threading.Lock()
        responses = {
            "getinfo": getinfo_response,
            "listsendpays": listsendpays_response,
            "listpeerchannels": listpeerchannels_response,
        }

        def call(method, params=None):
            with guard:
                in_flight.append(method)
                max_in_flight[0] = max(max_in_flight[0], len(in_flight))
                calls.append(method)
            time.sleep(0.01)
            with guard:
                in_flight.remove(method)
            return responses[method]

        rpc = MagicMock()
        rpc.call.side_effect = call
        cache = ListPaymentsCache()
        collector = NodeCollector(NodeRpc(rpc), cache)

        threads = [threading.Thread(target=collector.collect) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert max_in_flight[0] == 1
        assert calls == ["getinfo", "listsendpays", "listpeerchannels"] * 4
        # Same page four times: only the first advanced the cursor
        assert cache.total_payments() == 3
