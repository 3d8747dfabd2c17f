"""
Pytest fixtures for ln-exporter tests.

Provides mock plugin and RPC fixtures. The RPC mock answers
``call(method, params)`` from canned per-method responses, the way
pyln-client's LightningRpc is used by NodeRpc.
"""

import os
import sys
from unittest.mock import MagicMock

import pytest

# Add the repository root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ln_exporter.cache import ListPaymentsCache
from ln_exporter.rpc import NodeRpc


def make_rpc(responses):
    """
    Build a mock LightningRpc.

    Args:
        responses: method name -> response dict, exception instance, or
            list of those consumed one per call
    """
    rpc = MagicMock()

    def call(method, params=None):
        response = responses[method]
        if isinstance(response, list):
            response = response.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    rpc.call.side_effect = call
    return rpc


@pytest.fixture
def mock_plugin():
    """Create a mock plugin with basic functionality."""
    plugin = MagicMock()
    plugin.log = MagicMock()
    return plugin


@pytest.fixture
def getinfo_response():
    return {
        "id": "02" + "a" * 64,
        "alias": "test-node",
        "network": "regtest",
        "num_peers": 3,
        "blockheight": 812345,
    }


@pytest.fixture
def listsendpays_response():
    return {
        "payments": [
            {
                "created_index": 1,
                "id": 1,
                "status": "complete",
                "amount_msat": 100000,
                "amount_sent_msat": 100010,
            },
            {
                "created_index": 2,
                "id": 2,
                "status": "failed",
                "amount_msat": 50000,
                "amount_sent_msat": 50005,
            },
            {
                "created_index": 3,
                "id": 3,
                "status": "pending",
                "amount_msat": 20000,
                "amount_sent_msat": 20002,
            },
        ]
    }


@pytest.fixture
def listpeerchannels_response(sample_channel_id):
    return {
        "channels": [
            {
                "peer_id": "02" + "b" * 64,
                "peer_connected": True,
                "state": "CHANNELD_NORMAL",
                "short_channel_id": sample_channel_id,
                "channel_id": "c" * 64,
                "funding_txid": "d" * 64,
                "funding_outnum": 1,
                "total_msat": 1_000_000_000,
                "to_us_msat": 600_000_000,
                "htlcs": [
                    {"direction": "out", "amount_msat": 10_000_000},
                ],
            },
        ]
    }


@pytest.fixture
def mock_rpc(getinfo_response, listsendpays_response, listpeerchannels_response):
    """Create a mock RPC interface answering all three scrape calls."""
    return make_rpc({
        "getinfo": getinfo_response,
        "listsendpays": listsendpays_response,
        "listpeerchannels": listpeerchannels_response,
    })


@pytest.fixture
def node(mock_rpc):
    return NodeRpc(mock_rpc)


@pytest.fixture
def cache():
    return ListPaymentsCache()


@pytest.fixture
def sample_channel_id():
    """Sample channel ID for testing."""
    return "123x456x0"
