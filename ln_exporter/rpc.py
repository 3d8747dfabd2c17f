"""
RPC handle for ln-exporter

Wraps the lightningd JSON-RPC connection (a pyln-client LightningRpc, or
the plugin's own ``plugin.rpc``) behind the three queries the scrapers
need, and translates Core Lightning responses into plain dataclasses.

pyln-client's RPC object is not safe for concurrent calls. The handle
carries a lock and callers must hold it via ``exclusive()`` for as long as
they issue calls, so two scrape passes never interleave on the socket.

No retries and no timeouts beyond what the transport provides. Errors
propagate to the caller unchanged:
- pyln.client.RpcError for errors returned by lightningd
- OSError for socket / transport failures
- KeyError / TypeError / ValueError for malformed responses
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List


class PaymentStatus(Enum):
    """Status of an outgoing payment."""
    UNKNOWN = "unknown"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureReason(Enum):
    """Why an outgoing payment failed. NONE for payments that did not fail."""
    NONE = "none"
    TIMEOUT = "timeout"
    NO_ROUTE = "no_route"
    ERROR = "error"
    INCORRECT_PAYMENT_DETAILS = "incorrect_payment_details"
    INSUFFICIENT_BALANCE = "insufficient_balance"


# Core Lightning sendpay status -> PaymentStatus
SENDPAY_STATUS = {
    'pending': PaymentStatus.IN_FLIGHT,
    'complete': PaymentStatus.SUCCEEDED,
    'failed': PaymentStatus.FAILED,
}


@dataclass(frozen=True)
class NodeInfo:
    peer_count: int
    block_height: int


@dataclass(frozen=True)
class Payment:
    status: PaymentStatus
    failure_reason: FailureReason = FailureReason.NONE
    fee_msat: int = 0


@dataclass(frozen=True)
class PaymentsPage:
    """
    One page of the payment log.

    next_cursor is the highest log index contained in the page, or 0 when
    the page is empty.
    """
    next_cursor: int
    payments: List[Payment] = field(default_factory=list)


@dataclass(frozen=True)
class ChannelBalance:
    """Point-in-time balances of one channel, in sats."""
    chan_id: str
    active: bool
    channel_point: str
    local_balance: int
    remote_balance: int
    unsettled_balance: int


def _msat(value: Any) -> int:
    """Convert an msat field (int, Millisatoshi or '123msat' string) to int."""
    if isinstance(value, str) and value.endswith('msat'):
        value = value[:-4]
    return int(value)


def parse_payment(entry: Dict[str, Any]) -> Payment:
    """
    Translate one ``listsendpays`` entry.

    lightningd does not classify sendpay failures, so every failed part is
    counted under FailureReason.ERROR. The fee is only known once a payment
    completes.
    """
    status = SENDPAY_STATUS.get(entry.get('status'), PaymentStatus.UNKNOWN)
    reason = FailureReason.ERROR if status == PaymentStatus.FAILED else FailureReason.NONE

    fee_msat = 0
    if status == PaymentStatus.SUCCEEDED and 'amount_msat' in entry and 'amount_sent_msat' in entry:
        fee_msat = max(0, _msat(entry['amount_sent_msat']) - _msat(entry['amount_msat']))

    return Payment(status=status, failure_reason=reason, fee_msat=fee_msat)


def parse_channel(chan: Dict[str, Any]) -> ChannelBalance:
    """Translate one ``listpeerchannels`` entry, converting msat to sats."""
    total_msat = _msat(chan['total_msat'])
    to_us_msat = _msat(chan['to_us_msat'])
    unsettled_msat = sum(_msat(htlc['amount_msat']) for htlc in chan.get('htlcs', []))
    remote_msat = max(0, total_msat - to_us_msat - unsettled_msat)

    active = bool(chan.get('peer_connected')) and chan.get('state') == 'CHANNELD_NORMAL'

    return ChannelBalance(
        chan_id=chan.get('short_channel_id') or chan['channel_id'],
        active=active,
        channel_point=f"{chan['funding_txid']}:{chan['funding_outnum']}",
        local_balance=to_us_msat // 1000,
        remote_balance=remote_msat // 1000,
        unsettled_balance=unsettled_msat // 1000,
    )


class NodeRpc:
    """
    Single shared connection to lightningd.

    Usage:
        node = NodeRpc(LightningRpc(socket_path))
        with node.exclusive() as rpc:
            info = rpc.get_node_info()
    """

    def __init__(self, rpc):
        """
        Args:
            rpc: pyln-client LightningRpc (or plugin.rpc)
        """
        self.rpc = rpc
        self._lock = threading.Lock()

    @contextmanager
    def exclusive(self) -> Iterator['NodeRpc']:
        """Hold the connection for a sequence of calls; released on every exit path."""
        with self._lock:
            yield self

    def locked(self) -> bool:
        return self._lock.locked()

    def get_node_info(self) -> NodeInfo:
        info = self.rpc.call('getinfo', {})
        return NodeInfo(peer_count=int(info['num_peers']), block_height=int(info['blockheight']))

    def list_payments(self, include_incomplete: bool, cursor: int, limit: int = 0) -> PaymentsPage:
        """
        Read the payment log after ``cursor``.

        Uses the ``created`` index of listsendpays (Core Lightning 23.11+):
        every sendpay gets a strictly increasing created_index, so a page
        starting past the cursor only contains entries not seen before.
        Pending entries are still counted toward next_cursor when
        include_incomplete is False, they are just left out of the page.
        """
        params: Dict[str, Any] = {'index': 'created', 'start': cursor + 1}
        if limit > 0:
            params['limit'] = limit

        res = self.rpc.call('listsendpays', params)

        next_cursor = 0
        payments = []
        for entry in res.get('payments', []):
            next_cursor = max(next_cursor, int(entry['created_index']))
            payment = parse_payment(entry)
            if payment.status == PaymentStatus.IN_FLIGHT and not include_incomplete:
                continue
            payments.append(payment)

        return PaymentsPage(next_cursor=next_cursor, payments=payments)

    def list_channels(self) -> List[ChannelBalance]:
        res = self.rpc.call('listpeerchannels', {})
        return [parse_channel(chan) for chan in res.get('channels', [])]
