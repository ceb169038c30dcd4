import itertools
import threading
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from datetime import datetime
from typing import Generic, TypeVar

from dispatch.models import Bid, BidStatus, Call, CallStatus


def call_key(call_id: str) -> str:
    return f"call:{call_id}"


def bid_key(bid_id: str) -> str:
    return f"bid:{bid_id}"


def marketplace_key(marketplace_id: str) -> str:
    return f"marketplace:{marketplace_id}"


def tenant_key(company_code: str) -> str:
    return f"tenant:{company_code}"


def oncall_key(company_code: str) -> str:
    return f"oncall:{company_code}"


K = TypeVar("K")
V = TypeVar("V")


class InMemoryKeyValueDatabase(Generic[K, V]):
    """
    In-memory key/value database guarded by a single re-entrant lock.

    Every read-modify-write of shared records goes through `transaction()`
    or one of the atomic helpers below, so request handlers running on
    different threads cannot interleave inside a check-and-set.
    """

    def __init__(self) -> None:
        self._store: MutableMapping[K, V] = {}
        self._lock = threading.RLock()
        self._seq = itertools.count(1)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            yield

    def next_seq(self) -> int:
        with self._lock:
            return next(self._seq)

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._store[key] = value

    def get(self, key: K) -> V | None:
        return self._store.get(key)

    def all(self) -> list[V]:
        with self._lock:
            return list(self._store.values())

    def calls(self) -> list[Call]:
        return [v for v in self.all() if isinstance(v, Call)]

    def bids_for_call(self, call_id: str) -> list[Bid]:
        """All bids on a call in submission order."""
        bids = [v for v in self.all() if isinstance(v, Bid) and v.call_id == call_id]
        return sorted(bids, key=lambda b: b.seq)

    def resolve_call_if_open(
        self,
        key: K,
        status: CallStatus,
        now: datetime,
        *,
        assigned_to: str | None = None,
        assigned_company: str | None = None,
        accepted_bid_key: K | None = None,
        actor: str | None = None,
    ) -> list[Bid] | None:
        """
        Atomically move an open call to a terminal status.

        Returns the bids superseded by the transition on success, or None
        when the call is missing, no longer open, past its deadline (in
        which case it is expired here), not yet due (for expiry), or the
        bid to accept is not pending on this call.
        """
        with self._lock:
            call = self._store.get(key)
            if not isinstance(call, Call) or call.status != CallStatus.OPEN:
                return None

            due = now > call.expires_at
            if status == CallStatus.EXPIRED:
                if not due:
                    return None
                return self._apply_resolution(call, status, now)

            # the deadline is re-checked on every attempt, not left to the sweeper
            if due:
                self._apply_resolution(call, CallStatus.EXPIRED, now)
                return None

            if accepted_bid_key is not None:
                bid = self._store.get(accepted_bid_key)
                if (
                    not isinstance(bid, Bid)
                    or bid.call_id != call.id
                    or bid.status != BidStatus.PENDING
                ):
                    return None
                bid.status = BidStatus.ACCEPTED
                bid.decided_at = now
                bid.decided_by = actor
                call.accepted_bid_id = bid.id
                assigned_to = bid.bidder_id
                assigned_company = bid.bidder_company

            if status == CallStatus.CANCELLED:
                call.cancelled_by = actor
            call.assigned_to = assigned_to
            call.assigned_company = assigned_company
            return self._apply_resolution(call, status, now)

    def _apply_resolution(
        self, call: Call, status: CallStatus, now: datetime
    ) -> list[Bid]:
        call.status = status
        call.resolved_at = now
        superseded = []
        for value in self._store.values():
            if (
                isinstance(value, Bid)
                and value.call_id == call.id
                and value.status == BidStatus.PENDING
            ):
                value.status = BidStatus.SUPERSEDED
                value.decided_at = now
                superseded.append(value)
        return superseded
