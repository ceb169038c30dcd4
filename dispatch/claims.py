"""
Claim resolver: arbitrates direct claims and bid acceptance into exactly
one assignment per call.

The winner is whoever commits the open -> claimed transition first. There
is no secondary ordering by submission time; callers' clocks are not
trusted.
"""

from collections.abc import Callable
from datetime import datetime

import structlog
from pydantic import BaseModel, Field

from dispatch.bids import BidLedger
from dispatch.database import InMemoryKeyValueDatabase, bid_key, call_key
from dispatch.errors import (
    AlreadyResolvedError,
    BiddingRequiredError,
    InvalidStateError,
    NotAuthorizedError,
)
from dispatch.models import Bid, BidStatus, Call, CallStatus
from dispatch.registry import CallRegistry, as_utc
from dispatch.tenants import TenantDirectory

logger = structlog.get_logger(__name__)


class Resolution(BaseModel):
    call: Call
    accepted_bid: Bid | None = None
    superseded_bids: list[Bid] = Field(default_factory=list)
    replayed: bool = False  # True when a retry surfaced an earlier outcome


class ClaimResolver:
    def __init__(
        self,
        db: InMemoryKeyValueDatabase,
        registry: CallRegistry,
        ledger: BidLedger,
        tenants: TenantDirectory,
        now_fn: Callable[[], datetime],
    ) -> None:
        self.db = db
        self.registry = registry
        self.ledger = ledger
        self.tenants = tenants
        self.now_fn = now_fn

    def _authorize_owner(self, call: Call, company_code: str) -> None:
        # visibility through a marketplace never grants mutation rights
        if call.company_code != company_code:
            raise NotAuthorizedError(f"Tenant {company_code} does not own call {call.id}")

    def _lost(self, call: Call) -> InvalidStateError:
        if call.status == CallStatus.CLAIMED:
            return AlreadyResolvedError(f"Call {call.id} was already claimed")
        return InvalidStateError(f"Call {call.id} is {call.status.value}, not open")

    def claim_direct(self, call_id: str, member_id: str, company_code: str) -> Resolution:
        call = self.registry.get(call_id)
        self._authorize_owner(call, company_code)
        self.tenants.get_member(company_code, member_id)
        if self.tenants.get_tenant(company_code).settings.require_bid_approval:
            raise BiddingRequiredError(
                f"Tenant {company_code} requires bid approval; submit a bid instead"
            )

        superseded = self.db.resolve_call_if_open(
            call_key(call_id),
            CallStatus.CLAIMED,
            as_utc(self.now_fn()),
            assigned_to=member_id,
            assigned_company=company_code,
            actor=member_id,
        )
        if superseded is None:
            if (
                call.status == CallStatus.CLAIMED
                and call.assigned_to == member_id
                and call.accepted_bid_id is None
            ):
                return Resolution(call=call, replayed=True)
            logger.info(
                "claim_lost",
                call_id=call_id,
                member_id=member_id,
                status=call.status.value,
                assigned_to=call.assigned_to,
            )
            raise self._lost(call)

        logger.info(
            "call_claimed",
            call_id=call_id,
            company_code=company_code,
            assigned_to=member_id,
            superseded_bids=[b.id for b in superseded],
        )
        return Resolution(call=call, superseded_bids=superseded)

    def accept_bid(self, bid_id: str, acting_member_id: str, company_code: str) -> Resolution:
        bid = self.ledger.get_bid(bid_id)
        call = self.registry.get(bid.call_id)
        self._authorize_owner(call, company_code)
        self.tenants.require_admin(company_code, acting_member_id)

        if bid.status == BidStatus.ACCEPTED:
            return Resolution(call=call, accepted_bid=bid, replayed=True)
        if call.is_open and bid.status != BidStatus.PENDING:
            raise InvalidStateError(f"Bid {bid_id} is {bid.status.value}, not pending")

        superseded = self.db.resolve_call_if_open(
            call_key(call.id),
            CallStatus.CLAIMED,
            as_utc(self.now_fn()),
            accepted_bid_key=bid_key(bid_id),
            actor=acting_member_id,
        )
        if superseded is None:
            if bid.status == BidStatus.ACCEPTED:
                return Resolution(call=call, accepted_bid=bid, replayed=True)
            logger.info(
                "bid_accept_lost",
                bid_id=bid_id,
                call_id=call.id,
                status=call.status.value,
                bid_status=bid.status.value,
            )
            if call.is_open:
                raise InvalidStateError(f"Bid {bid_id} is {bid.status.value}, not pending")
            raise self._lost(call)

        logger.info(
            "bid_accepted",
            bid_id=bid_id,
            call_id=call.id,
            company_code=company_code,
            assigned_to=bid.bidder_id,
            accepted_by=acting_member_id,
            superseded_bids=[b.id for b in superseded],
        )
        return Resolution(call=call, accepted_bid=bid, superseded_bids=superseded)

    def reject_bid(self, bid_id: str, acting_member_id: str, company_code: str) -> Bid:
        bid = self.ledger.get_bid(bid_id)
        call = self.registry.get(bid.call_id)
        self._authorize_owner(call, company_code)
        self.tenants.require_admin(company_code, acting_member_id)

        with self.db.transaction():
            if bid.status == BidStatus.REJECTED:
                return bid
            if bid.status != BidStatus.PENDING:
                raise InvalidStateError(f"Bid {bid_id} is {bid.status.value}, not pending")
            bid.status = BidStatus.REJECTED
            bid.decided_at = as_utc(self.now_fn())
            bid.decided_by = acting_member_id

        logger.info(
            "bid_rejected",
            bid_id=bid_id,
            call_id=call.id,
            rejected_by=acting_member_id,
        )
        return bid
