"""
Bid ledger: offers from workers on calls whose owning tenant requires bid
approval. Bids are displayed first-come-first-served but never resolve a
call on their own; an admin accepts one through the claim resolver.
"""

import uuid
from collections.abc import Callable
from datetime import datetime

import structlog

from dispatch.database import InMemoryKeyValueDatabase, bid_key
from dispatch.errors import (
    BiddingDisabledForTenantError,
    CallNotOpenError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from dispatch.models import Bid, BidStatus
from dispatch.registry import CallRegistry, as_utc
from dispatch.tenants import TenantDirectory

logger = structlog.get_logger(__name__)


class BidLedger:
    def __init__(
        self,
        db: InMemoryKeyValueDatabase,
        registry: CallRegistry,
        tenants: TenantDirectory,
        now_fn: Callable[[], datetime],
    ) -> None:
        self.db = db
        self.registry = registry
        self.tenants = tenants
        self.now_fn = now_fn

    def get_bid(self, bid_id: str) -> Bid:
        bid = self.db.get(bid_key(bid_id))
        if not isinstance(bid, Bid):
            raise NotFoundError(f"Bid {bid_id} not found")
        return bid

    def submit_bid(
        self,
        call_id: str,
        bidder_id: str,
        bidder_name: str,
        eta_minutes: int,
        company_code: str,
    ) -> Bid:
        """
        Record a pending bid. `company_code` is the bidder's own tenant,
        which may differ from the call's owner when the call was shared
        into a marketplace both belong to.
        """
        if eta_minutes <= 0:
            raise ValidationError("eta_minutes must be positive")

        call = self.registry.get(call_id)
        if not self.registry.is_visible_to(call, company_code):
            raise NotAuthorizedError(f"Call {call_id} is not visible to tenant {company_code}")
        member = self.tenants.get_member(company_code, bidder_id)

        owner = self.tenants.get_tenant(call.company_code)
        if not owner.settings.require_bid_approval:
            raise BiddingDisabledForTenantError(
                f"Tenant {call.company_code} assigns calls first-come, not by bidding"
            )

        with self.db.transaction():
            self.registry.expire_if_due(call)
            if not call.is_open:
                raise CallNotOpenError(f"Call {call_id} is {call.status.value}, not open")

            now = as_utc(self.now_fn())
            previous = [
                b
                for b in self.db.bids_for_call(call_id)
                if b.bidder_id == bidder_id and b.status == BidStatus.PENDING
            ]
            for old in previous:
                if old.eta_minutes == eta_minutes:
                    # resubmitted under network uncertainty: same bid
                    return old
                old.status = BidStatus.SUPERSEDED
                old.decided_at = now

            bid = Bid(
                id=str(uuid.uuid4()),
                call_id=call_id,
                bidder_id=bidder_id,
                bidder_name=bidder_name or member.name,
                bidder_company=company_code,
                eta_minutes=eta_minutes,
                submitted_at=now,
                seq=self.db.next_seq(),
            )
            self.db.put(bid_key(bid.id), bid)

        logger.info(
            "bid_submitted",
            bid_id=bid.id,
            call_id=call_id,
            bidder_id=bidder_id,
            bidder_company=company_code,
            eta_minutes=eta_minutes,
            replaced=[b.id for b in previous],
        )
        return bid

    def list_bids_for_call(self, call_id: str, company_code: str) -> list[Bid]:
        """Pending bids visible to the tenant, oldest submission first."""
        call = self.registry.get(call_id)
        if not self.registry.is_visible_to(call, company_code):
            raise NotAuthorizedError(f"Call {call_id} is not visible to tenant {company_code}")
        pending = [b for b in self.db.bids_for_call(call_id) if b.status == BidStatus.PENDING]
        return sorted(pending, key=lambda b: (b.submitted_at, b.seq))

    def bid_history(self, call_id: str) -> list[Bid]:
        self.registry.get(call_id)
        return self.db.bids_for_call(call_id)
