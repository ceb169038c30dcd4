import pytest
from conftest import make_spec

from dispatch.errors import (
    BiddingDisabledForTenantError,
    CallNotOpenError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from dispatch.models import BidStatus, CallStatus


def test_submit_bid_is_pending(engine, clock) -> None:
    call = engine.create_call(make_spec("sparky"))
    bid = engine.submit_bid(call.id, "sparky-a", "Barry K", 15, "sparky")
    assert bid.status == BidStatus.PENDING
    assert bid.call_id == call.id
    assert bid.bidder_name == "Barry K"
    assert bid.bidder_company == "sparky"
    assert bid.submitted_at == clock()


def test_bidder_name_defaults_to_member_name(engine) -> None:
    call = engine.create_call(make_spec("sparky"))
    bid = engine.submit_bid(call.id, "sparky-a", "", 15, "sparky")
    assert bid.bidder_name == "Barry Kozumikov"


def test_bids_listed_first_come_first_served(engine, clock) -> None:
    call = engine.create_call(make_spec("sparky"))
    a = engine.submit_bid(call.id, "sparky-c", "", 30, "sparky")
    clock.advance(seconds=1)
    b = engine.submit_bid(call.id, "sparky-a", "", 5, "sparky")
    c = engine.submit_bid(call.id, "sparky-b", "", 10, "sparky")

    listed = engine.list_bids_for_call(call.id, "sparky")

    # submission order, not best eta; listing never resolves the call
    assert [x.id for x in listed] == [a.id, b.id, c.id]
    assert call.status == CallStatus.OPEN


def test_eta_must_be_positive(engine) -> None:
    call = engine.create_call(make_spec("sparky"))
    with pytest.raises(ValidationError):
        engine.submit_bid(call.id, "sparky-a", "", 0, "sparky")


def test_first_come_tenant_rejects_bids(engine) -> None:
    call = engine.create_call(make_spec("acme"))
    with pytest.raises(BiddingDisabledForTenantError):
        engine.submit_bid(call.id, "acme-1", "", 10, "acme")


def test_bid_on_claimed_call(engine) -> None:
    call = engine.create_call(make_spec("sparky"))
    bid = engine.submit_bid(call.id, "sparky-a", "", 10, "sparky")
    engine.accept_bid(bid.id, "sparky-owner", "sparky")
    with pytest.raises(CallNotOpenError):
        engine.submit_bid(call.id, "sparky-b", "", 10, "sparky")


def test_bid_past_deadline(engine, clock) -> None:
    call = engine.create_call(make_spec("sparky", expires_in_minutes=1))
    clock.advance(minutes=2)
    with pytest.raises(CallNotOpenError):
        engine.submit_bid(call.id, "sparky-a", "", 10, "sparky")


def test_unknown_call(engine) -> None:
    with pytest.raises(NotFoundError):
        engine.submit_bid("missing", "sparky-a", "", 10, "sparky")


def test_invisible_call_rejects_foreign_bidder(engine) -> None:
    call = engine.create_call(make_spec("sparky"))
    with pytest.raises(NotAuthorizedError):
        engine.submit_bid(call.id, "volt-1", "", 10, "volt")
    with pytest.raises(NotAuthorizedError):
        engine.list_bids_for_call(call.id, "volt")


def test_bidder_must_belong_to_own_tenant(engine) -> None:
    call = engine.create_call(make_spec("sparky"))
    with pytest.raises(NotAuthorizedError):
        engine.submit_bid(call.id, "volt-1", "", 10, "sparky")


def test_marketplace_member_can_bid_on_shared_call(engine) -> None:
    call = engine.create_call(make_spec("sparky"))
    marketplace = engine.network.create_marketplace("sparky", "County Network")
    engine.join_marketplace(marketplace.id, "volt")
    engine.share_to_marketplace(call.id, marketplace.id, "sparky")

    bid = engine.submit_bid(call.id, "volt-1", "", 25, "volt")
    resolution = engine.accept_bid(bid.id, "sparky-owner", "sparky")

    assert resolution.call.assigned_to == "volt-1"
    assert resolution.call.assigned_company == "volt"
    assert resolution.call.company_code == "sparky"
    assert [c.id for c in engine.registry.list_assigned_to_tenant("volt")] == [call.id]


class TestResubmission:
    def test_same_eta_returns_existing_bid(self, engine) -> None:
        call = engine.create_call(make_spec("sparky"))
        first = engine.submit_bid(call.id, "sparky-a", "", 10, "sparky")
        again = engine.submit_bid(call.id, "sparky-a", "", 10, "sparky")
        assert again.id == first.id
        assert len(engine.list_bids_for_call(call.id, "sparky")) == 1

    def test_new_eta_replaces_pending_bid(self, engine) -> None:
        call = engine.create_call(make_spec("sparky"))
        first = engine.submit_bid(call.id, "sparky-a", "", 10, "sparky")
        second = engine.submit_bid(call.id, "sparky-a", "", 7, "sparky")
        assert first.status == BidStatus.SUPERSEDED
        assert [b.id for b in engine.list_bids_for_call(call.id, "sparky")] == [second.id]
        assert [b.id for b in engine.ledger.bid_history(call.id)] == [first.id, second.id]

    def test_rejected_bidder_may_bid_again(self, engine) -> None:
        call = engine.create_call(make_spec("sparky"))
        first = engine.submit_bid(call.id, "sparky-a", "", 10, "sparky")
        engine.reject_bid(first.id, "sparky-owner", "sparky")
        second = engine.submit_bid(call.id, "sparky-a", "", 10, "sparky")
        assert second.id != first.id
        assert second.status == BidStatus.PENDING


def test_expiry_supersedes_pending_bids(engine, clock) -> None:
    call = engine.create_call(make_spec("sparky", expires_in_minutes=1))
    a = engine.submit_bid(call.id, "sparky-a", "", 10, "sparky")
    b = engine.submit_bid(call.id, "sparky-b", "", 12, "sparky")
    engine.reject_bid(b.id, "sparky-owner", "sparky")
    clock.advance(minutes=1, seconds=1)

    assert engine.sweep() == [call.id]
    assert a.status == BidStatus.SUPERSEDED
    assert b.status == BidStatus.REJECTED
