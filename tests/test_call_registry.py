from datetime import timedelta

import pytest
from conftest import make_spec

from dispatch.errors import (
    InvalidStateError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from dispatch.models import BidStatus, CallCategory, CallStatus


class TestCreate:
    def test_new_call_is_open(self, engine, clock) -> None:
        call = engine.create_call(make_spec())
        assert call.status == CallStatus.OPEN
        assert call.company_code == "acme"
        assert call.created_at == clock()
        assert call.expires_at == clock() + timedelta(minutes=5)
        assert call.assigned_to is None
        assert engine.get_call(call.id) is call

    @pytest.mark.parametrize(
        "category, minutes",
        [
            (CallCategory.EMERGENCY, 5),
            (CallCategory.DAYTIME, 15),
            (CallCategory.SCHEDULED, 15),
        ],
    )
    def test_default_expiry_by_category(self, engine, clock, category, minutes) -> None:
        call = engine.create_call(make_spec(category=category, expires_in_minutes=None))
        assert call.expires_at - call.created_at == timedelta(minutes=minutes)

    def test_default_bonus_comes_from_tenant(self, engine) -> None:
        emergency = engine.create_call(make_spec(bonus=None))
        daytime = engine.create_call(make_spec(category=CallCategory.DAYTIME, bonus=None))
        scheduled = engine.create_call(make_spec(category=CallCategory.SCHEDULED, bonus=None))
        assert (emergency.bonus, daytime.bonus, scheduled.bonus) == (100, 25, 50)

    def test_explicit_expires_at_is_used(self, engine, clock) -> None:
        expires_at = clock() + timedelta(hours=2)
        call = engine.create_call(make_spec(expires_in_minutes=None, expires_at=expires_at))
        assert call.expires_at == expires_at

    def test_rejects_expiry_not_after_creation(self, engine, clock) -> None:
        with pytest.raises(ValidationError):
            engine.create_call(make_spec(expires_in_minutes=0))
        with pytest.raises(ValidationError):
            engine.create_call(make_spec(expires_in_minutes=None, expires_at=clock()))

    def test_rejects_negative_bonus(self, engine) -> None:
        with pytest.raises(ValidationError):
            engine.create_call(make_spec(bonus=-1))

    def test_rejects_unknown_tenant(self, engine) -> None:
        with pytest.raises(NotFoundError):
            engine.create_call(make_spec(company_code="nobody"))

    def test_rejects_blank_tenant(self, engine) -> None:
        with pytest.raises(ValidationError):
            engine.create_call(make_spec(company_code=" "))


class TestCancel:
    def test_owner_cancels_open_call(self, engine) -> None:
        call = engine.create_call(make_spec())
        cancelled = engine.cancel_call(call.id, "acme", "acme-owner")
        assert cancelled.status == CallStatus.CANCELLED
        assert cancelled.cancelled_by == "acme-owner"

    def test_cancel_is_idempotent_for_owner(self, engine) -> None:
        call = engine.create_call(make_spec())
        engine.cancel_call(call.id, "acme")
        again = engine.cancel_call(call.id, "acme")
        assert again.status == CallStatus.CANCELLED

    def test_non_owner_cannot_cancel(self, engine) -> None:
        call = engine.create_call(make_spec())
        with pytest.raises(NotAuthorizedError):
            engine.cancel_call(call.id, "volt")
        assert engine.get_call(call.id).status == CallStatus.OPEN

    def test_sharing_does_not_grant_cancel(self, engine) -> None:
        call = engine.create_call(make_spec())
        marketplace = engine.network.create_marketplace("acme", "North Shore")
        engine.join_marketplace(marketplace.id, "volt")
        engine.share_to_marketplace(call.id, marketplace.id, "acme")
        with pytest.raises(NotAuthorizedError):
            engine.cancel_call(call.id, "volt")

    def test_cannot_cancel_claimed_call(self, engine) -> None:
        call = engine.create_call(make_spec())
        engine.claim_direct(call.id, "acme-1", "acme")
        with pytest.raises(InvalidStateError):
            engine.cancel_call(call.id, "acme")

    def test_cancel_supersedes_pending_bids(self, engine) -> None:
        call = engine.create_call(make_spec("sparky"))
        bid = engine.submit_bid(call.id, "sparky-a", "", 10, "sparky")
        engine.cancel_call(call.id, "sparky")
        assert bid.status == BidStatus.SUPERSEDED

    def test_cancel_past_deadline_fails(self, engine, clock) -> None:
        call = engine.create_call(make_spec())
        clock.advance(minutes=6)
        with pytest.raises(InvalidStateError):
            engine.cancel_call(call.id, "acme")
        assert call.status == CallStatus.EXPIRED


class TestReads:
    def test_get_unknown_call(self, engine) -> None:
        with pytest.raises(NotFoundError):
            engine.get_call("missing")

    def test_get_expires_on_read(self, engine, clock) -> None:
        call = engine.create_call(make_spec())
        clock.advance(minutes=5)
        assert engine.get_call(call.id).status == CallStatus.OPEN

        clock.advance(seconds=1)
        assert engine.get_call(call.id).status == CallStatus.EXPIRED

    def test_list_open_only_includes_own_calls(self, engine) -> None:
        mine = engine.create_call(make_spec("acme"))
        engine.create_call(make_spec("volt"))
        assert [c.id for c in engine.list_open_for_tenant("acme")] == [mine.id]

    def test_list_open_excludes_resolved_and_due(self, engine, clock) -> None:
        claimed = engine.create_call(make_spec())
        engine.claim_direct(claimed.id, "acme-1", "acme")
        soon = engine.create_call(make_spec(expires_in_minutes=1))
        later = engine.create_call(make_spec(expires_in_minutes=30))
        clock.advance(minutes=2)

        open_ids = [c.id for c in engine.list_open_for_tenant("acme")]
        assert open_ids == [later.id]
        assert soon.status == CallStatus.EXPIRED

    def test_list_open_is_ordered_by_deadline(self, engine) -> None:
        late = engine.create_call(make_spec(expires_in_minutes=30))
        early = engine.create_call(make_spec(expires_in_minutes=5))
        assert [c.id for c in engine.list_open_for_tenant("acme")] == [early.id, late.id]

    def test_list_for_tenant_filters_by_status(self, engine) -> None:
        a = engine.create_call(make_spec())
        b = engine.create_call(make_spec())
        engine.cancel_call(b.id, "acme")
        assert [c.id for c in engine.registry.list_for_tenant("acme", CallStatus.OPEN)] == [a.id]
        assert [c.id for c in engine.registry.list_for_tenant("acme", CallStatus.CANCELLED)] == [b.id]
