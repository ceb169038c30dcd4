"""
Call registry: the single source of truth for a call's status.

    open -> claimed | expired | cancelled

All three targets are terminal. Transitions out of `open` go through
`InMemoryKeyValueDatabase.resolve_call_if_open`; this module only creates
calls, cancels them and answers reads.
"""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from dispatch.config import Settings
from dispatch.database import InMemoryKeyValueDatabase, call_key
from dispatch.errors import (
    InvalidStateError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from dispatch.models import (
    Call,
    CallCategory,
    CallSpec,
    CallStatus,
    NetworkMarketplace,
)
from dispatch.tenants import TenantDirectory

logger = structlog.get_logger(__name__)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class CallRegistry:
    def __init__(
        self,
        db: InMemoryKeyValueDatabase,
        tenants: TenantDirectory,
        settings: Settings,
        now_fn: Callable[[], datetime],
    ) -> None:
        self.db = db
        self.tenants = tenants
        self.settings = settings
        self.now_fn = now_fn

    def now(self) -> datetime:
        return as_utc(self.now_fn())

    def default_expiry(self, category: CallCategory) -> timedelta:
        minutes = {
            CallCategory.EMERGENCY: self.settings.emergency_expiry_minutes,
            CallCategory.DAYTIME: self.settings.daytime_expiry_minutes,
            CallCategory.SCHEDULED: self.settings.scheduled_expiry_minutes,
        }[category]
        return timedelta(minutes=minutes)

    def default_bonus(self, company_code: str, category: CallCategory) -> float:
        tenant_settings = self.tenants.get_tenant(company_code).settings
        if category == CallCategory.EMERGENCY:
            configured = tenant_settings.emergency_call_bonus
            fallback = self.settings.emergency_call_bonus
        elif category == CallCategory.DAYTIME:
            configured = tenant_settings.daytime_call_bonus
            fallback = self.settings.daytime_call_bonus
        else:
            configured = tenant_settings.default_call_bonus
            fallback = self.settings.default_call_bonus
        return fallback if configured is None else configured

    def create(self, spec: CallSpec) -> Call:
        if not spec.company_code.strip():
            raise ValidationError("company_code is required")
        self.tenants.get_tenant(spec.company_code)

        created_at = self.now()
        if spec.expires_at is not None:
            expires_at = as_utc(spec.expires_at)
        elif spec.expires_in_minutes is not None:
            expires_at = created_at + timedelta(minutes=spec.expires_in_minutes)
        else:
            expires_at = created_at + self.default_expiry(spec.category)
        if expires_at <= created_at:
            raise ValidationError("expiration must be after creation time")

        bonus = spec.bonus
        if bonus is None:
            bonus = self.default_bonus(spec.company_code, spec.category)
        if bonus < 0:
            raise ValidationError("bonus must not be negative")
        if spec.estimated_value < 0:
            raise ValidationError("estimated_value must not be negative")

        call = Call(
            id=str(uuid.uuid4()),
            company_code=spec.company_code,
            category=spec.category,
            title=spec.title,
            customer_name=spec.customer_name,
            customer_phone=spec.customer_phone,
            customer_email=spec.customer_email,
            location=spec.location,
            description=spec.description,
            estimated_value=spec.estimated_value,
            bonus=bonus,
            created_at=created_at,
            expires_at=expires_at,
        )
        self.db.put(call_key(call.id), call)
        logger.info(
            "call_created",
            call_id=call.id,
            company_code=call.company_code,
            category=call.category.value,
            expires_at=call.expires_at.isoformat(),
        )
        return call

    def get(self, call_id: str) -> Call:
        call = self.db.get(call_key(call_id))
        if not isinstance(call, Call):
            raise NotFoundError(f"Call {call_id} not found")
        self.expire_if_due(call)
        return call

    def expire_if_due(self, call: Call) -> bool:
        """On-read expiry check. Returns True if this check expired the call."""
        now = self.now()
        if not call.is_open or now <= call.expires_at:
            return False
        superseded = self.db.resolve_call_if_open(call_key(call.id), CallStatus.EXPIRED, now)
        if superseded is None:
            return False
        logger.info(
            "call_expired",
            call_id=call.id,
            company_code=call.company_code,
            superseded_bids=[b.id for b in superseded],
        )
        return True

    def cancel(self, call_id: str, company_code: str, member_id: str | None = None) -> Call:
        call = self.get(call_id)
        if call.company_code != company_code:
            raise NotAuthorizedError(f"Tenant {company_code} does not own call {call_id}")
        if member_id is not None:
            self.tenants.get_member(company_code, member_id)

        actor = member_id or company_code
        superseded = self.db.resolve_call_if_open(
            call_key(call_id), CallStatus.CANCELLED, self.now(), actor=actor
        )
        if superseded is None:
            if call.status == CallStatus.CANCELLED:
                # retried cancel: surface the original outcome
                return call
            raise InvalidStateError(f"Call {call_id} is {call.status.value}, not open")

        logger.info(
            "call_cancelled",
            call_id=call_id,
            company_code=company_code,
            cancelled_by=actor,
            superseded_bids=[b.id for b in superseded],
        )
        return call

    def marketplaces_for_tenant(self, company_code: str) -> list[NetworkMarketplace]:
        return [
            v
            for v in self.db.all()
            if isinstance(v, NetworkMarketplace) and company_code in v.member_companies
        ]

    def is_visible_to(self, call: Call, company_code: str) -> bool:
        if call.company_code == company_code:
            return True
        member_of = {m.id for m in self.marketplaces_for_tenant(company_code)}
        return any(mp_id in member_of for mp_id in call.shared_to)

    def list_open_for_tenant(self, company_code: str) -> list[Call]:
        """Open calls owned by the tenant or shared into its marketplaces."""
        member_of = {m.id for m in self.marketplaces_for_tenant(company_code)}
        seen: dict[str, Call] = {}
        for call in self.db.calls():
            if call.id in seen:
                continue
            if call.company_code != company_code and not member_of.intersection(call.shared_to):
                continue
            self.expire_if_due(call)
            if call.is_open:
                seen[call.id] = call
        return sorted(seen.values(), key=lambda c: c.expires_at)

    def list_for_tenant(
        self, company_code: str, status: CallStatus | None = None
    ) -> list[Call]:
        calls = []
        for call in self.db.calls():
            if call.company_code != company_code:
                continue
            self.expire_if_due(call)
            if status is None or call.status == status:
                calls.append(call)
        return sorted(calls, key=lambda c: c.created_at, reverse=True)

    def list_assigned_to_tenant(self, company_code: str) -> list[Call]:
        """Claimed calls whose assignee works for the tenant, newest first."""
        calls = [
            c
            for c in self.db.calls()
            if c.status == CallStatus.CLAIMED and c.assigned_company == company_code
        ]
        return sorted(calls, key=lambda c: c.resolved_at or c.created_at, reverse=True)
