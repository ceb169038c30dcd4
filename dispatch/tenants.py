"""
Tenant directory: company accounts, their members and on-call status.
"""

from collections.abc import Callable
from datetime import datetime

import structlog

from dispatch.database import InMemoryKeyValueDatabase, oncall_key, tenant_key
from dispatch.errors import NotAuthorizedError, NotFoundError, ValidationError
from dispatch.models import Member, MemberRole, OnCallStatus, Tenant, TenantSettings

logger = structlog.get_logger(__name__)

ADMIN_ROLES = frozenset({MemberRole.OWNER, MemberRole.ADMIN})


class TenantDirectory:
    def __init__(
        self, db: InMemoryKeyValueDatabase, now_fn: Callable[[], datetime]
    ) -> None:
        self.db = db
        self.now_fn = now_fn

    def register_tenant(
        self,
        company_code: str,
        name: str,
        settings: TenantSettings | None = None,
        owner: Member | None = None,
    ) -> Tenant:
        if not company_code.strip():
            raise ValidationError("company code is required")

        with self.db.transaction():
            existing = self.db.get(tenant_key(company_code))
            if isinstance(existing, Tenant):
                return existing

            tenant = Tenant(id=company_code, name=name, settings=settings or TenantSettings())
            if owner is not None:
                tenant.members[owner.id] = owner.model_copy(update={"role": MemberRole.OWNER})
            self.db.put(tenant_key(company_code), tenant)
            self.db.put(oncall_key(company_code), OnCallStatus(company_code=company_code))

        logger.info("tenant_registered", company_code=company_code)
        return tenant

    def get_tenant(self, company_code: str) -> Tenant:
        tenant = self.db.get(tenant_key(company_code))
        if not isinstance(tenant, Tenant):
            raise NotFoundError(f"Tenant {company_code} not found")
        return tenant

    def update_settings(self, company_code: str, settings: TenantSettings) -> Tenant:
        with self.db.transaction():
            tenant = self.get_tenant(company_code)
            tenant.settings = settings
        return tenant

    def add_member(self, company_code: str, member: Member) -> Member:
        with self.db.transaction():
            tenant = self.get_tenant(company_code)
            tenant.members[member.id] = member
        logger.info("member_added", company_code=company_code, member_id=member.id)
        return member

    def get_member(self, company_code: str, member_id: str) -> Member:
        """Return a member of the tenant, or raise NotAuthorizedError."""
        tenant = self.get_tenant(company_code)
        member = tenant.members.get(member_id)
        if member is None:
            raise NotAuthorizedError(
                f"Member {member_id} does not belong to tenant {company_code}"
            )
        return member

    def find_member(self, company_code: str | None, member_id: str | None) -> Member | None:
        """Member ids are member numbers, unique only within their tenant."""
        if company_code is None or member_id is None:
            return None
        tenant = self.db.get(tenant_key(company_code))
        if not isinstance(tenant, Tenant):
            return None
        return tenant.members.get(member_id)

    def is_admin(self, company_code: str, member_id: str) -> bool:
        tenant = self.get_tenant(company_code)
        member = tenant.members.get(member_id)
        return member is not None and member.role in ADMIN_ROLES

    def require_admin(self, company_code: str, member_id: str) -> Member:
        member = self.get_member(company_code, member_id)
        if not self.is_admin(company_code, member_id):
            raise NotAuthorizedError(
                f"Member {member_id} is not an owner or admin of {company_code}"
            )
        return member

    def set_on_call(self, company_code: str, member_id: str) -> OnCallStatus:
        self.get_member(company_code, member_id)
        status = OnCallStatus(
            company_code=company_code,
            is_on_call=True,
            member_id=member_id,
            started_at=self.now_fn(),
        )
        self.db.put(oncall_key(company_code), status)
        logger.info("on_call_set", company_code=company_code, member_id=member_id)
        return status

    def clear_on_call(self, company_code: str) -> OnCallStatus:
        self.get_tenant(company_code)
        status = OnCallStatus(company_code=company_code)
        self.db.put(oncall_key(company_code), status)
        logger.info("on_call_cleared", company_code=company_code)
        return status

    def get_on_call(self, company_code: str) -> OnCallStatus:
        self.get_tenant(company_code)
        status = self.db.get(oncall_key(company_code))
        if not isinstance(status, OnCallStatus):
            return OnCallStatus(company_code=company_code)
        return status

    def available_bidders(self, company_code: str) -> list[Member]:
        """Members of the tenant, current on-call responder first."""
        tenant = self.get_tenant(company_code)
        on_call = self.get_on_call(company_code)
        members = sorted(tenant.members.values(), key=lambda m: m.name)
        if on_call.is_on_call and on_call.member_id in tenant.members:
            first = tenant.members[on_call.member_id]
            members = [first] + [m for m in members if m.id != first.id]
        return members
