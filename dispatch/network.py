"""
Network sharing gateway: marketplaces of cooperating tenants.

Sharing widens who can see and bid on a call. It never changes the
owning tenant, so only the owner can claim, cancel or decide bids.
"""

import uuid
from collections.abc import Callable
from datetime import datetime

import structlog
from pydantic import BaseModel

from dispatch.database import InMemoryKeyValueDatabase, marketplace_key
from dispatch.errors import (
    InvalidStateError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from dispatch.models import (
    Call,
    CallStatus,
    MarketplaceSettings,
    MarketplaceStats,
    NetworkMarketplace,
    ServiceArea,
)
from dispatch.registry import CallRegistry, as_utc
from dispatch.tenants import TenantDirectory

logger = structlog.get_logger(__name__)


def daily_fee(settings: MarketplaceSettings, days: int = 30) -> float:
    """Monthly participation fee pro-rated to one day, in dollars."""
    if settings.monthly_fee <= 0:
        return 0.0
    return round(settings.monthly_fee / days, 2)


def marketplace_rollup(marketplace_id: str, calls: list[Call]) -> MarketplaceStats:
    shared = [c for c in calls if marketplace_id in c.shared_to]
    response_minutes = [
        (c.resolved_at - c.created_at).total_seconds() / 60
        for c in shared
        if c.status == CallStatus.CLAIMED and c.resolved_at is not None
    ]
    avg = sum(response_minutes) / len(response_minutes) if response_minutes else 0
    return MarketplaceStats(
        total_calls=len(shared),
        total_value=sum(c.estimated_value for c in shared),
        avg_response_minutes=round(avg, 1),
    )


class ShareResult(BaseModel):
    call: Call
    marketplace_id: str
    fee: float
    already_shared: bool = False


class NetworkSharingGateway:
    def __init__(
        self,
        db: InMemoryKeyValueDatabase,
        registry: CallRegistry,
        tenants: TenantDirectory,
        now_fn: Callable[[], datetime],
        fee_days: int = 30,
    ) -> None:
        self.db = db
        self.registry = registry
        self.tenants = tenants
        self.now_fn = now_fn
        self.fee_days = fee_days

    def _load_marketplace(self, marketplace_id: str) -> NetworkMarketplace:
        marketplace = self.db.get(marketplace_key(marketplace_id))
        if not isinstance(marketplace, NetworkMarketplace):
            raise NotFoundError(f"Marketplace {marketplace_id} not found")
        return marketplace

    def get_marketplace(self, marketplace_id: str) -> NetworkMarketplace:
        """A copy of the stored marketplace with stats derived from shared calls."""
        marketplace = self._load_marketplace(marketplace_id)
        stats = marketplace_rollup(marketplace.id, self.db.calls())
        return marketplace.model_copy(update={"stats": stats}, deep=True)

    def create_marketplace(
        self,
        company_code: str,
        name: str,
        description: str = "",
        service_area: ServiceArea | None = None,
        settings: MarketplaceSettings | None = None,
    ) -> NetworkMarketplace:
        if not name.strip():
            raise ValidationError("marketplace name is required")
        settings = settings or MarketplaceSettings()
        if settings.monthly_fee < 0:
            raise ValidationError("monthly_fee must not be negative")
        self.tenants.get_tenant(company_code)

        marketplace = NetworkMarketplace(
            id=str(uuid.uuid4()),
            name=name.strip(),
            description=description.strip(),
            created_by=company_code,
            created_at=as_utc(self.now_fn()),
            member_companies=[company_code],
            service_area=service_area or ServiceArea(),
            settings=settings,
        )
        self.db.put(marketplace_key(marketplace.id), marketplace)
        logger.info(
            "marketplace_created",
            marketplace_id=marketplace.id,
            created_by=company_code,
            monthly_fee=settings.monthly_fee,
        )
        return marketplace

    def join_marketplace(self, marketplace_id: str, company_code: str) -> NetworkMarketplace:
        self.tenants.get_tenant(company_code)
        with self.db.transaction():
            marketplace = self._load_marketplace(marketplace_id)
            if company_code not in marketplace.member_companies:
                marketplace.member_companies.append(company_code)
                logger.info(
                    "marketplace_joined", marketplace_id=marketplace_id, company_code=company_code
                )
        return self.get_marketplace(marketplace_id)

    def leave_marketplace(self, marketplace_id: str, company_code: str) -> NetworkMarketplace:
        """Leave; calls already shared stay shared, and an empty marketplace is kept."""
        with self.db.transaction():
            marketplace = self._load_marketplace(marketplace_id)
            if company_code in marketplace.member_companies:
                marketplace.member_companies.remove(company_code)
                logger.info(
                    "marketplace_left", marketplace_id=marketplace_id, company_code=company_code
                )
        return self.get_marketplace(marketplace_id)

    def list_marketplaces_for_tenant(self, company_code: str) -> list[NetworkMarketplace]:
        return [
            self.get_marketplace(m.id)
            for m in self.registry.marketplaces_for_tenant(company_code)
        ]

    def list_available_marketplaces(self, company_code: str) -> list[NetworkMarketplace]:
        return [
            self.get_marketplace(v.id)
            for v in self.db.all()
            if isinstance(v, NetworkMarketplace) and company_code not in v.member_companies
        ]

    def quote_fee(self, marketplace_id: str) -> float:
        return daily_fee(self._load_marketplace(marketplace_id).settings, self.fee_days)

    def share_to_marketplace(
        self, call_id: str, marketplace_id: str, sharing_company: str
    ) -> ShareResult:
        """
        Share an open call into a marketplace and return the daily fee.

        The fee is informational: the caller confirms it before sharing,
        the engine does not block on payment.
        """
        call = self.registry.get(call_id)
        if call.company_code != sharing_company:
            raise NotAuthorizedError(f"Tenant {sharing_company} does not own call {call_id}")

        with self.db.transaction():
            marketplace = self._load_marketplace(marketplace_id)
            if sharing_company not in marketplace.member_companies:
                raise NotAuthorizedError(
                    f"Tenant {sharing_company} is not a member of marketplace {marketplace_id}"
                )
            fee = daily_fee(marketplace.settings, self.fee_days)

            if marketplace_id in call.shared_to:
                return ShareResult(
                    call=call, marketplace_id=marketplace_id, fee=fee, already_shared=True
                )

            self.registry.expire_if_due(call)
            if not call.is_open:
                raise InvalidStateError(f"Call {call_id} is {call.status.value}, not open")
            call.shared_to.append(marketplace_id)

        logger.info(
            "call_shared",
            call_id=call_id,
            marketplace_id=marketplace_id,
            company_code=sharing_company,
            fee=fee,
        )
        return ShareResult(call=call, marketplace_id=marketplace_id, fee=fee)
