import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from dispatch.bids import BidLedger
from dispatch.claims import ClaimResolver, Resolution
from dispatch.config import Settings, settings as default_settings
from dispatch.database import InMemoryKeyValueDatabase
from dispatch.models import Bid, Call, CallSpec, MarketplaceStats, NetworkMarketplace
from dispatch.network import NetworkSharingGateway, ShareResult
from dispatch.registry import CallRegistry
from dispatch.stats import TenantStats, marketplace_stats, tenant_stats
from dispatch.sweeper import ExpirationSweeper
from dispatch.tenants import TenantDirectory

NowFn = Callable[[], datetime]
SleepFn = Callable[[float], Awaitable[None]]


def utcnow() -> datetime:
    return datetime.now(UTC)


class DispatchEngine:
    """
    All dispatch components over one store and one clock.

    `now_fn` is read through the engine on every call so tests can swap
    the clock after construction.
    """

    def __init__(
        self,
        db: InMemoryKeyValueDatabase | None = None,
        *,
        settings: Settings | None = None,
        now_fn: NowFn = utcnow,
        sleep_fn: SleepFn = asyncio.sleep,
    ) -> None:
        self.db = db if db is not None else InMemoryKeyValueDatabase()
        self.settings = settings or default_settings
        self.now_fn = now_fn
        self.sleep_fn = sleep_fn

        clock = lambda: self.now_fn()  # noqa: E731
        self.tenants = TenantDirectory(self.db, clock)
        self.registry = CallRegistry(self.db, self.tenants, self.settings, clock)
        self.ledger = BidLedger(self.db, self.registry, self.tenants, clock)
        self.resolver = ClaimResolver(self.db, self.registry, self.ledger, self.tenants, clock)
        self.network = NetworkSharingGateway(
            self.db,
            self.registry,
            self.tenants,
            clock,
            fee_days=self.settings.marketplace_fee_days,
        )
        self.sweeper = ExpirationSweeper(
            self.db,
            self.registry,
            interval_seconds=self.settings.sweep_interval_seconds,
            now_fn=clock,
            sleep_fn=lambda seconds: self.sleep_fn(seconds),
        )

    # calls
    def create_call(self, spec: CallSpec) -> Call:
        return self.registry.create(spec)

    def get_call(self, call_id: str) -> Call:
        return self.registry.get(call_id)

    def cancel_call(self, call_id: str, company_code: str, member_id: str | None = None) -> Call:
        return self.registry.cancel(call_id, company_code, member_id)

    def list_open_for_tenant(self, company_code: str) -> list[Call]:
        return self.registry.list_open_for_tenant(company_code)

    # claims and bids
    def claim_direct(self, call_id: str, member_id: str, company_code: str) -> Resolution:
        return self.resolver.claim_direct(call_id, member_id, company_code)

    def submit_bid(
        self,
        call_id: str,
        bidder_id: str,
        bidder_name: str,
        eta_minutes: int,
        company_code: str,
    ) -> Bid:
        return self.ledger.submit_bid(call_id, bidder_id, bidder_name, eta_minutes, company_code)

    def list_bids_for_call(self, call_id: str, company_code: str) -> list[Bid]:
        return self.ledger.list_bids_for_call(call_id, company_code)

    def accept_bid(self, bid_id: str, acting_member_id: str, company_code: str) -> Resolution:
        return self.resolver.accept_bid(bid_id, acting_member_id, company_code)

    def reject_bid(self, bid_id: str, acting_member_id: str, company_code: str) -> Bid:
        return self.resolver.reject_bid(bid_id, acting_member_id, company_code)

    # marketplaces
    def share_to_marketplace(
        self, call_id: str, marketplace_id: str, sharing_company: str
    ) -> ShareResult:
        return self.network.share_to_marketplace(call_id, marketplace_id, sharing_company)

    def join_marketplace(self, marketplace_id: str, company_code: str) -> NetworkMarketplace:
        return self.network.join_marketplace(marketplace_id, company_code)

    def leave_marketplace(self, marketplace_id: str, company_code: str) -> NetworkMarketplace:
        return self.network.leave_marketplace(marketplace_id, company_code)

    def list_marketplaces_for_tenant(self, company_code: str) -> list[NetworkMarketplace]:
        return self.network.list_marketplaces_for_tenant(company_code)

    # statistics
    def tenant_stats(self, company_code: str) -> TenantStats:
        self.tenants.get_tenant(company_code)
        return tenant_stats(self.db, self.registry, company_code)

    def marketplace_stats(self, marketplace_id: str) -> MarketplaceStats:
        return marketplace_stats(self.network, marketplace_id)

    def sweep(self) -> list[str]:
        return self.sweeper.sweep()
