from pydantic import BaseModel

from dispatch.database import InMemoryKeyValueDatabase
from dispatch.models import Bid, BidStatus, CallStatus, MarketplaceStats
from dispatch.network import NetworkSharingGateway
from dispatch.registry import CallRegistry


class TenantStats(BaseModel):
    company_code: str
    open_calls: int = 0
    claimed_calls: int = 0
    expired_calls: int = 0
    cancelled_calls: int = 0
    bonus_paid: float = 0
    pending_bids: int = 0


def tenant_stats(
    db: InMemoryKeyValueDatabase, registry: CallRegistry, company_code: str
) -> TenantStats:
    stats = TenantStats(company_code=company_code)
    owned = registry.list_for_tenant(company_code)
    owned_ids = {c.id for c in owned}

    for call in owned:
        if call.status == CallStatus.OPEN:
            stats.open_calls += 1
        elif call.status == CallStatus.CLAIMED:
            stats.claimed_calls += 1
            stats.bonus_paid += call.bonus
        elif call.status == CallStatus.EXPIRED:
            stats.expired_calls += 1
        else:
            stats.cancelled_calls += 1

    stats.pending_bids = sum(
        1
        for v in db.all()
        if isinstance(v, Bid) and v.call_id in owned_ids and v.status == BidStatus.PENDING
    )
    return stats


def marketplace_stats(gateway: NetworkSharingGateway, marketplace_id: str) -> MarketplaceStats:
    return gateway.get_marketplace(marketplace_id).stats
