"""
Domain models for call dispatch: calls, bids, marketplaces and tenants.
"""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class CallCategory(StrEnum):
    EMERGENCY = "emergency"
    DAYTIME = "daytime"
    SCHEDULED = "scheduled"


class CallStatus(StrEnum):
    OPEN = "open"
    CLAIMED = "claimed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class BidStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"


class MemberRole(StrEnum):
    OWNER = "owner"
    ADMIN = "admin"
    TECHNICIAN = "technician"


class CallSpec(BaseModel):
    """Payload of the intake "call created" event."""

    company_code: str
    category: CallCategory
    title: str = ""
    customer_name: str = ""
    customer_phone: str = ""
    customer_email: str | None = None
    location: str = ""
    description: str = ""
    estimated_value: float = 0
    bonus: float | None = None  # None: use the tenant's category bonus
    expires_in_minutes: float | None = None  # None: category default
    expires_at: datetime | None = None


class Call(BaseModel):
    id: str
    company_code: str  # owning tenant
    category: CallCategory
    title: str = ""
    customer_name: str = ""
    customer_phone: str = ""
    customer_email: str | None = None
    location: str = ""
    description: str = ""
    estimated_value: float = 0
    bonus: float = 0
    created_at: datetime
    expires_at: datetime
    status: CallStatus = CallStatus.OPEN
    assigned_to: str | None = None  # member id of the claimant
    assigned_company: str | None = None
    accepted_bid_id: str | None = None
    resolved_at: datetime | None = None
    cancelled_by: str | None = None
    shared_to: list[str] = Field(default_factory=list)  # marketplace ids

    @property
    def is_open(self) -> bool:
        return self.status == CallStatus.OPEN


class Bid(BaseModel):
    id: str
    call_id: str
    bidder_id: str
    bidder_name: str
    bidder_company: str
    eta_minutes: int
    submitted_at: datetime
    seq: int  # store-assigned submission order
    status: BidStatus = BidStatus.PENDING
    decided_at: datetime | None = None
    decided_by: str | None = None


class ServiceArea(BaseModel):
    cities: list[str] = Field(default_factory=list)
    radius: float = 50  # miles


class MarketplaceSettings(BaseModel):
    monthly_fee: float = 50
    min_reputation: float = 0
    allow_auto_accept: bool = False
    require_verification: bool = True


class MarketplaceStats(BaseModel):
    total_calls: int = 0
    total_value: float = 0
    avg_response_minutes: float = 0


class NetworkMarketplace(BaseModel):
    id: str
    name: str
    description: str = ""
    created_by: str
    created_at: datetime
    member_companies: list[str] = Field(default_factory=list)
    service_area: ServiceArea = Field(default_factory=ServiceArea)
    settings: MarketplaceSettings = Field(default_factory=MarketplaceSettings)
    stats: MarketplaceStats = Field(default_factory=MarketplaceStats)


class Member(BaseModel):
    id: str  # member number
    name: str
    phone: str = ""
    role: MemberRole = MemberRole.TECHNICIAN


class TenantSettings(BaseModel):
    require_bid_approval: bool = False
    emergency_call_bonus: float | None = None
    daytime_call_bonus: float | None = None
    default_call_bonus: float | None = None


class Tenant(BaseModel):
    id: str  # company code
    name: str
    settings: TenantSettings = Field(default_factory=TenantSettings)
    members: dict[str, Member] = Field(default_factory=dict)


class OnCallStatus(BaseModel):
    company_code: str
    is_on_call: bool = False
    member_id: str | None = None
    started_at: datetime | None = None
