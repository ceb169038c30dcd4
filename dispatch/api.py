import asyncio
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from dispatch.claims import Resolution
from dispatch.config import Settings, settings as default_settings
from dispatch.engine import DispatchEngine
from dispatch.errors import DispatchError
from dispatch.logging import RequestIdMiddleware, setup_logging
from dispatch.models import (
    Bid,
    Call,
    CallSpec,
    MarketplaceSettings,
    Member,
    NetworkMarketplace,
    OnCallStatus,
    ServiceArea,
    Tenant,
    TenantSettings,
)
from dispatch.notifier import send_sms

logger = structlog.get_logger(__name__)

router = APIRouter()

NowFn = Callable[[], datetime]
SleepFn = Callable[[float], Awaitable[None]]


class RegisterTenantRequest(BaseModel):
    company_code: str
    name: str
    settings: TenantSettings = Field(default_factory=TenantSettings)
    owner: Member | None = None


class OnCallRequest(BaseModel):
    member_id: str


class ActorRequest(BaseModel):
    """Acting tenant and member; authentication happens upstream."""

    company_code: str
    member_id: str


class CancelCallRequest(BaseModel):
    company_code: str
    member_id: str | None = None


class SubmitBidRequest(BaseModel):
    company_code: str
    bidder_id: str
    bidder_name: str = ""
    eta_minutes: int


class CreateMarketplaceRequest(BaseModel):
    company_code: str
    name: str
    description: str = ""
    service_area: ServiceArea = Field(default_factory=ServiceArea)
    settings: MarketplaceSettings = Field(default_factory=MarketplaceSettings)


class ShareCallRequest(BaseModel):
    company_code: str
    marketplace_id: str


class MembershipRequest(BaseModel):
    company_code: str


def _engine(request: Request) -> DispatchEngine:
    return request.app.state.engine


async def _notify_resolution(engine: DispatchEngine, resolution: Resolution) -> None:
    if resolution.replayed:
        return
    call = resolution.call
    messages: list[tuple[str, str]] = []

    winner = engine.tenants.find_member(call.assigned_company, call.assigned_to)
    if winner is not None:
        messages.append((winner.phone, f"Call {call.id} is yours: {call.title or call.category.value}."))

    winner_key = (call.assigned_company, call.assigned_to)
    for bid in resolution.superseded_bids:
        if (bid.bidder_company, bid.bidder_id) == winner_key:
            continue
        loser = engine.tenants.find_member(bid.bidder_company, bid.bidder_id)
        if loser is not None:
            messages.append((loser.phone, f"Call {call.id} was assigned to someone else."))

    await asyncio.gather(*(send_sms(phone, body) for phone, body in messages))


def _resolution_body(resolution: Resolution) -> dict:
    call = resolution.call
    body = {
        "status": call.status.value,
        "call_id": call.id,
        "assigned_to": call.assigned_to,
        "claimed_at": call.resolved_at.isoformat() if call.resolved_at else None,
        "superseded_bids": [b.id for b in resolution.superseded_bids],
        "replayed": resolution.replayed,
    }
    if resolution.accepted_bid is not None:
        body["bid_id"] = resolution.accepted_bid.id
    return body


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/tenants")
async def register_tenant(payload: RegisterTenantRequest, request: Request) -> Tenant:
    return _engine(request).tenants.register_tenant(
        payload.company_code, payload.name, payload.settings, payload.owner
    )


@router.put("/tenants/{company_code}/settings")
async def update_tenant_settings(
    company_code: str, payload: TenantSettings, request: Request
) -> Tenant:
    return _engine(request).tenants.update_settings(company_code, payload)


@router.post("/tenants/{company_code}/members")
async def add_member(company_code: str, payload: Member, request: Request) -> Member:
    return _engine(request).tenants.add_member(company_code, payload)


@router.get("/tenants/{company_code}/bidders")
async def list_available_bidders(company_code: str, request: Request) -> list[Member]:
    return _engine(request).tenants.available_bidders(company_code)


@router.get("/tenants/{company_code}/on-call")
async def get_on_call(company_code: str, request: Request) -> OnCallStatus:
    return _engine(request).tenants.get_on_call(company_code)


@router.put("/tenants/{company_code}/on-call")
async def set_on_call(company_code: str, payload: OnCallRequest, request: Request) -> OnCallStatus:
    return _engine(request).tenants.set_on_call(company_code, payload.member_id)


@router.delete("/tenants/{company_code}/on-call")
async def clear_on_call(company_code: str, request: Request) -> OnCallStatus:
    return _engine(request).tenants.clear_on_call(company_code)


@router.post("/calls")
async def create_call(spec: CallSpec, request: Request) -> Call:
    return _engine(request).create_call(spec)


@router.get("/calls/{call_id}")
async def get_call(call_id: str, request: Request) -> Call:
    return _engine(request).get_call(call_id)


@router.post("/calls/{call_id}/cancel")
async def cancel_call(call_id: str, payload: CancelCallRequest, request: Request) -> Call:
    return _engine(request).cancel_call(call_id, payload.company_code, payload.member_id)


@router.get("/tenants/{company_code}/calls/open")
async def list_open_calls(company_code: str, request: Request) -> list[Call]:
    engine = _engine(request)
    engine.tenants.get_tenant(company_code)
    return engine.list_open_for_tenant(company_code)


@router.get("/tenants/{company_code}/calls/assigned")
async def list_assigned_calls(company_code: str, request: Request) -> list[Call]:
    return _engine(request).registry.list_assigned_to_tenant(company_code)


@router.post("/calls/{call_id}/claim")
async def claim_call(call_id: str, payload: ActorRequest, request: Request) -> dict:
    engine = _engine(request)
    resolution = engine.claim_direct(call_id, payload.member_id, payload.company_code)
    await _notify_resolution(engine, resolution)
    return _resolution_body(resolution)


@router.post("/calls/{call_id}/bids")
async def submit_bid(call_id: str, payload: SubmitBidRequest, request: Request) -> Bid:
    return _engine(request).submit_bid(
        call_id,
        payload.bidder_id,
        payload.bidder_name,
        payload.eta_minutes,
        payload.company_code,
    )


@router.get("/calls/{call_id}/bids")
async def list_bids(call_id: str, company_code: str, request: Request) -> list[Bid]:
    return _engine(request).list_bids_for_call(call_id, company_code)


@router.post("/bids/{bid_id}/accept")
async def accept_bid(bid_id: str, payload: ActorRequest, request: Request) -> dict:
    engine = _engine(request)
    resolution = engine.accept_bid(bid_id, payload.member_id, payload.company_code)
    await _notify_resolution(engine, resolution)
    return _resolution_body(resolution)


@router.post("/bids/{bid_id}/reject")
async def reject_bid(bid_id: str, payload: ActorRequest, request: Request) -> Bid:
    return _engine(request).reject_bid(bid_id, payload.member_id, payload.company_code)


@router.post("/marketplaces")
async def create_marketplace(
    payload: CreateMarketplaceRequest, request: Request
) -> NetworkMarketplace:
    return _engine(request).network.create_marketplace(
        payload.company_code,
        payload.name,
        payload.description,
        payload.service_area,
        payload.settings,
    )


@router.get("/marketplaces/{marketplace_id}/fee")
async def quote_marketplace_fee(marketplace_id: str, request: Request) -> dict:
    fee = _engine(request).network.quote_fee(marketplace_id)
    return {"marketplace_id": marketplace_id, "daily_fee": fee}


@router.post("/calls/{call_id}/share")
async def share_call(call_id: str, payload: ShareCallRequest, request: Request) -> dict:
    result = _engine(request).share_to_marketplace(
        call_id, payload.marketplace_id, payload.company_code
    )
    return {
        "call_id": call_id,
        "marketplace_id": result.marketplace_id,
        "fee": result.fee,
        "already_shared": result.already_shared,
        "shared_to": result.call.shared_to,
    }


@router.post("/marketplaces/{marketplace_id}/join")
async def join_marketplace(
    marketplace_id: str, payload: MembershipRequest, request: Request
) -> NetworkMarketplace:
    return _engine(request).join_marketplace(marketplace_id, payload.company_code)


@router.post("/marketplaces/{marketplace_id}/leave")
async def leave_marketplace(
    marketplace_id: str, payload: MembershipRequest, request: Request
) -> NetworkMarketplace:
    return _engine(request).leave_marketplace(marketplace_id, payload.company_code)


@router.get("/tenants/{company_code}/marketplaces")
async def list_marketplaces(company_code: str, request: Request) -> list[NetworkMarketplace]:
    engine = _engine(request)
    engine.tenants.get_tenant(company_code)
    return engine.list_marketplaces_for_tenant(company_code)


@router.get("/tenants/{company_code}/marketplaces/available")
async def list_available_marketplaces(
    company_code: str, request: Request
) -> list[NetworkMarketplace]:
    return _engine(request).network.list_available_marketplaces(company_code)


@router.get("/tenants/{company_code}/stats")
async def get_tenant_stats(company_code: str, request: Request) -> dict:
    return _engine(request).tenant_stats(company_code).model_dump()


@router.get("/marketplaces/{marketplace_id}/stats")
async def get_marketplace_stats(marketplace_id: str, request: Request) -> dict:
    return _engine(request).marketplace_stats(marketplace_id).model_dump()


@router.post("/sweeps")
async def run_sweep(request: Request) -> dict:
    expired = _engine(request).sweep()
    return {"expired": expired, "count": len(expired)}


async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    logger.info(
        "dispatch_error",
        path=request.url.path,
        error=exc.code,
        detail=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = None
    if app.state.settings.sweeper_enabled:
        task = asyncio.create_task(app.state.engine.sweeper.run())
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or default_settings
    setup_logging(settings.log_level)

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.now_fn = lambda: datetime.now(UTC)
    app.state.sleep_fn = asyncio.sleep

    # clock and sleep are looked up on app.state so tests can replace them
    engine = DispatchEngine(
        settings=settings,
        now_fn=lambda: app.state.now_fn(),
        sleep_fn=lambda seconds: app.state.sleep_fn(seconds),
    )
    app.state.engine = engine
    app.state.database = engine.db

    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(DispatchError, dispatch_error_handler)
    app.include_router(router)
    return app
