import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta

import pytest

from dispatch.config import Settings
from dispatch.engine import DispatchEngine
from dispatch.models import CallCategory, CallSpec, Member, MemberRole, TenantSettings


class ManualClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(datetime(2025, 7, 2, 8, 0, 0, tzinfo=UTC))


@pytest.fixture
def settings() -> Settings:
    return Settings(SWEEPER_ENABLED=False)


@pytest.fixture
def engine(clock: ManualClock, settings: Settings) -> DispatchEngine:
    engine = DispatchEngine(settings=settings, now_fn=clock)

    # first-come tenant
    engine.tenants.register_tenant(
        "acme",
        "Acme Electric",
        owner=Member(id="acme-owner", name="Olivia Acme", phone="+15550100"),
    )
    engine.tenants.add_member("acme", Member(id="acme-1", name="Alice Ongwele", phone="+15550101"))
    engine.tenants.add_member("acme", Member(id="acme-2", name="Wei Yan", phone="+15550102"))

    # bidding tenant
    engine.tenants.register_tenant(
        "sparky",
        "Sparky Services",
        settings=TenantSettings(require_bid_approval=True),
        owner=Member(id="sparky-owner", name="Sam Sparky", phone="+15550200"),
    )
    engine.tenants.add_member(
        "sparky",
        Member(id="sparky-admin", name="Dana Admin", phone="+15550201", role=MemberRole.ADMIN),
    )
    engine.tenants.add_member("sparky", Member(id="sparky-a", name="Barry Kozumikov", phone="+15550202"))
    engine.tenants.add_member("sparky", Member(id="sparky-b", name="Eve Example", phone="+15550203"))
    engine.tenants.add_member("sparky", Member(id="sparky-c", name="Carl Current", phone="+15550204"))

    # a third company for marketplace tests
    engine.tenants.register_tenant(
        "volt",
        "Volt Brothers",
        owner=Member(id="volt-owner", name="Vic Volt", phone="+15550300"),
    )
    engine.tenants.add_member("volt", Member(id="volt-1", name="Vera Volt", phone="+15550301"))
    return engine


def make_spec(company_code: str = "acme", **overrides) -> CallSpec:
    data = {
        "company_code": company_code,
        "category": CallCategory.EMERGENCY,
        "title": "Power outage",
        "customer_name": "Test Customer",
        "customer_phone": "(555) 123-4567",
        "location": "123 Main St",
        "description": "Power outage - needs immediate assistance",
        "estimated_value": 500,
        "bonus": 100,
        "expires_in_minutes": 5,
    }
    data.update(overrides)
    return CallSpec(**data)


def race(fns):
    """Run callables at the same moment on separate threads."""
    barrier = threading.Barrier(len(fns))

    def _run(fn):
        barrier.wait()
        try:
            return ("ok", fn())
        except Exception as exc:  # collected for assertions
            return ("error", exc)

    with ThreadPoolExecutor(max_workers=len(fns)) as pool:
        return list(pool.map(_run, fns))
