"""Shared test fixtures and helpers."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
import pytest_asyncio

from medipod.app import MediPodApp, build_app
from medipod.config import AppConfig, LoyaltyConfig, PricingConfig, SessionConfig
from medipod.conversation.state_machine import ConversationStateMachine
from medipod.loyalty.ledger import LoyaltyLedger
from medipod.loyalty.referrals import ReferralEngine
from medipod.schemas.message_schema import InboundMessage
from medipod.schemas.session_schema import DraftBooking, Session
from medipod.storage.database import create_db_engine, create_session_factory, init_db
from medipod.storage.repositories import (
    BookingRepository,
    LoyaltyRepository,
    PaymentRepository,
    ProfileRepository,
    ReferralRepository,
)
from medipod.storage.session_store import InMemorySessionStore
from medipod.tools.advisory import AdviceResult, AdvisoryGateway
from medipod.tools.geo import GeocodingClient

NAIROBI = timezone(timedelta(hours=3))

# Wednesday 14 Oct 2026, 10:00 in Nairobi: a weekday outside rush hour.
WEDNESDAY_10AM_UTC = datetime(2026, 10, 14, 7, 0, tzinfo=timezone.utc)

USER = "whatsapp:+254700000001"
USER_ID = "+254700000001"
FRIEND = "whatsapp:+254700000002"
FRIEND_ID = "+254700000002"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class StubAdvisory(AdvisoryGateway):
    """Advisory gateway returning a canned answer and recording questions."""

    def __init__(self, text: str = "Rest, drink plenty of water and book a visit if it persists.") -> None:
        self.text = text
        self.questions: list[str] = []

    async def advise(self, text: str, profile_summary: str = "") -> AdviceResult:
        self.questions.append(text)
        return AdviceResult(available=True, text=self.text)


class NoGeocoder(GeocodingClient):
    """Geocoder that never finds anything, so tests stay offline."""

    def __init__(self) -> None:
        super().__init__(replace(PricingConfig(), geocode_api_key=None))

    async def geocode(self, text: str) -> Optional[tuple[float, float]]:
        return None


def make_config() -> AppConfig:
    """Defaults pinned so environment overrides cannot change expectations."""
    return replace(
        AppConfig(),
        session=replace(SessionConfig(), ttl_seconds=3600, backend="memory"),
        pricing=replace(
            PricingConfig(),
            default_zone="C",
            default_distance_km=8.0,
            rush_hour_surcharge=50,
            weekend_surcharge=100,
            adjustment_per_km=10,
            geocode_api_key=None,
        ),
        loyalty=LoyaltyConfig(
            points_per_booking=50,
            silver_threshold=200,
            gold_threshold=500,
            referrer_points=500,
            referred_points=500,
            referral_max_uses=5,
        ),
    )


@pytest.fixture
def config() -> AppConfig:
    return make_config()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(WEDNESDAY_10AM_UTC)


@pytest.fixture
def engine():
    engine = create_db_engine(url="sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def booking_repo(session_factory):
    return BookingRepository(session_factory)


@pytest.fixture
def payment_repo(session_factory):
    return PaymentRepository(session_factory)


@pytest.fixture
def profile_repo(session_factory):
    return ProfileRepository(session_factory)


@pytest.fixture
def ledger(session_factory, config):
    return LoyaltyLedger(LoyaltyRepository(session_factory), config.loyalty)


@pytest.fixture
def referral_repo(session_factory):
    return ReferralRepository(session_factory)


@pytest.fixture
def referrals(referral_repo, ledger, config):
    return ReferralEngine(referral_repo, ledger, config.loyalty)


@pytest.fixture
def state_machine():
    return ConversationStateMachine(advisory_min_chars=20)


@pytest.fixture
def session_store(config, clock):
    return InMemorySessionStore(config.session, clock=clock)


@pytest.fixture
def advisory():
    return StubAdvisory()


@pytest_asyncio.fixture
async def app(config, engine, session_store, advisory, clock):
    app = build_app(
        config=config,
        engine=engine,
        store=session_store,
        advisory=advisory,
        geocoder=NoGeocoder(),
        clock=clock,
    )
    yield app
    await app.shutdown()


async def send(app: MediPodApp, text: str, sender: str = USER) -> list[str]:
    """Push one message through the pipeline and return the reply bodies."""
    replies = await app.pipeline.handle(InboundMessage(sender=sender, text=text))
    return [reply.body for reply in replies]


async def converse(app: MediPodApp, *texts: str, sender: str = USER) -> list[str]:
    """Send several messages in order and return the replies to the last one."""
    bodies: list[str] = []
    for text in texts:
        bodies = await send(app, text, sender)
    return bodies


async def ready_session(
    app: MediPodApp,
    identity: str = USER_ID,
    location: str = "Westlands",
    service_key: str = "5",
    slot_key: str = "2",
    payment_method: str = "mpesa",
) -> Session:
    """A session whose draft is complete and whose payment has been initiated."""
    session = Session(identity=identity)
    session.draft = DraftBooking(
        location=location,
        service_key=service_key,
        time_slot_key=slot_key,
        payment_method=payment_method,
    )
    await app.orchestrator.resolve_location(session)
    await app.orchestrator.initiate_payment(session)
    return session
