"""
Wiring for the booking assistant.

Builds every collaborator once and hands them to each other explicitly,
so nothing holds process-global state and tests can swap any piece.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.engine import Engine

from medipod.booking.effects import EffectExecutor
from medipod.booking.orchestrator import BookingOrchestrator
from medipod.config import AppConfig, settings
from medipod.conversation.state_machine import ConversationStateMachine
from medipod.loyalty.ledger import LoyaltyLedger
from medipod.loyalty.referrals import ReferralEngine
from medipod.pipeline import MessagePipeline
from medipod.storage.database import create_db_engine, create_session_factory, init_db, runner_for
from medipod.storage.repositories import (
    BookingRepository,
    LoyaltyRepository,
    PaymentRepository,
    ProfileRepository,
    ReferralRepository,
)
from medipod.storage.session_store import SessionStore, build_session_store
from medipod.tools.advisory import AdvisoryGateway, HttpAdvisoryGateway
from medipod.tools.geo import GeocodingClient, GeoPricingResolver
from medipod.tools.notifications import (
    LoggingMessenger,
    NotificationScheduler,
    OutboundMessenger,
)
from medipod.tools.payment import PaymentGateway, SimulatedPaymentGateway

logger = logging.getLogger(__name__)


@dataclass
class MediPodApp:
    pipeline: MessagePipeline
    orchestrator: BookingOrchestrator
    ledger: LoyaltyLedger
    referrals: ReferralEngine
    profiles: ProfileRepository
    store: SessionStore
    scheduler: NotificationScheduler
    messenger: OutboundMessenger
    engine: Engine

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
        self.engine.dispose()


def build_app(
    config: AppConfig = settings,
    engine: Optional[Engine] = None,
    store: Optional[SessionStore] = None,
    advisory: Optional[AdvisoryGateway] = None,
    geocoder: Optional[GeocodingClient] = None,
    gateway: Optional[PaymentGateway] = None,
    messenger: Optional[OutboundMessenger] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> MediPodApp:
    """Assemble the pipeline and its collaborators."""
    engine = engine or create_db_engine(config.database)
    init_db(engine)
    sessions = create_session_factory(engine)
    db = runner_for(engine)

    bookings = BookingRepository(sessions)
    payments = PaymentRepository(sessions)
    profiles = ProfileRepository(sessions)
    ledger = LoyaltyLedger(LoyaltyRepository(sessions), config.loyalty)
    referrals = ReferralEngine(ReferralRepository(sessions), ledger, config.loyalty)

    messenger = messenger or LoggingMessenger()
    scheduler = NotificationScheduler(messenger, clock=clock)
    resolver = GeoPricingResolver(
        geocoder or GeocodingClient(config.pricing), config.pricing, config.business, clock=clock,
    )
    orchestrator = BookingOrchestrator(
        bookings=bookings,
        payments=payments,
        profiles=profiles,
        ledger=ledger,
        resolver=resolver,
        gateway=gateway or SimulatedPaymentGateway(payments, db),
        scheduler=scheduler,
        config=config,
        clock=clock,
        db=db,
    )
    executor = EffectExecutor(
        orchestrator=orchestrator,
        profiles=profiles,
        ledger=ledger,
        referrals=referrals,
        advisory=advisory or HttpAdvisoryGateway(config.advisory),
        config=config,
        db=db,
    )
    store = store or build_session_store(config.session)
    pipeline = MessagePipeline(store, ConversationStateMachine(config.advisory.min_chars), executor)
    logger.info("MediPod assistant assembled (session backend: %s)", type(store).__name__)
    return MediPodApp(
        pipeline=pipeline,
        orchestrator=orchestrator,
        ledger=ledger,
        referrals=referrals,
        profiles=profiles,
        store=store,
        scheduler=scheduler,
        messenger=messenger,
        engine=engine,
    )
