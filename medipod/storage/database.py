"""Relational tables for bookings, payments, profiles and loyalty."""

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from medipod.config import DatabaseConfig, settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookingRow(Base):
    __tablename__ = "bookings"

    id = Column(String, primary_key=True)
    identity = Column(String, nullable=False, index=True)
    idempotency_key = Column(String, nullable=False, unique=True)

    service_key = Column(String, nullable=False)
    service_name = Column(String, nullable=False)
    service_category = Column(String, nullable=False)
    service_duration = Column(Integer, nullable=False)
    service_fee = Column(Integer, nullable=False)

    time_slot_key = Column(String, nullable=False)
    time_slot_label = Column(String, nullable=False)
    scheduled_time = Column(DateTime, nullable=False)

    location = Column(String, nullable=False)
    zone = Column(String, nullable=False)
    distance_km = Column(Float, nullable=False)
    logistics_fee = Column(Integer, nullable=False)
    total = Column(Integer, nullable=False)
    eta = Column(String, nullable=False)

    payment_method = Column(String, nullable=False)
    payment_reference = Column(String, nullable=True, index=True)
    payment_status = Column(String, nullable=False, default="pending")

    prediagnosis = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="pending")
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class PaymentRow(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reference = Column(String, nullable=False, unique=True)
    identity = Column(String, nullable=False, index=True)
    method = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="pending")
    result_code = Column(String, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class HealthProfileRow(Base):
    __tablename__ = "health_profiles"

    identity = Column(String, primary_key=True)
    display_name = Column(String, nullable=True)
    visit_count = Column(Integer, nullable=False, default=0)
    last_visit = Column(DateTime, nullable=True)
    conditions = Column(JSON, nullable=False, default=list)
    preferred_services = Column(JSON, nullable=False, default=list)
    payment_methods = Column(JSON, nullable=False, default=list)
    notifications = Column(JSON, nullable=False, default=dict)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class LoyaltyTransactionRow(Base):
    __tablename__ = "loyalty_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    identity = Column(String, nullable=False, index=True)
    points = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)
    booking_ref = Column(String, nullable=True, index=True)
    created_at = Column(DateTime, default=_utcnow)


class ReferralCodeRow(Base):
    __tablename__ = "referral_codes"

    code = Column(String, primary_key=True)
    identity = Column(String, nullable=False, index=True)
    uses = Column(Integer, nullable=False, default=0)
    max_uses = Column(Integer, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=_utcnow)


class ReferralRedemptionRow(Base):
    __tablename__ = "referral_redemptions"
    __table_args__ = (UniqueConstraint("code", "referred_identity"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String, nullable=False, index=True)
    referred_identity = Column(String, nullable=False)
    booking_ref = Column(String, nullable=True)
    created_at = Column(DateTime, default=_utcnow)


def create_db_engine(config: Optional[DatabaseConfig] = None, url: Optional[str] = None) -> Engine:
    """Build an engine. In-memory SQLite shares one connection across threads."""
    config = config or settings.database
    url = url or config.url
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=config.echo, **kwargs)
    return create_engine(url, echo=config.echo, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ready at %s", engine.url)


class DatabaseRunner:
    """
    Runs synchronous repository calls on a worker thread.

    Repositories use blocking SQLAlchemy sessions, so async handlers hand
    them off here instead of stalling the event loop for every identity.
    SQLite shares its connection between threads, so with ``serialize``
    only one call runs at a time.
    """

    def __init__(self, serialize: bool = False) -> None:
        self._lock: Optional[threading.Lock] = threading.Lock() if serialize else None

    async def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        if self._lock is None:
            return await asyncio.to_thread(func, *args, **kwargs)

        def _work() -> T:
            with self._lock:
                return func(*args, **kwargs)

        return await asyncio.to_thread(_work)


def runner_for(engine: Engine) -> DatabaseRunner:
    return DatabaseRunner(serialize=engine.dialect.name == "sqlite")
