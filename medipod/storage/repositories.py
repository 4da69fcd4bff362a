"""
Repositories over the relational tables.

Each repository owns short-lived SQLAlchemy sessions and hands back
pydantic models, so callers never hold ORM rows across awaits.
"""

import logging
from typing import Any, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from medipod.errors import PersistenceConflict
from medipod.schemas.booking_schema import (
    ACTIVE_STATUSES,
    Booking,
    PaymentRecord,
    PaymentStatus,
)
from medipod.schemas.loyalty_schema import LoyaltyTransaction, ReferralCode
from medipod.schemas.profile_schema import HealthProfile, NotificationPreferences
from medipod.storage.database import (
    BookingRow,
    HealthProfileRow,
    LoyaltyTransactionRow,
    PaymentRow,
    ReferralCodeRow,
    ReferralRedemptionRow,
)

logger = logging.getLogger(__name__)


def _plain(value: Any) -> Any:
    return getattr(value, "value", value)


class BookingRepository:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory

    def insert(self, booking: Booking) -> Booking:
        """Insert a booking. A duplicate idempotency key raises PersistenceConflict."""
        values = booking.model_dump(exclude={"created_at", "updated_at"})
        values = {key: _plain(value) for key, value in values.items()}
        with self._sessions() as db:
            row = BookingRow(**values)
            db.add(row)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                existing = db.scalar(
                    select(BookingRow).where(
                        BookingRow.idempotency_key == booking.idempotency_key
                    )
                )
                raise PersistenceConflict(
                    f"Booking with key {booking.idempotency_key[:12]} already exists",
                    existing_id=existing.id if existing is not None else None,
                ) from exc
            return Booking.model_validate(row)

    def get(self, booking_id: str) -> Optional[Booking]:
        with self._sessions() as db:
            row = db.get(BookingRow, booking_id)
            return Booking.model_validate(row) if row is not None else None

    def get_by_idempotency_key(self, key: str) -> Optional[Booking]:
        with self._sessions() as db:
            row = db.scalar(select(BookingRow).where(BookingRow.idempotency_key == key))
            return Booking.model_validate(row) if row is not None else None

    def list_for_identity(self, identity: str, limit: int = 10) -> list[Booking]:
        with self._sessions() as db:
            rows = db.scalars(
                select(BookingRow)
                .where(BookingRow.identity == identity)
                .order_by(BookingRow.scheduled_time.desc(), BookingRow.created_at.desc())
                .limit(limit)
            ).all()
            return [Booking.model_validate(row) for row in rows]

    def latest_active(self, identity: str) -> Optional[Booking]:
        active = [status.value for status in ACTIVE_STATUSES]
        with self._sessions() as db:
            row = db.scalar(
                select(BookingRow)
                .where(BookingRow.identity == identity, BookingRow.status.in_(active))
                .order_by(BookingRow.created_at.desc())
                .limit(1)
            )
            return Booking.model_validate(row) if row is not None else None

    def find_by_payment_reference(self, reference: str) -> list[Booking]:
        with self._sessions() as db:
            rows = db.scalars(
                select(BookingRow).where(BookingRow.payment_reference == reference)
            ).all()
            return [Booking.model_validate(row) for row in rows]

    def update(self, booking_id: str, **fields: Any) -> Optional[Booking]:
        with self._sessions() as db:
            row = db.get(BookingRow, booking_id)
            if row is None:
                return None
            for key, value in fields.items():
                setattr(row, key, _plain(value))
            db.commit()
            return Booking.model_validate(row)


class PaymentRepository:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory

    def create(self, record: PaymentRecord) -> PaymentRecord:
        values = record.model_dump(exclude={"created_at", "updated_at"})
        values = {key: _plain(value) for key, value in values.items()}
        with self._sessions() as db:
            row = PaymentRow(**values)
            db.add(row)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise PersistenceConflict(
                    f"Payment reference {record.reference} already exists",
                    existing_id=record.reference,
                ) from exc
            return PaymentRecord.model_validate(row)

    def get(self, reference: str) -> Optional[PaymentRecord]:
        with self._sessions() as db:
            row = db.scalar(select(PaymentRow).where(PaymentRow.reference == reference))
            return PaymentRecord.model_validate(row) if row is not None else None

    def update_status(
        self, reference: str, status: PaymentStatus, result_code: Optional[str] = None
    ) -> Optional[PaymentRecord]:
        with self._sessions() as db:
            row = db.scalar(select(PaymentRow).where(PaymentRow.reference == reference))
            if row is None:
                return None
            row.status = status.value
            row.result_code = result_code
            db.commit()
            return PaymentRecord.model_validate(row)


class ProfileRepository:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory

    def get(self, identity: str) -> HealthProfile:
        """Return the stored profile, or a fresh unsaved one."""
        with self._sessions() as db:
            row = db.get(HealthProfileRow, identity)
            if row is None:
                return HealthProfile(identity=identity)
            return HealthProfile(
                identity=row.identity,
                display_name=row.display_name,
                visit_count=row.visit_count or 0,
                last_visit=row.last_visit,
                conditions=list(row.conditions or []),
                preferred_services=list(row.preferred_services or []),
                payment_methods=list(row.payment_methods or []),
                notifications=NotificationPreferences(**(row.notifications or {})),
            )

    def save(self, profile: HealthProfile) -> HealthProfile:
        with self._sessions() as db:
            row = db.get(HealthProfileRow, profile.identity)
            if row is None:
                row = HealthProfileRow(identity=profile.identity)
                db.add(row)
            row.display_name = profile.display_name
            row.visit_count = profile.visit_count
            row.last_visit = profile.last_visit
            row.conditions = list(profile.conditions)
            row.preferred_services = list(profile.preferred_services)
            row.payment_methods = list(profile.payment_methods)
            row.notifications = profile.notifications.model_dump()
            db.commit()
        return profile


class LoyaltyRepository:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory

    def append(self, transaction: LoyaltyTransaction) -> None:
        with self._sessions() as db:
            db.add(LoyaltyTransactionRow(**transaction.model_dump(exclude={"created_at"})))
            db.commit()

    def totals(self, identity: str) -> tuple[int, int, int]:
        """Return (balance, lifetime_earned, lifetime_redeemed)."""
        points = LoyaltyTransactionRow.points
        with self._sessions() as db:
            balance, earned, redeemed = db.execute(
                select(
                    func.coalesce(func.sum(points), 0),
                    func.coalesce(func.sum(case((points > 0, points), else_=0)), 0),
                    func.coalesce(func.sum(case((points < 0, points), else_=0)), 0),
                ).where(LoyaltyTransactionRow.identity == identity)
            ).one()
        return int(balance), int(earned), -int(redeemed)

    def history(self, identity: str, limit: int = 10) -> list[LoyaltyTransaction]:
        with self._sessions() as db:
            rows = db.scalars(
                select(LoyaltyTransactionRow)
                .where(LoyaltyTransactionRow.identity == identity)
                .order_by(LoyaltyTransactionRow.id.desc())
                .limit(limit)
            ).all()
            return [LoyaltyTransaction.model_validate(row) for row in rows]

    def exists(self, booking_ref: str, reason: str) -> bool:
        with self._sessions() as db:
            found = db.scalar(
                select(LoyaltyTransactionRow.id).where(
                    LoyaltyTransactionRow.booking_ref == booking_ref,
                    LoyaltyTransactionRow.reason == reason,
                ).limit(1)
            )
            return found is not None


class ReferralRepository:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory

    def insert(self, code: ReferralCode) -> ReferralCode:
        with self._sessions() as db:
            row = ReferralCodeRow(**code.model_dump(exclude={"created_at"}))
            db.add(row)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise PersistenceConflict(
                    f"Referral code {code.code} already exists", existing_id=code.code
                ) from exc
            return ReferralCode.model_validate(row)

    def get(self, code: str) -> Optional[ReferralCode]:
        with self._sessions() as db:
            row = db.get(ReferralCodeRow, code)
            return ReferralCode.model_validate(row) if row is not None else None

    def latest_for(self, identity: str) -> Optional[ReferralCode]:
        with self._sessions() as db:
            row = db.scalar(
                select(ReferralCodeRow)
                .where(ReferralCodeRow.identity == identity)
                .order_by(ReferralCodeRow.created_at.desc())
                .limit(1)
            )
            return ReferralCode.model_validate(row) if row is not None else None

    def consume(
        self, code: str, referred_identity: str, booking_ref: Optional[str] = None
    ) -> bool:
        """Atomically take one use of ``code`` and record who redeemed it.

        Returns False when the code is inactive or has no uses left. A
        second redemption by the same identity raises PersistenceConflict.
        """
        with self._sessions() as db:
            result = db.execute(
                update(ReferralCodeRow)
                .where(
                    ReferralCodeRow.code == code,
                    ReferralCodeRow.active.is_(True),
                    ReferralCodeRow.uses < ReferralCodeRow.max_uses,
                )
                .values(uses=ReferralCodeRow.uses + 1)
            )
            if result.rowcount == 0:
                db.rollback()
                return False
            db.add(ReferralRedemptionRow(
                code=code, referred_identity=referred_identity, booking_ref=booking_ref,
            ))
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise PersistenceConflict(
                    f"{referred_identity} already redeemed {code}", existing_id=code
                ) from exc
            return True

    def deactivate(self, code: str) -> bool:
        with self._sessions() as db:
            result = db.execute(
                update(ReferralCodeRow)
                .where(ReferralCodeRow.code == code)
                .values(active=False)
            )
            db.commit()
            return result.rowcount > 0
