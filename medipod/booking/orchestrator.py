"""
Booking orchestration.

Owns the commit of a completed draft into a confirmed booking and every
later change to it. The commit is two-phase (insert pending, then
confirm) behind a UNIQUE idempotency key, so a redelivered final message
returns the booking created the first time instead of a duplicate.
"""

import logging
import secrets
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from medipod.config import AppConfig, settings
from medipod.errors import (
    BookingCommitError,
    BookingStatusError,
    IncompleteBookingState,
    PersistenceConflict,
    ValidationError,
)
from medipod.loyalty.ledger import BOOKING_CREDIT_REASON, LoyaltyLedger
from medipod.logging_context import get_user_logger
from medipod.prompts import templates
from medipod.schemas.booking_schema import (
    ALLOWED_STATUS_TRANSITIONS,
    Booking,
    BookingStatus,
    PaymentInitiation,
    PaymentStatus,
)
from medipod.schemas.session_schema import ConversationState, Session
from medipod.storage.database import DatabaseRunner
from medipod.storage.repositories import BookingRepository, PaymentRepository, ProfileRepository
from medipod.tools.catalog import TimeSlot, get_service, get_time_slot
from medipod.tools.geo import GeoPricingResolver, LogisticsQuote
from medipod.tools.notifications import NotificationScheduler
from medipod.tools.payment import PaymentGateway, status_for_result_code
from medipod.utils import stable_hash

logger = get_user_logger(__name__)

BOOKING_ID_PREFIX = "MPA-"


def new_booking_id() -> str:
    return f"{BOOKING_ID_PREFIX}{secrets.token_hex(4).upper()}"


class BookingOrchestrator:
    """Coordinates pricing, payment, persistence, loyalty and notifications."""

    def __init__(
        self,
        bookings: BookingRepository,
        payments: PaymentRepository,
        profiles: ProfileRepository,
        ledger: LoyaltyLedger,
        resolver: GeoPricingResolver,
        gateway: PaymentGateway,
        scheduler: NotificationScheduler,
        config: AppConfig = settings,
        clock: Optional[Callable[[], datetime]] = None,
        db: Optional[DatabaseRunner] = None,
    ) -> None:
        self._bookings = bookings
        self._payments = payments
        self._profiles = profiles
        self._ledger = ledger
        self._resolver = resolver
        self._gateway = gateway
        self._scheduler = scheduler
        self._config = config
        self._tz = timezone(timedelta(hours=config.business.utc_offset_hours))
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._db = db or DatabaseRunner()

    def _local_now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            return now.replace(tzinfo=self._tz)
        return now.astimezone(self._tz)

    def _as_local(self, stored: datetime) -> datetime:
        return stored.replace(tzinfo=self._tz) if stored.tzinfo is None else stored

    def scheduled_time_for(self, slot: TimeSlot, now: Optional[datetime] = None) -> datetime:
        """Today at the slot start, or tomorrow if that moment has passed."""
        now = now or self._local_now()
        hour, minute = (int(part) for part in slot["start"].split(":"))
        candidate = datetime.combine(now.date(), time(hour, minute), tzinfo=now.tzinfo)
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    # ------------------------------------------------------------------
    # Draft steps
    # ------------------------------------------------------------------

    async def resolve_location(self, session: Session) -> LogisticsQuote:
        """Price the draft location and copy the quote into the draft."""
        quote = await self._resolver.resolve(session.draft.location or "", at=self._clock())
        session.draft = session.draft.model_copy(update={
            "location": quote.location,
            "zone": quote.zone,
            "distance_km": quote.distance_km,
            "latitude": quote.latitude,
            "longitude": quote.longitude,
            "logistics_fee": quote.fee,
            "eta": quote.eta,
            "location_source": quote.source,
        })
        logger.info("Location quote for %s: zone %s fee %d", session.identity, quote.zone, quote.fee)
        return quote

    async def initiate_payment(self, session: Session) -> PaymentInitiation:
        """Start the logistics charge. CollaboratorUnavailable propagates."""
        draft = session.draft
        if not draft.payment_method:
            raise IncompleteBookingState(ConversationState.PAYMENT_METHOD.value)
        if draft.logistics_fee is None:
            raise IncompleteBookingState(ConversationState.LOCATION_CAPTURE.value)
        initiation = await self._gateway.initiate(
            draft.payment_method, draft.logistics_fee, session.identity
        )
        session.draft = draft.model_copy(update={"payment_reference": initiation.reference})
        return initiation

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    async def complete_booking(self, session: Session) -> Booking:
        """
        Commit the session's draft as a confirmed booking.

        Raises:
            IncompleteBookingState: A required draft field is missing.
            BookingCommitError: Storage failed; the user may retry.
        """
        draft = session.draft
        missing = draft.missing_step()
        if missing is not None:
            raise IncompleteBookingState(missing.value)
        service = get_service(draft.service_key or "")
        if service is None:
            raise IncompleteBookingState(ConversationState.SERVICE_SELECTION.value)
        slot = get_time_slot(draft.time_slot_key or "")
        if slot is None:
            raise IncompleteBookingState(ConversationState.TIME_SELECTION.value)

        key = stable_hash(session.identity, session.epoch, draft.fingerprint())
        scheduled = self.scheduled_time_for(slot)
        payment_status = PaymentStatus.PENDING
        if draft.payment_reference:
            record = await self._db.run(self._payments.get, draft.payment_reference)
            if record is not None:
                payment_status = record.status

        booking = Booking(
            id=new_booking_id(),
            identity=session.identity,
            idempotency_key=key,
            service_key=service["key"],
            service_name=service["name"],
            service_category=service["category"],
            service_duration=service["duration"],
            service_fee=service["price"],
            time_slot_key=slot["key"],
            time_slot_label=slot["label"],
            location=draft.location or "",
            zone=draft.zone or self._config.pricing.default_zone,
            distance_km=draft.distance_km if draft.distance_km is not None else 0.0,
            logistics_fee=draft.logistics_fee or 0,
            total=service["price"] + (draft.logistics_fee or 0),
            eta=draft.eta or "",
            payment_method=draft.payment_method or "",
            payment_reference=draft.payment_reference,
            payment_status=payment_status,
            prediagnosis=draft.prediagnosis,
            status=BookingStatus.PENDING,
            scheduled_time=scheduled.replace(tzinfo=None),
        )

        stored, created = await self._db.run(self._commit, booking)

        await self._db.run(self._ensure_loyalty_credit, stored)
        if created:
            await self._db.run(self._record_visit, stored)
        self._schedule_notifications(stored)

        session.clear_draft()
        logger.info("Booking %s confirmed for %s (total %d)", stored.id, stored.identity, stored.total)
        return stored

    def _commit(self, booking: Booking) -> tuple[Booking, bool]:
        """Insert pending then confirm. Returns the stored booking and whether it is new."""
        created = True
        try:
            stored = self._bookings.insert(booking)
        except PersistenceConflict:
            created = False
            stored = self._bookings.get_by_idempotency_key(booking.idempotency_key)
            if stored is None:
                raise BookingCommitError("Duplicate booking could not be loaded") from None
            logger.info("Redelivered completion for %s, reusing %s", booking.identity, stored.id)
        except SQLAlchemyError as exc:
            logger.exception("Booking insert failed for %s", booking.identity)
            raise BookingCommitError("Could not save booking") from exc

        if stored.status == BookingStatus.PENDING:
            try:
                confirmed = self._bookings.update(stored.id, status=BookingStatus.CONFIRMED)
            except SQLAlchemyError as exc:
                logger.exception("Booking confirm failed for %s", stored.id)
                raise BookingCommitError("Could not confirm booking") from exc
            stored = confirmed or stored
        return stored, created

    # Failures below happen after the booking is confirmed and never undo it.

    def _ensure_loyalty_credit(self, booking: Booking) -> None:
        try:
            if self._ledger.has_credit(booking.id, BOOKING_CREDIT_REASON):
                return
            self._ledger.credit(
                booking.identity,
                self._config.loyalty.points_per_booking,
                BOOKING_CREDIT_REASON,
                booking_ref=booking.id,
            )
        except Exception:
            logger.exception("Loyalty credit failed for booking %s", booking.id)

    def _record_visit(self, booking: Booking) -> None:
        try:
            profile = self._profiles.get(booking.identity)
            profile.visit_count += 1
            profile.last_visit = self._clock()
            profile.add_preferred_service(booking.service_category)
            profile.add_payment_method(booking.payment_method)
            self._profiles.save(profile)
        except Exception:
            logger.exception("Profile update failed for booking %s", booking.id)

    def _schedule_notifications(self, booking: Booking) -> None:
        offsets = self._config.notifications
        visit_at = self._as_local(booking.scheduled_time)
        try:
            self._scheduler.schedule(
                booking.id, "reminder", booking.identity, templates.reminder_notice(booking),
                visit_at - timedelta(minutes=offsets.reminder_offset_minutes),
            )
            self._scheduler.schedule(
                booking.id, "arrival", booking.identity, templates.arrival_notice(booking),
                visit_at - timedelta(minutes=offsets.arrival_offset_minutes),
            )
        except Exception:
            logger.exception("Could not schedule notifications for %s", booking.id)

    # ------------------------------------------------------------------
    # Queries and changes
    # ------------------------------------------------------------------

    def list_bookings(self, identity: str, limit: int = 5) -> list[Booking]:
        return self._bookings.list_for_identity(identity, limit)

    def latest_active_booking(self, identity: str) -> Optional[Booking]:
        return self._bookings.latest_active(identity)

    def _require(self, booking_id: str) -> Booking:
        booking = self._bookings.get(booking_id)
        if booking is None:
            raise ValidationError(f"Booking {booking_id} not found")
        return booking

    def update_status(self, booking_id: str, status: BookingStatus) -> Booking:
        """Move a booking forward in its lifecycle."""
        booking = self._require(booking_id)
        if status not in ALLOWED_STATUS_TRANSITIONS[booking.status]:
            raise BookingStatusError(
                f"booking is {booking.status.value} and cannot become {status.value}"
            )
        updated = self._bookings.update(booking_id, status=status)
        logger.info("Booking %s: %s -> %s", booking_id, booking.status.value, status.value)
        return updated or booking

    async def cancel_booking(self, booking_id: str) -> Booking:
        booking = await self._db.run(self.update_status, booking_id, BookingStatus.CANCELLED)
        self._scheduler.cancel(booking_id)
        return booking

    def _move_slot(self, booking_id: str, slot: TimeSlot) -> Booking:
        booking = self._require(booking_id)
        if BookingStatus.RESCHEDULED not in ALLOWED_STATUS_TRANSITIONS[booking.status]:
            raise BookingStatusError(f"booking is {booking.status.value} and cannot be rescheduled")
        scheduled = self.scheduled_time_for(slot)
        updated = self._bookings.update(
            booking_id,
            status=BookingStatus.RESCHEDULED,
            time_slot_key=slot["key"],
            time_slot_label=slot["label"],
            scheduled_time=scheduled.replace(tzinfo=None),
        )
        if updated is None:
            raise ValidationError(f"Booking {booking_id} not found")
        return updated

    async def reschedule_booking(self, booking_id: str, slot_key: str) -> Booking:
        slot = get_time_slot(slot_key)
        if slot is None:
            raise ValidationError(f"Unknown time slot {slot_key!r}")
        updated = await self._db.run(self._move_slot, booking_id, slot)
        self._scheduler.cancel(booking_id)
        self._schedule_notifications(updated)
        logger.info("Booking %s rescheduled to %s", booking_id, slot["label"])
        return updated

    def handle_payment_callback(self, reference: str, result_code: str) -> Optional[PaymentStatus]:
        """Settle a charge from a gateway callback. Unknown references return None."""
        status = status_for_result_code(result_code)
        record = self._payments.update_status(reference, status, str(result_code))
        if record is None:
            logger.warning("Payment callback for unknown reference %s", reference)
            return None
        for booking in self._bookings.find_by_payment_reference(reference):
            self._bookings.update(booking.id, payment_status=status)
        logger.info("Payment %s settled as %s", reference, status.value)
        return status
