"""Conversation session data models."""

import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from medipod.utils import stable_hash


class ConversationState(str, Enum):
    """All possible states in a conversation lifecycle."""
    WELCOME = "welcome"
    MAIN_MENU = "main_menu"
    LOCATION_CAPTURE = "location_capture"
    SERVICE_SELECTION = "service_selection"
    TIME_SELECTION = "time_selection"
    PAYMENT_METHOD = "payment_method"
    PAYMENT_CONFIRMATION = "payment_confirmation"
    PREDIAGNOSIS = "prediagnosis"
    VIEW_BOOKINGS = "view_bookings"
    RESCHEDULE_CANCEL = "reschedule_cancel"
    RESCHEDULE_TIME_SELECTION = "reschedule_time_selection"
    NOTIFICATIONS = "notifications"
    LOYALTY_PROGRAM = "loyalty_program"
    VAN_TRACKING = "van_tracking"
    BUNDLE_RECOMMENDATIONS = "bundle_recommendations"
    REFERRAL_SYSTEM = "referral_system"
    SUPPORT = "support"


BOOKING_FLOW_STATES: frozenset[ConversationState] = frozenset({
    ConversationState.LOCATION_CAPTURE,
    ConversationState.SERVICE_SELECTION,
    ConversationState.TIME_SELECTION,
    ConversationState.PAYMENT_METHOD,
    ConversationState.PAYMENT_CONFIRMATION,
    ConversationState.PREDIAGNOSIS,
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_epoch() -> str:
    return secrets.token_hex(8)


class DraftBooking(BaseModel):
    """Booking fields collected so far. Populated step by step."""
    location: Optional[str] = None
    zone: Optional[str] = None
    distance_km: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    logistics_fee: Optional[int] = None
    eta: Optional[str] = None
    location_source: Optional[str] = None
    service_key: Optional[str] = None
    time_slot_key: Optional[str] = None
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    prediagnosis: Optional[str] = None

    def missing_step(self) -> Optional[ConversationState]:
        """Return the earliest booking step whose data is absent, if any."""
        if not self.location or self.zone is None or self.logistics_fee is None:
            return ConversationState.LOCATION_CAPTURE
        if self.service_key is None:
            return ConversationState.SERVICE_SELECTION
        if self.time_slot_key is None:
            return ConversationState.TIME_SELECTION
        if self.payment_method is None:
            return ConversationState.PAYMENT_METHOD
        return None

    def fingerprint(self) -> str:
        """Stable digest of the fields that define the booking."""
        return stable_hash(
            self.location,
            self.zone,
            self.logistics_fee,
            self.service_key,
            self.time_slot_key,
            self.payment_method,
        )


class Session(BaseModel):
    """Per-identity conversation state persisted in the session store."""
    identity: str
    state: ConversationState = ConversationState.WELCOME
    draft: DraftBooking = Field(default_factory=DraftBooking)
    epoch: str = Field(default_factory=_new_epoch)
    target_booking_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    expires_at: Optional[datetime] = None

    def clear_draft(self) -> None:
        """Drop every draft field and start a new draft lifecycle."""
        self.draft = DraftBooking()
        self.epoch = _new_epoch()

    def touch(self) -> None:
        self.updated_at = _utcnow()
