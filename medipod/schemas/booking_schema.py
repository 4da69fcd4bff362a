"""Booking and payment data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


# Lifecycle only moves forward. Rescheduling keeps the booking live.
ALLOWED_STATUS_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({
        BookingStatus.CONFIRMED, BookingStatus.CANCELLED,
    }),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED, BookingStatus.RESCHEDULED,
    }),
    BookingStatus.RESCHEDULED: frozenset({
        BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED, BookingStatus.RESCHEDULED,
    }),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

ACTIVE_STATUSES: frozenset[BookingStatus] = frozenset({
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.RESCHEDULED,
    BookingStatus.IN_PROGRESS,
})


class Booking(BaseModel):
    """A committed home visit."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    identity: str
    idempotency_key: str
    service_key: str
    service_name: str
    service_category: str
    service_duration: int
    service_fee: int
    time_slot_key: str
    time_slot_label: str
    location: str
    zone: str
    distance_km: float
    logistics_fee: int
    total: int
    eta: str
    payment_method: str
    payment_reference: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    prediagnosis: Optional[str] = None
    status: BookingStatus = BookingStatus.PENDING
    scheduled_time: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class PaymentInitiation(BaseModel):
    """Result of asking the payment gateway to start a charge."""
    reference: str
    method: str
    amount: int
    status: PaymentStatus = PaymentStatus.PENDING
    message: str = ""


class PaymentRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    reference: str
    identity: str
    method: str
    amount: int
    status: PaymentStatus
    result_code: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
