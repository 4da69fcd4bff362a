"""Error taxonomy for the booking assistant.

None of these are fatal to the process. Conversation-level errors turn
into re-prompts, collaborator errors into fallbacks, and persistence
errors into retryable replies.
"""

from typing import Optional


class MediPodError(Exception):
    """Base class for all domain errors."""


class ValidationError(MediPodError):
    """User input did not match the options offered in the current state."""


class IncompleteBookingState(MediPodError):
    """A booking was requested before every required draft field was set."""

    def __init__(self, missing_step: str, message: Optional[str] = None) -> None:
        self.missing_step = missing_step
        super().__init__(message or f"Booking draft is missing: {missing_step}")


class InvalidReferralCode(MediPodError):
    """Referral code is unknown, inactive, exhausted or not usable by this identity."""


class CollaboratorUnavailable(MediPodError):
    """An external collaborator timed out or failed."""

    def __init__(self, collaborator: str, message: Optional[str] = None) -> None:
        self.collaborator = collaborator
        super().__init__(message or f"{collaborator} is unavailable")


class PersistenceConflict(MediPodError):
    """A uniqueness constraint rejected a write."""

    def __init__(self, message: str, existing_id: Optional[str] = None) -> None:
        self.existing_id = existing_id
        super().__init__(message)


class SessionExpired(MediPodError):
    """A stored session outlived its inactivity TTL."""


class BookingCommitError(MediPodError):
    """The booking could not be stored; the user may retry."""

    retryable = True


class BookingStatusError(MediPodError):
    """A booking status change would move the lifecycle backwards."""


class InvalidTransitionError(MediPodError):
    """Raised when a transition is not valid from the current state."""
