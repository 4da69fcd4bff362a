"""
Finite state machine for the booking conversation.

Every legal move is a row in ``TRANSITIONS``. ``step`` maps one inbound
message to a TransitionResult (next state, draft updates, effect intents
and reply) without touching the session or any store. The caller applies
the result, runs the effects, and feeds follow-up triggers back through
``fire``.

Usage:
    sm = ConversationStateMachine()
    result = sm.step(session, "1")
    sm.apply(session, result)
    assert session.state == ConversationState.LOCATION_CAPTURE
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from medipod.config import settings
from medipod.conversation.menu import (
    BACK_TABLE,
    BOOKING_ESCAPE_TABLE,
    BUNDLES_TABLE,
    LOYALTY_TABLE,
    MAIN_MENU_TABLE,
    NOTIFICATION_TOGGLES,
    NOTIFICATIONS_TABLE,
    REFERRAL_TABLE,
    RESCHEDULE_CANCEL_TABLE,
    SUPPORT_TABLE,
    TRACKING_TABLE,
    VIEW_BOOKINGS_TABLE,
    Intent,
    MenuTable,
)
from medipod.errors import InvalidTransitionError, ValidationError
from medipod.prompts import templates
from medipod.schemas.session_schema import (
    BOOKING_FLOW_STATES,
    ConversationState,
    Session,
)
from medipod.tools.catalog import (
    SERVICE_CATALOG,
    TIME_SLOTS,
    get_health_tips,
    get_payment_method,
)
from medipod.utils import normalize_text

logger = logging.getLogger(__name__)

S = ConversationState

REFERRAL_CODE_PATTERN = re.compile(r"^(?:redeem\s+)?(medi[0-9a-z]{8})$", re.IGNORECASE)
SKIP_TOKEN = "skip"


class TransitionTrigger(str, Enum):
    """Events that cause state transitions."""
    GREETED = "greeted"
    SHOW_MENU = "show_menu"
    ADVICE_REQUESTED = "advice_requested"
    START_BOOKING = "start_booking"
    OPEN_BOOKINGS = "open_bookings"
    OPEN_RESCHEDULE = "open_reschedule"
    OPEN_SUPPORT = "open_support"
    OPEN_NOTIFICATIONS = "open_notifications"
    OPEN_LOYALTY = "open_loyalty"
    OPEN_TRACKING = "open_tracking"
    OPEN_BUNDLES = "open_bundles"
    OPEN_REFERRAL = "open_referral"
    BACK_TO_MENU = "back_to_menu"
    DRAFT_CANCELLED = "draft_cancelled"
    LOCATION_PROVIDED = "location_provided"
    SERVICE_SELECTED = "service_selected"
    TIME_SELECTED = "time_selected"
    PAYMENT_METHOD_SELECTED = "payment_method_selected"
    PAYMENT_INITIATED = "payment_initiated"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_RETRY = "payment_retry"
    CHANGE_PAYMENT_METHOD = "change_payment_method"
    PREDIAGNOSIS_SUBMITTED = "prediagnosis_submitted"
    BOOKING_COMMITTED = "booking_committed"
    BOOKING_FAILED = "booking_failed"
    MISSING_LOCATION = "missing_location"
    MISSING_SERVICE = "missing_service"
    MISSING_TIME = "missing_time"
    MISSING_PAYMENT = "missing_payment"
    NO_ACTIVE_BOOKING = "no_active_booking"
    RESCHEDULE_REQUESTED = "reschedule_requested"
    RESCHEDULE_CONFIRMED = "reschedule_confirmed"
    CANCEL_CONFIRMED = "cancel_confirmed"
    VIEW_REFRESHED = "view_refreshed"


T = TransitionTrigger

MISSING_STEP_TRIGGERS: dict[ConversationState, TransitionTrigger] = {
    S.LOCATION_CAPTURE: T.MISSING_LOCATION,
    S.SERVICE_SELECTION: T.MISSING_SERVICE,
    S.TIME_SELECTION: T.MISSING_TIME,
    S.PAYMENT_METHOD: T.MISSING_PAYMENT,
}


class EffectKind(str, Enum):
    """Side effects the caller must carry out after a step."""
    RESOLVE_LOCATION = "resolve_location"
    RECORD_SERVICE_PREFERENCE = "record_service_preference"
    RECORD_PAYMENT_METHOD = "record_payment_method"
    INITIATE_PAYMENT = "initiate_payment"
    RECORD_PREDIAGNOSIS = "record_prediagnosis"
    COMPLETE_BOOKING = "complete_booking"
    REQUEST_ADVICE = "request_advice"
    LIST_BOOKINGS = "list_bookings"
    SELECT_ACTIVE_BOOKING = "select_active_booking"
    CANCEL_BOOKING = "cancel_booking"
    RESCHEDULE_BOOKING = "reschedule_booking"
    SHOW_NOTIFICATIONS = "show_notifications"
    TOGGLE_NOTIFICATION = "toggle_notification"
    SHOW_LOYALTY = "show_loyalty"
    SHOW_LOYALTY_HISTORY = "show_loyalty_history"
    TRACK_VAN = "track_van"
    SHOW_BUNDLES = "show_bundles"
    SHOW_REFERRAL = "show_referral"
    GENERATE_REFERRAL = "generate_referral"
    REDEEM_REFERRAL = "redeem_referral"


@dataclass(frozen=True)
class Effect:
    kind: EffectKind
    args: dict[str, Any] = field(default_factory=dict)


@dataclass
class Transition:
    """A single valid state transition."""
    from_state: ConversationState
    to_state: ConversationState
    trigger: TransitionTrigger


@dataclass
class TransitionResult:
    """Outcome of one inbound message. Applying it is the caller's job."""
    next_state: ConversationState
    trigger: Optional[TransitionTrigger] = None
    draft_updates: dict[str, Any] = field(default_factory=dict)
    effects: list[Effect] = field(default_factory=list)
    reply: Optional[str] = None
    error: Optional[ValidationError] = None
    clear_draft: bool = False


SUB_FLOW_STATES: tuple[ConversationState, ...] = (
    S.VIEW_BOOKINGS,
    S.RESCHEDULE_CANCEL,
    S.RESCHEDULE_TIME_SELECTION,
    S.NOTIFICATIONS,
    S.LOYALTY_PROGRAM,
    S.VAN_TRACKING,
    S.BUNDLE_RECOMMENDATIONS,
    S.REFERRAL_SYSTEM,
    S.SUPPORT,
)

# Main-menu intent -> (trigger, effects, reply builder)
_MENU_ROUTES: dict[Intent, tuple[TransitionTrigger, tuple[EffectKind, ...], Callable[[], str]]] = {
    Intent.BOOK: (T.START_BOOKING, (), templates.location_prompt),
    Intent.VIEW_BOOKINGS: (T.OPEN_BOOKINGS, (EffectKind.LIST_BOOKINGS,),
                           templates.view_bookings_footer),
    Intent.RESCHEDULE_CANCEL: (T.OPEN_RESCHEDULE, (EffectKind.SELECT_ACTIVE_BOOKING,),
                               templates.reschedule_cancel_menu),
    Intent.SUPPORT: (T.OPEN_SUPPORT, (), templates.support_view),
    Intent.NOTIFICATIONS: (T.OPEN_NOTIFICATIONS, (EffectKind.SHOW_NOTIFICATIONS,),
                           templates.notifications_footer),
    Intent.LOYALTY: (T.OPEN_LOYALTY, (EffectKind.SHOW_LOYALTY,), templates.loyalty_footer),
    Intent.TRACKING: (T.OPEN_TRACKING, (EffectKind.TRACK_VAN,), templates.tracking_footer),
    Intent.BUNDLES: (T.OPEN_BUNDLES, (EffectKind.SHOW_BUNDLES,), templates.bundles_footer),
    Intent.REFERRAL: (T.OPEN_REFERRAL, (EffectKind.SHOW_REFERRAL,), templates.referral_footer),
}

_MENU_TARGETS: dict[TransitionTrigger, ConversationState] = {
    T.START_BOOKING: S.LOCATION_CAPTURE,
    T.OPEN_BOOKINGS: S.VIEW_BOOKINGS,
    T.OPEN_RESCHEDULE: S.RESCHEDULE_CANCEL,
    T.OPEN_SUPPORT: S.SUPPORT,
    T.OPEN_NOTIFICATIONS: S.NOTIFICATIONS,
    T.OPEN_LOYALTY: S.LOYALTY_PROGRAM,
    T.OPEN_TRACKING: S.VAN_TRACKING,
    T.OPEN_BUNDLES: S.BUNDLE_RECOMMENDATIONS,
    T.OPEN_REFERRAL: S.REFERRAL_SYSTEM,
}


class ConversationStateMachine:
    """
    Deterministic state machine controlling the conversation.

    Every transition must be explicitly listed. ``step`` is total: any
    text in any state yields a result, with invalid input producing a
    re-prompt that leaves the state unchanged.
    """

    TRANSITIONS: list[Transition] = [
        # --- Entry ---
        Transition(S.WELCOME, S.MAIN_MENU, T.GREETED),
        *[Transition(S.WELCOME, target, trigger) for trigger, target in _MENU_TARGETS.items()],

        # --- Main menu ---
        Transition(S.MAIN_MENU, S.MAIN_MENU, T.SHOW_MENU),
        Transition(S.MAIN_MENU, S.MAIN_MENU, T.ADVICE_REQUESTED),
        *[Transition(S.MAIN_MENU, target, trigger) for trigger, target in _MENU_TARGETS.items()],

        # --- Booking flow ---
        Transition(S.LOCATION_CAPTURE, S.SERVICE_SELECTION, T.LOCATION_PROVIDED),
        Transition(S.SERVICE_SELECTION, S.TIME_SELECTION, T.SERVICE_SELECTED),
        Transition(S.TIME_SELECTION, S.PAYMENT_METHOD, T.TIME_SELECTED),
        Transition(S.PAYMENT_METHOD, S.PAYMENT_CONFIRMATION, T.PAYMENT_METHOD_SELECTED),

        # --- Payment ---
        Transition(S.PAYMENT_CONFIRMATION, S.PREDIAGNOSIS, T.PAYMENT_INITIATED),
        Transition(S.PAYMENT_CONFIRMATION, S.PAYMENT_METHOD, T.PAYMENT_FAILED),
        Transition(S.PAYMENT_CONFIRMATION, S.PAYMENT_CONFIRMATION, T.PAYMENT_RETRY),
        Transition(S.PAYMENT_CONFIRMATION, S.PAYMENT_METHOD, T.CHANGE_PAYMENT_METHOD),

        # --- Completion ---
        Transition(S.PREDIAGNOSIS, S.PREDIAGNOSIS, T.PREDIAGNOSIS_SUBMITTED),
        Transition(S.PREDIAGNOSIS, S.MAIN_MENU, T.BOOKING_COMMITTED),
        Transition(S.PREDIAGNOSIS, S.PREDIAGNOSIS, T.BOOKING_FAILED),
        Transition(S.PREDIAGNOSIS, S.LOCATION_CAPTURE, T.MISSING_LOCATION),
        Transition(S.PREDIAGNOSIS, S.SERVICE_SELECTION, T.MISSING_SERVICE),
        Transition(S.PREDIAGNOSIS, S.TIME_SELECTION, T.MISSING_TIME),
        Transition(S.PREDIAGNOSIS, S.PAYMENT_METHOD, T.MISSING_PAYMENT),

        # --- Leaving the booking flow ---
        *[Transition(state, S.MAIN_MENU, T.DRAFT_CANCELLED) for state in S
          if state in BOOKING_FLOW_STATES],

        # --- Sub-flows ---
        *[Transition(state, S.MAIN_MENU, T.BACK_TO_MENU) for state in SUB_FLOW_STATES],
        Transition(S.VIEW_BOOKINGS, S.LOCATION_CAPTURE, T.START_BOOKING),
        Transition(S.BUNDLE_RECOMMENDATIONS, S.LOCATION_CAPTURE, T.START_BOOKING),
        Transition(S.SUPPORT, S.LOCATION_CAPTURE, T.START_BOOKING),
        Transition(S.SUPPORT, S.SUPPORT, T.ADVICE_REQUESTED),
        Transition(S.SUPPORT, S.SUPPORT, T.VIEW_REFRESHED),
        Transition(S.RESCHEDULE_CANCEL, S.MAIN_MENU, T.NO_ACTIVE_BOOKING),
        Transition(S.RESCHEDULE_CANCEL, S.RESCHEDULE_TIME_SELECTION, T.RESCHEDULE_REQUESTED),
        Transition(S.RESCHEDULE_CANCEL, S.MAIN_MENU, T.CANCEL_CONFIRMED),
        Transition(S.RESCHEDULE_TIME_SELECTION, S.MAIN_MENU, T.RESCHEDULE_CONFIRMED),
        Transition(S.NOTIFICATIONS, S.NOTIFICATIONS, T.VIEW_REFRESHED),
        Transition(S.LOYALTY_PROGRAM, S.LOYALTY_PROGRAM, T.VIEW_REFRESHED),
        Transition(S.VAN_TRACKING, S.VAN_TRACKING, T.VIEW_REFRESHED),
        Transition(S.REFERRAL_SYSTEM, S.REFERRAL_SYSTEM, T.VIEW_REFRESHED),
    ]

    def __init__(self, advisory_min_chars: int = settings.advisory.min_chars) -> None:
        self._advisory_min_chars = advisory_min_chars
        self._table: dict[tuple[ConversationState, TransitionTrigger], ConversationState] = {
            (t.from_state, t.trigger): t.to_state for t in self.TRANSITIONS
        }
        self._handlers: dict[ConversationState, Callable[[Session, str], TransitionResult]] = {
            S.WELCOME: self._on_welcome,
            S.MAIN_MENU: self._on_main_menu,
            S.LOCATION_CAPTURE: self._on_location,
            S.SERVICE_SELECTION: self._on_service,
            S.TIME_SELECTION: self._on_time,
            S.PAYMENT_METHOD: self._on_payment_method,
            S.PAYMENT_CONFIRMATION: self._on_payment_confirmation,
            S.PREDIAGNOSIS: self._on_prediagnosis,
            S.VIEW_BOOKINGS: self._on_view_bookings,
            S.RESCHEDULE_CANCEL: self._on_reschedule_cancel,
            S.RESCHEDULE_TIME_SELECTION: self._on_reschedule_time,
            S.NOTIFICATIONS: self._on_notifications,
            S.LOYALTY_PROGRAM: self._on_loyalty,
            S.VAN_TRACKING: self._on_tracking,
            S.BUNDLE_RECOMMENDATIONS: self._on_bundles,
            S.REFERRAL_SYSTEM: self._on_referral,
            S.SUPPORT: self._on_support,
        }

    # ------------------------------------------------------------------
    # Table access
    # ------------------------------------------------------------------

    def target(self, state: ConversationState, trigger: TransitionTrigger) -> ConversationState:
        """Return the state ``trigger`` leads to from ``state``.

        Raises:
            InvalidTransitionError: If no row matches.
        """
        try:
            return self._table[(state, trigger)]
        except KeyError:
            valid = [t.value for t in self.get_valid_triggers(state)]
            raise InvalidTransitionError(
                f"No valid transition from '{state.value}' "
                f"with trigger '{trigger.value}'. Valid triggers: {valid}"
            ) from None

    def get_valid_triggers(self, state: ConversationState) -> list[TransitionTrigger]:
        """Return all triggers valid from ``state``."""
        return [t.trigger for t in self.TRANSITIONS if t.from_state == state]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def step(self, session: Session, text: Optional[str]) -> TransitionResult:
        """Compute the result of ``text`` arriving in the session's current state."""
        text = text or ""
        state = session.state

        if state in BOOKING_FLOW_STATES and BOOKING_ESCAPE_TABLE.match(text) is Intent.BACK:
            return self._move(
                session, T.DRAFT_CANCELLED,
                reply="Booking cancelled.\n\n" + templates.main_menu(),
                clear_draft=True,
            )
        return self._handlers[state](session, text)

    def apply(self, session: Session, result: TransitionResult) -> ConversationState:
        """Write a step result into the session."""
        if result.trigger is not None:
            expected = self.target(session.state, result.trigger)
            if expected != result.next_state:
                raise InvalidTransitionError(
                    f"Result for '{result.trigger.value}' targets '{result.next_state.value}', "
                    f"table says '{expected.value}'"
                )
        if result.clear_draft:
            session.clear_draft()
        if result.draft_updates:
            session.draft = session.draft.model_copy(update=result.draft_updates)
        self._enter(session, result.next_state, result.trigger)
        return session.state

    def fire(self, session: Session, trigger: TransitionTrigger) -> ConversationState:
        """Apply an internal follow-up trigger."""
        self._enter(session, self.target(session.state, trigger), trigger)
        return session.state

    def prompt(self, session: Session) -> str:
        """The question the user is expected to answer in the current state."""
        state = session.state
        if state == S.WELCOME:
            return templates.welcome()
        if state == S.MAIN_MENU:
            return templates.main_menu()
        if state == S.LOCATION_CAPTURE:
            return templates.location_prompt()
        if state == S.SERVICE_SELECTION:
            return templates.service_menu()
        if state == S.TIME_SELECTION:
            return templates.time_menu(session.draft.service_key)
        if state == S.PAYMENT_METHOD:
            return templates.payment_menu(session.draft)
        if state == S.PAYMENT_CONFIRMATION:
            return templates.payment_pending()
        if state == S.PREDIAGNOSIS:
            return templates.prediagnosis_prompt()
        if state == S.VIEW_BOOKINGS:
            return templates.view_bookings_footer()
        if state == S.RESCHEDULE_CANCEL:
            return templates.reschedule_cancel_menu()
        if state == S.RESCHEDULE_TIME_SELECTION:
            return templates.reschedule_time_menu()
        if state == S.NOTIFICATIONS:
            return templates.notifications_footer()
        if state == S.LOYALTY_PROGRAM:
            return templates.loyalty_footer()
        if state == S.VAN_TRACKING:
            return templates.tracking_footer()
        if state == S.BUNDLE_RECOMMENDATIONS:
            return templates.bundles_footer()
        if state == S.REFERRAL_SYSTEM:
            return templates.referral_footer()
        return templates.support_view()

    def follow_up_prompt(self, session: Session, trigger: TransitionTrigger) -> str:
        if trigger in (T.BOOKING_COMMITTED, T.NO_ACTIVE_BOOKING):
            return templates.MENU_HINT
        return self.prompt(session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _enter(
        self,
        session: Session,
        new_state: ConversationState,
        trigger: Optional[TransitionTrigger],
    ) -> None:
        old_state = session.state
        session.state = new_state
        session.touch()
        if trigger is not None:
            logger.debug(
                "State transition: %s -> %s (trigger: %s)",
                old_state.value, new_state.value, trigger.value,
            )

    def _move(
        self,
        session: Session,
        trigger: TransitionTrigger,
        reply: Optional[str] = None,
        effects: Optional[list[Effect]] = None,
        draft_updates: Optional[dict[str, Any]] = None,
        clear_draft: bool = False,
    ) -> TransitionResult:
        return TransitionResult(
            next_state=self.target(session.state, trigger),
            trigger=trigger,
            draft_updates=draft_updates or {},
            effects=effects or [],
            reply=reply,
            clear_draft=clear_draft,
        )

    def _invalid(self, session: Session, expected: str) -> TransitionResult:
        error = ValidationError(expected)
        return TransitionResult(
            next_state=session.state,
            error=error,
            reply=templates.invalid_option(expected) + "\n\n" + self.prompt(session),
        )

    def _wants_advice(self, text: str) -> bool:
        stripped = text.strip()
        return len(stripped) > self._advisory_min_chars and not stripped.isdigit()

    def _advice(self, session: Session, text: str) -> TransitionResult:
        return self._move(
            session, T.ADVICE_REQUESTED,
            effects=[Effect(EffectKind.REQUEST_ADVICE, {"text": text.strip()})],
        )

    def _route_menu(self, session: Session, text: str) -> Optional[TransitionResult]:
        intent = MAIN_MENU_TABLE.match(text)
        if intent is None:
            return None
        if intent is Intent.GREETING:
            if session.state == S.WELCOME:
                return self._move(session, T.GREETED, reply=templates.welcome())
            return self._move(session, T.SHOW_MENU, reply=templates.main_menu())
        trigger, effect_kinds, reply = _MENU_ROUTES[intent]
        return self._move(
            session, trigger,
            reply=reply(),
            effects=[Effect(kind) for kind in effect_kinds],
            clear_draft=trigger == T.START_BOOKING,
        )

    def _sub_flow(
        self,
        session: Session,
        text: str,
        table: MenuTable,
        actions: dict[Intent, Callable[[], TransitionResult]],
        expected: str,
    ) -> TransitionResult:
        intent = table.match(text)
        if intent is Intent.BACK:
            return self._move(session, T.BACK_TO_MENU, reply=templates.main_menu())
        if intent is not None and intent in actions:
            return actions[intent]()
        return self._invalid(session, expected)

    def _start_booking(self, session: Session) -> TransitionResult:
        return self._move(
            session, T.START_BOOKING, reply=templates.location_prompt(), clear_draft=True,
        )

    # ------------------------------------------------------------------
    # Per-state handlers
    # ------------------------------------------------------------------

    def _on_welcome(self, session: Session, text: str) -> TransitionResult:
        routed = self._route_menu(session, text)
        if routed is not None:
            return routed
        return self._move(session, T.GREETED, reply=templates.welcome())

    def _on_main_menu(self, session: Session, text: str) -> TransitionResult:
        routed = self._route_menu(session, text)
        if routed is not None:
            return routed
        if self._wants_advice(text):
            return self._advice(session, text)
        return self._invalid(session, "Please select an option from 1 to 9 or ask a health question.")

    def _on_location(self, session: Session, text: str) -> TransitionResult:
        location = " ".join(text.split())
        if not location:
            return self._invalid(session, "Please send the name of your area.")
        return self._move(
            session, T.LOCATION_PROVIDED,
            reply=templates.service_menu(),
            effects=[Effect(EffectKind.RESOLVE_LOCATION)],
            draft_updates={"location": location},
        )

    def _on_service(self, session: Session, text: str) -> TransitionResult:
        key = text.strip()
        service = SERVICE_CATALOG.get(key)
        if service is None:
            return self._invalid(session, "Please reply with a number from 1 to 6.")
        return self._move(
            session, T.SERVICE_SELECTED,
            reply=templates.time_menu(key),
            effects=[Effect(EffectKind.RECORD_SERVICE_PREFERENCE, {"category": service["category"]})],
            draft_updates={"service_key": key},
        )

    def _on_time(self, session: Session, text: str) -> TransitionResult:
        key = text.strip()
        if key not in TIME_SLOTS:
            return self._invalid(session, "Please reply with a number from 1 to 3.")
        draft = session.draft.model_copy(update={"time_slot_key": key})
        return self._move(
            session, T.TIME_SELECTED,
            reply=templates.payment_menu(draft),
            draft_updates={"time_slot_key": key},
        )

    def _on_payment_method(self, session: Session, text: str) -> TransitionResult:
        method = get_payment_method(text)
        if method is None:
            return self._invalid(session, "Please reply with a number from 1 to 3.")
        return self._move(
            session, T.PAYMENT_METHOD_SELECTED,
            reply=templates.payment_pending(),
            effects=[
                Effect(EffectKind.RECORD_PAYMENT_METHOD, {"method": method["code"]}),
                Effect(EffectKind.INITIATE_PAYMENT),
            ],
            draft_updates={"payment_method": method["code"]},
        )

    def _on_payment_confirmation(self, session: Session, text: str) -> TransitionResult:
        if normalize_text(text) == "change":
            return self._move(
                session, T.CHANGE_PAYMENT_METHOD, reply=templates.payment_menu(session.draft),
            )
        return self._move(
            session, T.PAYMENT_RETRY,
            reply=templates.payment_pending(),
            effects=[Effect(EffectKind.INITIATE_PAYMENT)],
        )

    def _on_prediagnosis(self, session: Session, text: str) -> TransitionResult:
        description = text.strip()
        if not description or description.lower() == SKIP_TOKEN:
            return self._move(
                session, T.PREDIAGNOSIS_SUBMITTED,
                reply=templates.prediagnosis_prompt(),
                effects=[Effect(EffectKind.COMPLETE_BOOKING)],
            )
        return self._move(
            session, T.PREDIAGNOSIS_SUBMITTED,
            reply=templates.prediagnosis_prompt(),
            effects=[
                Effect(EffectKind.RECORD_PREDIAGNOSIS, {"text": description}),
                Effect(EffectKind.COMPLETE_BOOKING),
            ],
            draft_updates={"prediagnosis": description},
        )

    def _on_view_bookings(self, session: Session, text: str) -> TransitionResult:
        return self._sub_flow(
            session, text, VIEW_BOOKINGS_TABLE,
            {Intent.BOOK: lambda: self._start_booking(session)},
            "Reply 1 to book a new visit or 0 for the main menu.",
        )

    def _on_reschedule_cancel(self, session: Session, text: str) -> TransitionResult:
        booking_id = session.target_booking_id
        return self._sub_flow(
            session, text, RESCHEDULE_CANCEL_TABLE,
            {
                Intent.RESCHEDULE: lambda: self._move(
                    session, T.RESCHEDULE_REQUESTED, reply=templates.reschedule_time_menu(),
                ),
                Intent.CANCEL_BOOKING: lambda: self._move(
                    session, T.CANCEL_CONFIRMED,
                    reply=templates.MENU_HINT,
                    effects=[Effect(EffectKind.CANCEL_BOOKING, {"booking_id": booking_id})],
                ),
            },
            "Reply 1 to reschedule, 2 to cancel or 3 to go back.",
        )

    def _on_reschedule_time(self, session: Session, text: str) -> TransitionResult:
        if BACK_TABLE.match(text) is Intent.BACK:
            return self._move(session, T.BACK_TO_MENU, reply=templates.main_menu())
        key = text.strip()
        if key not in TIME_SLOTS:
            return self._invalid(session, "Please reply with a number from 1 to 3.")
        return self._move(
            session, T.RESCHEDULE_CONFIRMED,
            reply=templates.MENU_HINT,
            effects=[Effect(EffectKind.RESCHEDULE_BOOKING, {
                "booking_id": session.target_booking_id, "slot_key": key,
            })],
        )

    def _on_notifications(self, session: Session, text: str) -> TransitionResult:
        flag = NOTIFICATION_TOGGLES.get(text.strip())
        if flag is not None:
            return self._move(
                session, T.VIEW_REFRESHED,
                reply=templates.notifications_footer(),
                effects=[Effect(EffectKind.TOGGLE_NOTIFICATION, {"flag": flag})],
            )
        return self._sub_flow(
            session, text, NOTIFICATIONS_TABLE, {},
            "Reply 1-4 to change a setting or 5 to go back.",
        )

    def _on_loyalty(self, session: Session, text: str) -> TransitionResult:
        return self._sub_flow(
            session, text, LOYALTY_TABLE,
            {Intent.HISTORY: lambda: self._move(
                session, T.VIEW_REFRESHED,
                reply=templates.loyalty_footer(),
                effects=[Effect(EffectKind.SHOW_LOYALTY_HISTORY)],
            )},
            "Reply 1 for your points history or 0 for the main menu.",
        )

    def _on_tracking(self, session: Session, text: str) -> TransitionResult:
        return self._sub_flow(
            session, text, TRACKING_TABLE,
            {Intent.REFRESH: lambda: self._move(
                session, T.VIEW_REFRESHED,
                reply=templates.tracking_footer(),
                effects=[Effect(EffectKind.TRACK_VAN)],
            )},
            "Reply 1 to refresh or 0 for the main menu.",
        )

    def _on_bundles(self, session: Session, text: str) -> TransitionResult:
        return self._sub_flow(
            session, text, BUNDLES_TABLE,
            {Intent.BOOK: lambda: self._start_booking(session)},
            "Reply 1 to book a visit or 0 for the main menu.",
        )

    def _on_referral(self, session: Session, text: str) -> TransitionResult:
        match = REFERRAL_CODE_PATTERN.match(normalize_text(text))
        if match:
            return self._move(
                session, T.VIEW_REFRESHED,
                reply=templates.referral_footer(),
                effects=[Effect(EffectKind.REDEEM_REFERRAL, {"code": match.group(1).upper()})],
            )
        return self._sub_flow(
            session, text, REFERRAL_TABLE,
            {Intent.NEW_CODE: lambda: self._move(
                session, T.VIEW_REFRESHED,
                reply=templates.referral_footer(),
                effects=[Effect(EffectKind.GENERATE_REFERRAL)],
            )},
            "Reply 1 for a new code, REDEEM followed by a friend's code, or 0 for the menu.",
        )

    def _on_support(self, session: Session, text: str) -> TransitionResult:
        tips = get_health_tips(text)
        if tips is not None:
            topic, items = tips
            return self._move(
                session, T.VIEW_REFRESHED,
                reply=templates.health_tips(topic, items) + "\n\n" + templates.support_view(),
            )
        intent = SUPPORT_TABLE.match(text)
        if intent is None and self._wants_advice(text):
            return self._advice(session, text)
        return self._sub_flow(
            session, text, SUPPORT_TABLE,
            {Intent.BOOK: lambda: self._start_booking(session)},
            "Type a health topic or question, 1 to book, or 0 for the main menu.",
        )
