"""
Executes the effect intents produced by the state machine.

Each effect appends reply text to an EffectOutcome and may name a
follow-up trigger (payment initiated, booking committed, ...). The first
effect that sets a follow-up ends the run.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from medipod.booking.orchestrator import BookingOrchestrator
from medipod.config import AppConfig, settings
from medipod.conversation.prediagnosis import PrediagnosisClassifier
from medipod.conversation.state_machine import (
    MISSING_STEP_TRIGGERS,
    Effect,
    EffectKind,
    TransitionTrigger,
)
from medipod.errors import (
    BookingCommitError,
    BookingStatusError,
    CollaboratorUnavailable,
    IncompleteBookingState,
    InvalidReferralCode,
    ValidationError,
)
from medipod.logging_context import get_user_logger
from medipod.loyalty.ledger import LoyaltyLedger
from medipod.loyalty.referrals import ReferralEngine
from medipod.prompts import templates
from medipod.schemas.loyalty_schema import ReferralCode
from medipod.schemas.profile_schema import HealthProfile
from medipod.schemas.session_schema import ConversationState, Session
from medipod.storage.database import DatabaseRunner
from medipod.storage.repositories import ProfileRepository
from medipod.tools.advisory import AdvisoryGateway
from medipod.tools.catalog import payment_method_by_code, recommend_bundles

logger = get_user_logger(__name__)


@dataclass
class EffectOutcome:
    messages: list[str] = field(default_factory=list)
    follow_up: Optional[TransitionTrigger] = None
    committed: bool = False


Handler = Callable[[Session, dict, EffectOutcome], Awaitable[None]]


class EffectExecutor:
    def __init__(
        self,
        orchestrator: BookingOrchestrator,
        profiles: ProfileRepository,
        ledger: LoyaltyLedger,
        referrals: ReferralEngine,
        advisory: AdvisoryGateway,
        classifier: Optional[PrediagnosisClassifier] = None,
        config: AppConfig = settings,
        db: Optional[DatabaseRunner] = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._profiles = profiles
        self._ledger = ledger
        self._referrals = referrals
        self._advisory = advisory
        self._classifier = classifier or PrediagnosisClassifier()
        self._config = config
        self._db = db or DatabaseRunner()
        self._handlers: dict[EffectKind, Handler] = {
            EffectKind.RESOLVE_LOCATION: self._resolve_location,
            EffectKind.RECORD_SERVICE_PREFERENCE: self._record_service_preference,
            EffectKind.RECORD_PAYMENT_METHOD: self._record_payment_method,
            EffectKind.INITIATE_PAYMENT: self._initiate_payment,
            EffectKind.RECORD_PREDIAGNOSIS: self._record_prediagnosis,
            EffectKind.COMPLETE_BOOKING: self._complete_booking,
            EffectKind.REQUEST_ADVICE: self._request_advice,
            EffectKind.LIST_BOOKINGS: self._list_bookings,
            EffectKind.SELECT_ACTIVE_BOOKING: self._select_active_booking,
            EffectKind.CANCEL_BOOKING: self._cancel_booking,
            EffectKind.RESCHEDULE_BOOKING: self._reschedule_booking,
            EffectKind.SHOW_NOTIFICATIONS: self._show_notifications,
            EffectKind.TOGGLE_NOTIFICATION: self._toggle_notification,
            EffectKind.SHOW_LOYALTY: self._show_loyalty,
            EffectKind.SHOW_LOYALTY_HISTORY: self._show_loyalty_history,
            EffectKind.TRACK_VAN: self._track_van,
            EffectKind.SHOW_BUNDLES: self._show_bundles,
            EffectKind.SHOW_REFERRAL: self._show_referral,
            EffectKind.GENERATE_REFERRAL: self._generate_referral,
            EffectKind.REDEEM_REFERRAL: self._redeem_referral,
        }

    async def run(self, session: Session, effects: list[Effect]) -> EffectOutcome:
        outcome = EffectOutcome()
        for effect in effects:
            logger.debug("Running effect %s", effect.kind.value)
            await self._handlers[effect.kind](session, effect.args, outcome)
            if outcome.follow_up is not None:
                break
        return outcome

    def _change_profile(
        self, identity: str, change: Callable[[HealthProfile], None]
    ) -> Optional[HealthProfile]:
        try:
            profile = self._profiles.get(identity)
            change(profile)
            self._profiles.save(profile)
        except SQLAlchemyError:
            logger.exception("Profile update failed for %s", identity)
            return None
        return profile

    async def _update_profile(
        self, identity: str, change: Callable[[HealthProfile], None]
    ) -> Optional[HealthProfile]:
        return await self._db.run(self._change_profile, identity, change)

    # --- Booking flow -------------------------------------------------

    async def _resolve_location(self, session: Session, args: dict, outcome: EffectOutcome) -> None:
        quote = await self._orchestrator.resolve_location(session)
        outcome.messages.append(templates.location_quote(quote))

    async def _record_service_preference(
        self, session: Session, args: dict, outcome: EffectOutcome
    ) -> None:
        await self._update_profile(session.identity, lambda p: p.add_preferred_service(args["category"]))

    async def _record_payment_method(
        self, session: Session, args: dict, outcome: EffectOutcome
    ) -> None:
        await self._update_profile(session.identity, lambda p: p.add_payment_method(args["method"]))

    async def _initiate_payment(self, session: Session, args: dict, outcome: EffectOutcome) -> None:
        try:
            initiation = await self._orchestrator.initiate_payment(session)
        except (CollaboratorUnavailable, IncompleteBookingState) as exc:
            logger.warning("Payment initiation failed for %s: %s", session.identity, exc)
            outcome.messages.append(templates.payment_failed())
            outcome.follow_up = TransitionTrigger.PAYMENT_FAILED
            return
        method = payment_method_by_code(initiation.method)
        label = method["label"] if method else initiation.method
        outcome.messages.append(templates.payment_initiated(initiation.reference, label))
        outcome.follow_up = TransitionTrigger.PAYMENT_INITIATED

    async def _record_prediagnosis(
        self, session: Session, args: dict, outcome: EffectOutcome
    ) -> None:
        found = self._classifier.extract(args.get("text", ""))
        if not found.conditions and not found.name:
            return

        def change(profile: HealthProfile) -> None:
            for condition in found.conditions:
                profile.add_condition(condition)
            if found.name and not profile.display_name:
                profile.display_name = found.name

        await self._update_profile(session.identity, change)
        logger.debug("Prediagnosis for %s: %s", session.identity, found.conditions)

    async def _complete_booking(self, session: Session, args: dict, outcome: EffectOutcome) -> None:
        try:
            booking = await self._orchestrator.complete_booking(session)
        except IncompleteBookingState as exc:
            logger.info("Incomplete booking for %s: %s", session.identity, exc.missing_step)
            outcome.messages.append(templates.booking_incomplete())
            outcome.follow_up = MISSING_STEP_TRIGGERS[ConversationState(exc.missing_step)]
            return
        except BookingCommitError:
            outcome.messages.append(templates.booking_retry())
            outcome.follow_up = TransitionTrigger.BOOKING_FAILED
            return
        balance = (await self._db.run(self._ledger.balance, session.identity)).points
        outcome.messages.append(templates.booking_confirmation(booking, balance))
        outcome.follow_up = TransitionTrigger.BOOKING_COMMITTED
        outcome.committed = True

    # --- Advice -------------------------------------------------------

    async def _request_advice(self, session: Session, args: dict, outcome: EffectOutcome) -> None:
        profile = await self._db.run(self._profiles.get, session.identity)
        summary = profile.summary()
        result = await self._advisory.advise(args.get("text", ""), summary)
        if result.available:
            outcome.messages.append(templates.advice_reply(result.text))
        else:
            logger.info("Advice unavailable (%s), showing menu", result.reason)
            outcome.messages.append(templates.advice_unavailable())

    # --- Existing bookings --------------------------------------------

    async def _list_bookings(self, session: Session, args: dict, outcome: EffectOutcome) -> None:
        bookings = await self._db.run(self._orchestrator.list_bookings, session.identity)
        outcome.messages.append(templates.bookings_list(bookings))

    async def _select_active_booking(
        self, session: Session, args: dict, outcome: EffectOutcome
    ) -> None:
        booking = await self._db.run(self._orchestrator.latest_active_booking, session.identity)
        if booking is None:
            session.target_booking_id = None
            outcome.messages.append(templates.no_active_booking())
            outcome.follow_up = TransitionTrigger.NO_ACTIVE_BOOKING
            return
        session.target_booking_id = booking.id
        outcome.messages.append(templates.active_booking_summary(booking))

    async def _cancel_booking(self, session: Session, args: dict, outcome: EffectOutcome) -> None:
        booking_id = args.get("booking_id")
        session.target_booking_id = None
        if not booking_id:
            outcome.messages.append(templates.no_active_booking())
            return
        try:
            booking = await self._orchestrator.cancel_booking(booking_id)
        except (BookingStatusError, ValidationError) as exc:
            outcome.messages.append(templates.booking_change_rejected(str(exc)))
            return
        outcome.messages.append(templates.booking_cancelled(booking))

    async def _reschedule_booking(
        self, session: Session, args: dict, outcome: EffectOutcome
    ) -> None:
        booking_id = args.get("booking_id")
        session.target_booking_id = None
        if not booking_id:
            outcome.messages.append(templates.no_active_booking())
            return
        try:
            booking = await self._orchestrator.reschedule_booking(booking_id, args["slot_key"])
        except (BookingStatusError, ValidationError) as exc:
            outcome.messages.append(templates.booking_change_rejected(str(exc)))
            return
        outcome.messages.append(templates.booking_rescheduled(booking))

    async def _track_van(self, session: Session, args: dict, outcome: EffectOutcome) -> None:
        booking = await self._db.run(self._orchestrator.latest_active_booking, session.identity)
        outcome.messages.append(templates.tracking_view(booking))

    # --- Account ------------------------------------------------------

    async def _show_notifications(
        self, session: Session, args: dict, outcome: EffectOutcome
    ) -> None:
        profile = await self._db.run(self._profiles.get, session.identity)
        outcome.messages.append(templates.notifications_view(profile.notifications))

    async def _toggle_notification(
        self, session: Session, args: dict, outcome: EffectOutcome
    ) -> None:
        profile = await self._update_profile(
            session.identity, lambda p: p.notifications.toggle(args["flag"])
        )
        if profile is None:
            outcome.messages.append(templates.GENERIC_ERROR)
            return
        outcome.messages.append(templates.notifications_view(profile.notifications))

    async def _show_loyalty(self, session: Session, args: dict, outcome: EffectOutcome) -> None:
        account = await self._db.run(self._ledger.balance, session.identity)
        outcome.messages.append(templates.loyalty_view(account))

    async def _show_loyalty_history(
        self, session: Session, args: dict, outcome: EffectOutcome
    ) -> None:
        history = await self._db.run(self._ledger.history, session.identity)
        outcome.messages.append(templates.loyalty_history(history))

    async def _show_bundles(self, session: Session, args: dict, outcome: EffectOutcome) -> None:
        profile = await self._db.run(self._profiles.get, session.identity)
        outcome.messages.append(templates.bundles_view(recommend_bundles(profile)))

    def _current_code(self, identity: str, fresh: bool) -> Optional[ReferralCode]:
        code = None if fresh else self._referrals.latest_code(identity)
        if code is None or not code.active or code.remaining == 0:
            code = self._referrals.get(self._referrals.generate(identity))
        return code

    async def _show_referral(self, session: Session, args: dict, outcome: EffectOutcome) -> None:
        code = await self._db.run(self._current_code, session.identity, False)
        outcome.messages.append(templates.referral_view(code))

    async def _generate_referral(
        self, session: Session, args: dict, outcome: EffectOutcome
    ) -> None:
        code = await self._db.run(self._current_code, session.identity, True)
        outcome.messages.append(templates.referral_view(code))

    async def _redeem_referral(self, session: Session, args: dict, outcome: EffectOutcome) -> None:
        try:
            await self._db.run(self._referrals.redeem, args["code"], session.identity)
        except InvalidReferralCode as exc:
            outcome.messages.append(templates.referral_rejected(str(exc)))
            return
        outcome.messages.append(templates.referral_redeemed(self._config.loyalty.referred_points))
