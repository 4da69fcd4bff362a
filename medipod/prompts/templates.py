"""Plain-text reply templates. The transport handles any rich formatting."""

from typing import Optional

from medipod.config import settings
from medipod.schemas.booking_schema import Booking
from medipod.schemas.loyalty_schema import LoyaltyAccount, LoyaltyTransaction, ReferralCode
from medipod.schemas.profile_schema import NotificationPreferences
from medipod.schemas.session_schema import DraftBooking
from medipod.tools.catalog import (
    PAYMENT_METHODS,
    SERVICE_CATALOG,
    TIME_SLOTS,
    Bundle,
    bundle_pricing,
    get_service,
    get_time_slot,
)
from medipod.tools.geo import LogisticsQuote

CURRENCY = settings.business.currency

MENU_HINT = "Reply MENU to see all options."
GENERIC_ERROR = "Something went wrong on our side. Please try again in a moment."


def money(amount: int) -> str:
    return f"{CURRENCY} {amount:,}"


def main_menu() -> str:
    return (
        "What would you like to do?\n"
        "1. Book a home visit\n"
        "2. View my bookings\n"
        "3. Reschedule or cancel\n"
        "4. Help and support\n"
        "5. Notification settings\n"
        "6. Loyalty points\n"
        "7. Track my van\n"
        "8. Service bundles\n"
        "9. Refer a friend\n\n"
        "Or type your health question."
    )


def welcome() -> str:
    return (
        f"Welcome to {settings.business.name}. We bring clinicians to your home.\n\n"
        + main_menu()
    )


def location_prompt() -> str:
    return (
        "Where should we visit you? Send your area or neighbourhood, "
        "for example Westlands or Kilimani.\n"
        "Reply CANCEL at any time to stop."
    )


def location_quote(quote: LogisticsQuote) -> str:
    lines = [
        f"Location: {quote.location} (Zone {quote.zone}, {quote.distance_km:.1f} km)",
        f"Logistics fee: {money(quote.fee)}",
    ]
    if quote.time_surcharge:
        lines.append(f"  includes {money(quote.time_surcharge)} peak-time surcharge")
    lines.append(f"Estimated arrival: {quote.eta}")
    return "\n".join(lines)


def service_menu() -> str:
    lines = ["Choose a service:"]
    for key, service in SERVICE_CATALOG.items():
        lines.append(f"{key}. {service['name']} - {money(service['price'])}")
    return "\n".join(lines)


def _slot_lines() -> list[str]:
    return [f"{key}. {slot['label']}" for key, slot in TIME_SLOTS.items()]


def time_menu(service_key: Optional[str] = None) -> str:
    service = get_service(service_key) if service_key else None
    lines = []
    if service is not None:
        lines.append(f"{service['name']} selected ({service['duration']} min).\n")
    lines.append("Choose a time slot:")
    lines.extend(_slot_lines())
    return "\n".join(lines)


def payment_menu(draft: Optional[DraftBooking] = None) -> str:
    lines = []
    if draft is not None and draft.service_key and draft.logistics_fee is not None:
        service = get_service(draft.service_key)
        if service is not None:
            total = service["price"] + draft.logistics_fee
            lines.append(
                f"Total: {money(total)} "
                f"(service {money(service['price'])} + logistics {money(draft.logistics_fee)})\n"
            )
    lines.append("Choose a payment method:")
    for key, method in PAYMENT_METHODS.items():
        lines.append(f"{key}. {method['label']}")
    return "\n".join(lines)


def payment_pending() -> str:
    return "Reply CHANGE to pick another payment method, or anything else to retry the payment."


def payment_initiated(reference: str, label: str) -> str:
    return f"{label} request sent. Payment reference: {reference}."


def payment_failed() -> str:
    return "We could not start that payment."


def prediagnosis_prompt() -> str:
    return (
        "Briefly describe your symptoms so our clinician can prepare, "
        "or reply SKIP to finish your booking."
    )


def booking_confirmation(booking: Booking, balance: Optional[int] = None) -> str:
    lines = [
        "Booking confirmed.",
        f"Booking ID: {booking.id}",
        f"Service: {booking.service_name}",
        f"Time: {booking.time_slot_label}, {booking.scheduled_time:%a %d %b}",
        f"Location: {booking.location} (Zone {booking.zone})",
        f"Service fee: {money(booking.service_fee)}",
        f"Logistics fee: {money(booking.logistics_fee)}",
        f"Total: {money(booking.total)}",
        f"Payment: {booking.payment_method} ({booking.payment_status.value})",
        f"Van ETA once dispatched: {booking.eta}",
    ]
    if balance is not None:
        lines.append(
            f"You earned {settings.loyalty.points_per_booking} loyalty points. "
            f"Balance: {balance}."
        )
    return "\n".join(lines)


def booking_retry() -> str:
    return "We couldn't save your booking just now. Reply SKIP to try again."


def booking_incomplete() -> str:
    return "We still need a few details before we can book your visit."


def booking_line(booking: Booking) -> str:
    return (
        f"{booking.id}: {booking.service_name}, {booking.time_slot_label} "
        f"{booking.scheduled_time:%d %b}, {booking.location}, {booking.status.value}"
    )


def bookings_list(bookings: list[Booking]) -> str:
    if not bookings:
        return "You have no bookings yet."
    return "Your bookings:\n" + "\n".join(booking_line(b) for b in bookings)


def view_bookings_footer() -> str:
    return "1. Book a new visit\n0. Main menu"


def active_booking_summary(booking: Booking) -> str:
    return "Your upcoming booking:\n" + booking_line(booking)


def no_active_booking() -> str:
    return "You have no upcoming bookings to change."


def reschedule_cancel_menu() -> str:
    return "1. Reschedule\n2. Cancel booking\n3. Back to menu"


def reschedule_time_menu() -> str:
    return "Choose a new time slot:\n" + "\n".join(_slot_lines()) + "\n0. Main menu"


def booking_cancelled(booking: Booking) -> str:
    return f"Booking {booking.id} has been cancelled."


def booking_rescheduled(booking: Booking) -> str:
    return (
        f"Booking {booking.id} moved to {booking.time_slot_label}, "
        f"{booking.scheduled_time:%a %d %b}."
    )


def booking_change_rejected(reason: str) -> str:
    return f"That booking can't be changed: {reason}"


def notifications_view(prefs: NotificationPreferences) -> str:
    def state(flag: bool) -> str:
        return "ON" if flag else "OFF"

    return (
        "Your notification settings:\n"
        f"1. Medication reminders: {state(prefs.medication)}\n"
        f"2. Follow-up messages: {state(prefs.followup)}\n"
        f"3. Health tips: {state(prefs.health_tips)}\n"
        f"4. Loyalty updates: {state(prefs.loyalty)}"
    )


def notifications_footer() -> str:
    return "Reply 1-4 to switch a setting on or off, or 5 to go back."


def loyalty_view(account: LoyaltyAccount) -> str:
    lines = [
        f"Loyalty points: {account.points}",
        f"Tier: {account.tier.value}",
        f"Lifetime earned: {account.lifetime_earned}",
    ]
    if account.lifetime_redeemed:
        lines.append(f"Lifetime redeemed: {account.lifetime_redeemed}")
    return "\n".join(lines)


def loyalty_history(transactions: list[LoyaltyTransaction]) -> str:
    if not transactions:
        return "No loyalty activity yet."
    lines = ["Recent activity:"]
    for tx in transactions:
        sign = "+" if tx.points > 0 else ""
        lines.append(f"{sign}{tx.points} {tx.reason}")
    return "\n".join(lines)


def loyalty_footer() -> str:
    return (
        f"Earn {settings.loyalty.points_per_booking} points per booking.\n"
        "1. Points history\n0. Main menu"
    )


def tracking_view(booking: Optional[Booking]) -> str:
    if booking is None:
        return "You have no active bookings to track."
    return (
        f"Booking {booking.id}: {booking.status.value}\n"
        f"Visit: {booking.time_slot_label}, {booking.scheduled_time:%a %d %b}\n"
        f"Location: {booking.location} (Zone {booking.zone})\n"
        f"Estimated van arrival once dispatched: {booking.eta}"
    )


def tracking_footer() -> str:
    return "1. Refresh\n0. Main menu"


def bundles_view(bundles: list[Bundle]) -> str:
    lines = ["Recommended for you:"]
    for bundle in bundles:
        original, discounted = bundle_pricing(bundle)
        lines.append(
            f"{bundle['name']}: {money(discounted)} instead of {money(original)} "
            f"({bundle['discount_percent']}% off). {bundle['description']}."
        )
    return "\n".join(lines)


def bundles_footer() -> str:
    return "1. Book a visit\n0. Main menu"


def referral_view(code: ReferralCode) -> str:
    return (
        f"Your referral code: {code.code}\n"
        f"Uses left: {code.remaining} of {code.max_uses}\n"
        f"When a friend redeems it you get {settings.loyalty.referrer_points} points "
        f"and they get {settings.loyalty.referred_points}."
    )


def referral_redeemed(points: int) -> str:
    return f"Referral code accepted. {points} points added to your account."


def referral_rejected(reason: str) -> str:
    return f"That referral code can't be used: {reason}"


def referral_footer() -> str:
    return "1. New code\nREDEEM <code> to use a friend's code\n0. Main menu"


def support_view() -> str:
    business = settings.business
    return (
        f"{business.name} support\n"
        f"Call: {business.support_phone}\n"
        f"Email: {business.support_email}\n"
        "For emergencies call 999 or go to the nearest hospital.\n\n"
        "Type UTI, diabetes, blood pressure or stress for health tips, "
        "ask any health question, reply 1 to book, or 0 for the menu."
    )


def health_tips(topic: str, tips: list[str]) -> str:
    title = topic.replace("_", " ")
    return f"Tips for {title}:\n" + "\n".join(f"- {tip}" for tip in tips)


def advice_reply(text: str) -> str:
    return f"{text}\n\n{MENU_HINT}"


def advice_unavailable() -> str:
    return "I can't answer health questions right now.\n\n" + main_menu()


def reminder_notice(booking: Booking) -> str:
    return (
        f"Reminder: your {booking.service_name} visit is at "
        f"{booking.scheduled_time:%H:%M} today at {booking.location}."
    )


def arrival_notice(booking: Booking) -> str:
    return (
        f"Your {settings.business.name} van is on the way to {booking.location}. "
        f"Expected in {booking.eta}."
    )


def invalid_option(expected: str) -> str:
    return f"Sorry, I didn't get that. {expected}"
