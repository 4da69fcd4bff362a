"""
Declarative menu matching.

Each menu is a table of options mapping exact tokens and keywords to an
intent. Exact tokens are checked across the whole table first, then
keywords in table order, so earlier rows win keyword ties ("reschedule"
is listed before "book").
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from medipod.utils import normalize_text


class Intent(str, Enum):
    BOOK = "book"
    VIEW_BOOKINGS = "view_bookings"
    RESCHEDULE_CANCEL = "reschedule_cancel"
    SUPPORT = "support"
    NOTIFICATIONS = "notifications"
    LOYALTY = "loyalty"
    TRACKING = "tracking"
    BUNDLES = "bundles"
    REFERRAL = "referral"
    GREETING = "greeting"
    BACK = "back"
    RESCHEDULE = "reschedule"
    CANCEL_BOOKING = "cancel_booking"
    HISTORY = "history"
    REFRESH = "refresh"
    NEW_CODE = "new_code"


@dataclass(frozen=True)
class MenuOption:
    intent: Intent
    exact: frozenset[str]
    keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class MenuTable:
    options: tuple[MenuOption, ...]

    def match(self, text: str) -> Optional[Intent]:
        token = normalize_text(text)
        if not token:
            return None
        for option in self.options:
            if token in option.exact:
                return option.intent
        for option in self.options:
            for keyword in option.keywords:
                if re.search(rf"\b{re.escape(keyword)}", token):
                    return option.intent
        return None


def _option(intent: Intent, exact: set[str], *keywords: str) -> MenuOption:
    return MenuOption(intent=intent, exact=frozenset(exact), keywords=tuple(keywords))


BACK_OPTION = _option(Intent.BACK, {"back", "menu", "0"})

MAIN_MENU_TABLE = MenuTable((
    _option(Intent.RESCHEDULE_CANCEL, {"3"}, "reschedule", "cancel"),
    _option(Intent.VIEW_BOOKINGS, {"2"}, "my bookings", "view booking", "bookings",
            "appointments"),
    _option(Intent.BOOK, {"1"}, "book", "appointment", "home visit"),
    _option(Intent.NOTIFICATIONS, {"5"}, "notification", "reminder"),
    _option(Intent.LOYALTY, {"6"}, "loyalty", "points", "rewards"),
    _option(Intent.TRACKING, {"7"}, "track", "van"),
    _option(Intent.BUNDLES, {"8"}, "bundle", "package"),
    _option(Intent.REFERRAL, {"9"}, "refer", "invite"),
    _option(Intent.SUPPORT, {"4"}, "help", "support"),
    _option(Intent.GREETING, {"hi", "hello", "hey", "start", "menu", "0", "back"}),
))

BACK_TABLE = MenuTable((BACK_OPTION,))

BOOKING_ESCAPE_TABLE = MenuTable((
    _option(Intent.BACK, {"cancel", "menu", "0"}),
))

VIEW_BOOKINGS_TABLE = MenuTable((
    _option(Intent.BOOK, {"1"}, "book"),
    BACK_OPTION,
))

RESCHEDULE_CANCEL_TABLE = MenuTable((
    _option(Intent.RESCHEDULE, {"1"}, "reschedule"),
    _option(Intent.CANCEL_BOOKING, {"2"}, "cancel"),
    _option(Intent.BACK, {"3", "back", "menu", "0"}),
))

LOYALTY_TABLE = MenuTable((
    _option(Intent.HISTORY, {"1"}, "history"),
    BACK_OPTION,
))

TRACKING_TABLE = MenuTable((
    _option(Intent.REFRESH, {"1"}, "refresh", "status"),
    BACK_OPTION,
))

BUNDLES_TABLE = MenuTable((
    _option(Intent.BOOK, {"1"}, "book"),
    BACK_OPTION,
))

REFERRAL_TABLE = MenuTable((
    _option(Intent.NEW_CODE, {"1", "new"}, "new code"),
    BACK_OPTION,
))

SUPPORT_TABLE = MenuTable((
    _option(Intent.BOOK, {"1"}),
    BACK_OPTION,
))

NOTIFICATION_TOGGLES: dict[str, str] = {
    "1": "medication",
    "2": "followup",
    "3": "health_tips",
    "4": "loyalty",
}

NOTIFICATIONS_TABLE = MenuTable((
    _option(Intent.BACK, {"5", "back", "menu", "0"}),
))
