"""Tests for declarative menu matching."""

import pytest

from medipod.conversation.menu import (
    MAIN_MENU_TABLE,
    NOTIFICATIONS_TABLE,
    REFERRAL_TABLE,
    RESCHEDULE_CANCEL_TABLE,
    Intent,
)


class TestMainMenuMatching:
    @pytest.mark.parametrize("text,intent", [
        ("1", Intent.BOOK),
        (" 2 ", Intent.VIEW_BOOKINGS),
        ("9", Intent.REFERRAL),
        ("Hi", Intent.GREETING),
        ("MENU", Intent.GREETING),
        ("0", Intent.GREETING),
    ])
    def test_exact_tokens(self, text, intent):
        assert MAIN_MENU_TABLE.match(text) == intent

    @pytest.mark.parametrize("text,intent", [
        ("I need a booking please", Intent.BOOK),
        ("can I cancel", Intent.RESCHEDULE_CANCEL),
        ("reschedule my appointment", Intent.RESCHEDULE_CANCEL),
        ("show my bookings", Intent.VIEW_BOOKINGS),
        ("notifications", Intent.NOTIFICATIONS),
        ("any bundles?", Intent.BUNDLES),
        ("I need help", Intent.SUPPORT),
    ])
    def test_keywords(self, text, intent):
        assert MAIN_MENU_TABLE.match(text) == intent

    def test_keyword_must_start_a_word(self):
        assert MAIN_MENU_TABLE.match("caravan") is None

    def test_exact_beats_keyword(self):
        assert MAIN_MENU_TABLE.match("back") == Intent.GREETING

    @pytest.mark.parametrize("text", ["", "   ", "xyz"])
    def test_no_match(self, text):
        assert MAIN_MENU_TABLE.match(text) is None


class TestSubMenus:
    def test_reschedule_cancel_options(self):
        assert RESCHEDULE_CANCEL_TABLE.match("1") == Intent.RESCHEDULE
        assert RESCHEDULE_CANCEL_TABLE.match("cancel it") == Intent.CANCEL_BOOKING
        assert RESCHEDULE_CANCEL_TABLE.match("3") == Intent.BACK

    def test_referral_new(self):
        assert REFERRAL_TABLE.match("new") == Intent.NEW_CODE
        assert REFERRAL_TABLE.match("give me a new code") == Intent.NEW_CODE

    def test_notifications_back(self):
        assert NOTIFICATIONS_TABLE.match("5") == Intent.BACK
        assert NOTIFICATIONS_TABLE.match("1") is None
