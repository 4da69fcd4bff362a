"""Tests for the loyalty points ledger."""

import pytest

from medipod.config import LoyaltyConfig
from medipod.errors import ValidationError
from medipod.loyalty.ledger import BOOKING_CREDIT_REASON, tier_for
from medipod.schemas.loyalty_schema import Tier
from tests.conftest import FRIEND_ID, USER_ID


class TestTierFor:
    CONFIG = LoyaltyConfig(
        points_per_booking=50,
        silver_threshold=200,
        gold_threshold=500,
        referrer_points=500,
        referred_points=500,
        referral_max_uses=5,
    )

    @pytest.mark.parametrize("points,tier", [
        (0, Tier.BRONZE),
        (199, Tier.BRONZE),
        (200, Tier.SILVER),
        (499, Tier.SILVER),
        (500, Tier.GOLD),
        (10_000, Tier.GOLD),
    ])
    def test_thresholds(self, points, tier):
        assert tier_for(points, self.CONFIG) == tier


class TestLoyaltyLedger:
    def test_new_identity_has_empty_account(self, ledger):
        account = ledger.balance(USER_ID)
        assert account.points == 0
        assert account.tier == Tier.BRONZE
        assert ledger.history(USER_ID) == []

    def test_credit_returns_new_balance(self, ledger):
        assert ledger.credit(USER_ID, 50, BOOKING_CREDIT_REASON, booking_ref="MPA-1") == 50
        assert ledger.credit(USER_ID, 50, BOOKING_CREDIT_REASON, booking_ref="MPA-2") == 100

    def test_redeem_returns_new_balance(self, ledger):
        ledger.credit(USER_ID, 300, "promo")
        assert ledger.redeem(USER_ID, 120, "discount") == 180
        assert ledger.balance(USER_ID).points == 180

    def test_balance_is_sum_of_history(self, ledger):
        ledger.credit(USER_ID, 50, BOOKING_CREDIT_REASON)
        ledger.credit(USER_ID, 500, "referral reward")
        ledger.redeem(USER_ID, 75, "discount")
        history = ledger.history(USER_ID)
        assert sum(entry.points for entry in history) == ledger.balance(USER_ID).points

    def test_history_is_newest_first(self, ledger):
        ledger.credit(USER_ID, 10, "first")
        ledger.credit(USER_ID, 20, "second")
        assert [entry.reason for entry in ledger.history(USER_ID)] == ["second", "first"]

    def test_lifetime_totals_and_tier(self, ledger):
        ledger.credit(USER_ID, 300, "promo")
        ledger.redeem(USER_ID, 100, "discount")
        account = ledger.balance(USER_ID)
        assert account.points == 200
        assert account.lifetime_earned == 300
        assert account.lifetime_redeemed == 100
        assert account.tier == Tier.SILVER

    def test_tier_follows_current_balance(self, ledger):
        ledger.credit(USER_ID, 600, "promo")
        assert ledger.balance(USER_ID).tier == Tier.GOLD
        ledger.redeem(USER_ID, 450, "voucher")
        assert ledger.balance(USER_ID).tier == Tier.BRONZE

    def test_insufficient_balance_rejected(self, ledger):
        ledger.credit(USER_ID, 40, "promo")
        with pytest.raises(ValidationError, match="Insufficient"):
            ledger.redeem(USER_ID, 50, "discount")
        assert ledger.balance(USER_ID).points == 40

    @pytest.mark.parametrize("points", [0, -5])
    def test_non_positive_credit_rejected(self, ledger, points):
        with pytest.raises(ValidationError):
            ledger.credit(USER_ID, points, "promo")

    @pytest.mark.parametrize("points", [0, -5])
    def test_non_positive_redeem_rejected(self, ledger, points):
        with pytest.raises(ValidationError):
            ledger.redeem(USER_ID, points, "discount")

    def test_accounts_are_separate(self, ledger):
        ledger.credit(USER_ID, 50, "promo")
        assert ledger.balance(FRIEND_ID).points == 0

    def test_has_credit(self, ledger):
        assert not ledger.has_credit("MPA-1")
        ledger.credit(USER_ID, 50, BOOKING_CREDIT_REASON, booking_ref="MPA-1")
        assert ledger.has_credit("MPA-1")
        assert not ledger.has_credit("MPA-1", reason="referral reward")
        assert not ledger.has_credit("MPA-2")
