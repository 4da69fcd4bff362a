"""
Append-only loyalty points ledger.

Balances are never stored: they are always the sum over the identity's
transactions, so the two can never disagree.
"""

import logging
from typing import Optional

from medipod.config import LoyaltyConfig, settings
from medipod.errors import ValidationError
from medipod.schemas.loyalty_schema import LoyaltyAccount, LoyaltyTransaction, Tier
from medipod.storage.repositories import LoyaltyRepository

logger = logging.getLogger(__name__)

BOOKING_CREDIT_REASON = "booking completed"


def tier_for(points: int, config: LoyaltyConfig = settings.loyalty) -> Tier:
    if points >= config.gold_threshold:
        return Tier.GOLD
    if points >= config.silver_threshold:
        return Tier.SILVER
    return Tier.BRONZE


class LoyaltyLedger:
    def __init__(self, repository: LoyaltyRepository, config: LoyaltyConfig = settings.loyalty) -> None:
        self._repo = repository
        self._config = config

    def credit(
        self, identity: str, points: int, reason: str, booking_ref: Optional[str] = None
    ) -> int:
        """Add points and return the new balance."""
        if points <= 0:
            raise ValidationError(f"Credit must be positive, got {points}")
        self._repo.append(LoyaltyTransaction(
            identity=identity, points=points, reason=reason, booking_ref=booking_ref,
        ))
        balance = self._repo.totals(identity)[0]
        logger.info("Credited %d points to %s (%s), balance %d", points, identity, reason, balance)
        return balance

    def redeem(self, identity: str, points: int, reason: str) -> int:
        """Spend points and return the new balance."""
        if points <= 0:
            raise ValidationError(f"Redemption must be positive, got {points}")
        balance = self._repo.totals(identity)[0]
        if points > balance:
            raise ValidationError(f"Insufficient points: have {balance}, need {points}")
        self._repo.append(LoyaltyTransaction(identity=identity, points=-points, reason=reason))
        return balance - points

    def balance(self, identity: str) -> LoyaltyAccount:
        points, earned, redeemed = self._repo.totals(identity)
        return LoyaltyAccount(
            identity=identity,
            points=points,
            tier=tier_for(points, self._config),
            lifetime_earned=earned,
            lifetime_redeemed=redeemed,
        )

    def history(self, identity: str, limit: int = 10) -> list[LoyaltyTransaction]:
        return self._repo.history(identity, limit)

    def has_credit(self, booking_ref: str, reason: str = BOOKING_CREDIT_REASON) -> bool:
        return self._repo.exists(booking_ref, reason)
