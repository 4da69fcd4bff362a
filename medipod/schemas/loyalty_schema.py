"""Loyalty and referral data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Tier(str, Enum):
    BRONZE = "Bronze"
    SILVER = "Silver"
    GOLD = "Gold"


class LoyaltyTransaction(BaseModel):
    """Single signed entry in the append-only ledger."""
    model_config = ConfigDict(from_attributes=True)

    identity: str
    points: int
    reason: str
    booking_ref: Optional[str] = None
    created_at: Optional[datetime] = None


class LoyaltyAccount(BaseModel):
    """Derived view of a user's ledger. Never stored."""
    identity: str
    points: int = 0
    tier: Tier = Tier.BRONZE
    lifetime_earned: int = 0
    lifetime_redeemed: int = 0


class ReferralCode(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    identity: str
    uses: int = 0
    max_uses: int
    active: bool = True
    created_at: Optional[datetime] = None

    @property
    def remaining(self) -> int:
        return max(self.max_uses - self.uses, 0)
