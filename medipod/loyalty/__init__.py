from medipod.loyalty.ledger import LoyaltyLedger, tier_for
from medipod.loyalty.referrals import ReferralEngine

__all__ = [
    "LoyaltyLedger",
    "ReferralEngine",
    "tier_for",
]
