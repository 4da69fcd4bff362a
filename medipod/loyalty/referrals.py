"""Referral codes and redemption awards."""

import logging
import secrets
import string
from typing import Optional

from medipod.config import LoyaltyConfig, settings
from medipod.errors import InvalidReferralCode, PersistenceConflict
from medipod.loyalty.ledger import LoyaltyLedger
from medipod.schemas.loyalty_schema import ReferralCode
from medipod.storage.repositories import ReferralRepository
from medipod.utils import last_digits

logger = logging.getLogger(__name__)

CODE_PREFIX = "MEDI"
_ALPHABET = string.digits + string.ascii_uppercase

REFERRER_REASON = "referral reward"
REFERRED_REASON = "referral welcome bonus"


def _random_suffix(length: int = 4) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


class ReferralEngine:
    def __init__(
        self,
        repository: ReferralRepository,
        ledger: LoyaltyLedger,
        config: LoyaltyConfig = settings.loyalty,
    ) -> None:
        self._repo = repository
        self._ledger = ledger
        self._config = config

    @property
    def award_per_redemption(self) -> int:
        return self._config.referrer_points + self._config.referred_points

    def generate(self, identity: str) -> str:
        """Create a new code for ``identity``. Collisions are retried."""
        for _ in range(10):
            code = f"{CODE_PREFIX}{last_digits(identity)}{_random_suffix()}"
            try:
                self._repo.insert(ReferralCode(
                    code=code, identity=identity, max_uses=self._config.referral_max_uses,
                ))
            except PersistenceConflict:
                logger.debug("Referral code collision on %s, retrying", code)
                continue
            logger.info("Referral code %s generated for %s", code, identity)
            return code
        raise PersistenceConflict(f"Could not allocate a referral code for {identity}")

    def latest_code(self, identity: str) -> Optional[ReferralCode]:
        return self._repo.latest_for(identity)

    def get(self, code: str) -> Optional[ReferralCode]:
        return self._repo.get(code.strip().upper())

    def redeem(self, code: str, new_identity: str, booking_ref: Optional[str] = None) -> bool:
        """Redeem ``code`` for ``new_identity`` and credit both parties.

        Raises InvalidReferralCode when the code is unknown, inactive,
        exhausted, owned by the redeemer, or already used by them.
        """
        code = code.strip().upper()
        referral = self._repo.get(code)
        if referral is None:
            raise InvalidReferralCode(f"Unknown referral code {code}")
        if referral.identity == new_identity:
            raise InvalidReferralCode("You cannot redeem your own referral code")
        if not referral.active:
            raise InvalidReferralCode(f"Referral code {code} is no longer active")

        try:
            consumed = self._repo.consume(code, new_identity, booking_ref)
        except PersistenceConflict:
            raise InvalidReferralCode(f"Referral code {code} was already redeemed by you") from None
        if not consumed:
            raise InvalidReferralCode(f"Referral code {code} has reached its limit")

        self._ledger.credit(referral.identity, self._config.referrer_points, REFERRER_REASON, booking_ref)
        self._ledger.credit(new_identity, self._config.referred_points, REFERRED_REASON, booking_ref)
        logger.info("Referral %s redeemed by %s", code, new_identity)
        return True
