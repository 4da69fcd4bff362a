"""
Simulated payment gateway.

In production, this would hand off to M-Pesa STK push, the NHIF claims
API or the wallet ledger. Here charges are recorded as pending and a
gateway callback later settles them.
"""

import logging
import secrets
from abc import ABC, abstractmethod
from typing import Optional

from medipod.errors import CollaboratorUnavailable, PersistenceConflict
from medipod.schemas.booking_schema import PaymentInitiation, PaymentRecord, PaymentStatus
from medipod.storage.database import DatabaseRunner
from medipod.storage.repositories import PaymentRepository
from medipod.tools.catalog import payment_method_by_code

logger = logging.getLogger(__name__)

SUCCESS_RESULT_CODE = "0"


def status_for_result_code(result_code) -> PaymentStatus:
    """Gateway result code "0" settles the charge. Anything else failed."""
    return PaymentStatus.PAID if str(result_code).strip() == SUCCESS_RESULT_CODE else PaymentStatus.FAILED


class PaymentGateway(ABC):
    @abstractmethod
    async def initiate(self, method: str, amount: int, identity: str) -> PaymentInitiation:
        """Start a charge. Raises CollaboratorUnavailable when the gateway fails."""


class SimulatedPaymentGateway(PaymentGateway):
    """Issues references and records pending charges without moving money."""

    def __init__(self, payments: PaymentRepository, db: Optional[DatabaseRunner] = None) -> None:
        self._payments = payments
        self._db = db or DatabaseRunner()

    @staticmethod
    def _reference(prefix: str) -> str:
        return f"{prefix}-{secrets.token_hex(4).upper()}"

    async def initiate(self, method: str, amount: int, identity: str) -> PaymentInitiation:
        info = payment_method_by_code(method)
        if info is None:
            raise CollaboratorUnavailable("payment", f"Unsupported payment method: {method!r}")
        if amount < 0:
            raise CollaboratorUnavailable("payment", f"Invalid amount: {amount}")

        for _ in range(3):
            reference = self._reference(info["reference_prefix"])
            try:
                await self._db.run(self._payments.create, PaymentRecord(
                    reference=reference,
                    identity=identity,
                    method=method,
                    amount=amount,
                    status=PaymentStatus.PENDING,
                ))
            except PersistenceConflict:
                continue
            break
        else:
            raise CollaboratorUnavailable("payment", "Could not allocate a payment reference")

        logger.info("Payment %s initiated: %s %d", reference, method, amount)
        return PaymentInitiation(
            reference=reference,
            method=method,
            amount=amount,
            status=PaymentStatus.PENDING,
            message=f"{info['label']} request sent",
        )
