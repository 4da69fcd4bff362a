"""Tests for the simulated payment gateway."""

import re

import pytest

from medipod.errors import CollaboratorUnavailable
from medipod.schemas.booking_schema import PaymentStatus
from medipod.tools.payment import SimulatedPaymentGateway, status_for_result_code
from tests.conftest import USER_ID


class TestResultCodes:
    @pytest.mark.parametrize("code,status", [
        ("0", PaymentStatus.PAID),
        (0, PaymentStatus.PAID),
        (" 0 ", PaymentStatus.PAID),
        ("1", PaymentStatus.FAILED),
        ("1032", PaymentStatus.FAILED),
        ("", PaymentStatus.FAILED),
    ])
    def test_status_for_result_code(self, code, status):
        assert status_for_result_code(code) == status


class TestSimulatedPaymentGateway:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("method,prefix", [
        ("mpesa", "MPESA"), ("nhif", "NHIF"), ("wallet", "WALLET"),
    ])
    async def test_reference_format(self, payment_repo, method, prefix):
        initiation = await SimulatedPaymentGateway(payment_repo).initiate(method, 215, USER_ID)
        assert re.fullmatch(rf"{prefix}-[0-9A-F]{{8}}", initiation.reference)
        assert initiation.status == PaymentStatus.PENDING
        assert initiation.amount == 215

    @pytest.mark.asyncio
    async def test_pending_record_stored(self, payment_repo):
        initiation = await SimulatedPaymentGateway(payment_repo).initiate("mpesa", 300, USER_ID)
        record = payment_repo.get(initiation.reference)
        assert record.identity == USER_ID
        assert record.method == "mpesa"
        assert record.amount == 300
        assert record.status == PaymentStatus.PENDING
        assert record.result_code is None

    @pytest.mark.asyncio
    async def test_unsupported_method(self, payment_repo):
        with pytest.raises(CollaboratorUnavailable) as excinfo:
            await SimulatedPaymentGateway(payment_repo).initiate("bitcoin", 300, USER_ID)
        assert excinfo.value.collaborator == "payment"

    @pytest.mark.asyncio
    async def test_negative_amount(self, payment_repo):
        with pytest.raises(CollaboratorUnavailable):
            await SimulatedPaymentGateway(payment_repo).initiate("mpesa", -1, USER_ID)

    @pytest.mark.asyncio
    async def test_references_are_unique(self, payment_repo):
        gateway = SimulatedPaymentGateway(payment_repo)
        references = {(await gateway.initiate("mpesa", 100, USER_ID)).reference for _ in range(10)}
        assert len(references) == 10
