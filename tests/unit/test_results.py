"""Unit tests for result shaping and audit snapshot serialization"""

import uuid
import pytest
from datetime import date, datetime, timezone
from fair_settlement.domain.models import (
    InstallmentState,
    PaymentActionResult,
    PaymentStatus,
    PurchaseState,
    SettlementResult,
)
from fair_settlement.services.audit import to_json_value


@pytest.fixture
def settlement_result() -> SettlementResult:
    purchase_id = uuid.uuid4()
    return SettlementResult(
        installment=InstallmentState(
            id=uuid.uuid4(),
            purchase_id=purchase_id,
            number=1,
            amount_cents=2000,
            paid_amount_cents=2000,
            paid_at=datetime(2026, 2, 4, 10, 30, tzinfo=timezone.utc),
            due_date=date(2026, 2, 10),
        ),
        purchase=PurchaseState(
            id=purchase_id,
            total_cents=4000,
            paid_cents=2000,
            paid_at=None,
            status=PaymentStatus.PARTIALLY_PAID,
        ),
    )


def test_payment_action_result_is_flat(settlement_result: SettlementResult):
    result = PaymentActionResult.from_settlement(settlement_result)

    assert result.ok is True
    assert result.purchase_id == settlement_result.purchase.id
    assert result.purchase_status == PaymentStatus.PARTIALLY_PAID
    assert result.installment_number == 1
    assert result.installment_paid_amount_cents == 2000


def test_payment_action_result_as_dict_uses_iso_strings(settlement_result: SettlementResult):
    data = PaymentActionResult.from_settlement(settlement_result).as_dict()

    assert data["purchaseStatus"] == "PARTIALLY_PAID"
    assert data["purchasePaidAt"] is None
    assert data["installmentPaidAt"] == "2026-02-04T10:30:00+00:00"
    assert data["installmentDueDate"] == "2026-02-10"
    assert data["installmentId"] == str(settlement_result.installment.id)


def test_snapshot_serializes_to_json_types(settlement_result: SettlementResult):
    snapshot = to_json_value(settlement_result.to_snapshot())

    assert snapshot["purchase"]["status"] == "PARTIALLY_PAID"
    assert snapshot["purchase"]["id"] == str(settlement_result.purchase.id)
    assert snapshot["installment"]["due_date"] == "2026-02-10"
    assert snapshot["installment"]["paid_at"] == "2026-02-04T10:30:00+00:00"


def test_to_json_value_keeps_none():
    assert to_json_value(None) is None
    assert to_json_value({"note": None}) == {"note": None}


def test_to_json_value_rejects_unknown_types():
    with pytest.raises(TypeError):
        to_json_value(object())
