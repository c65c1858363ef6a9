"""Payment status derivation - pure functions of aggregate state"""

from datetime import date
from typing import Dict, List, Sequence
from fair_settlement.domain.models import PaymentStatus, PurchaseState, InstallmentState
from fair_settlement.domain.exceptions import InvalidScheduleError


def derive_payment_status(paid_cents: int, total_cents: int) -> PaymentStatus:
    """
    Map aggregate amounts to the stored purchase status.

    Mapping:
    - paid == total: PAID (a zero-total purchase is PAID)
    - paid == 0:     UNPAID
    - otherwise:     PARTIALLY_PAID

    Raises:
        ValueError: amounts are negative or paid exceeds total
    """
    if total_cents < 0 or paid_cents < 0:
        raise ValueError(f"Amounts must not be negative (paid={paid_cents}, total={total_cents})")
    if paid_cents > total_cents:
        raise ValueError(f"Paid amount {paid_cents} exceeds total {total_cents}")

    if paid_cents == total_cents:
        return PaymentStatus.PAID
    elif paid_cents == 0:
        return PaymentStatus.UNPAID
    else:
        return PaymentStatus.PARTIALLY_PAID


def overdue_installments(installments: Sequence[InstallmentState], today: date) -> List[InstallmentState]:
    """Unpaid installments whose due date is strictly before today"""
    return [inst for inst in installments if inst.remaining_cents > 0 and inst.due_date < today]


def derive_display_status(
    purchase: PurchaseState,
    installments: Sequence[InstallmentState],
    today: date,
) -> PaymentStatus:
    """
    Status shown to operators: the stored status, or OVERDUE when the
    purchase is not settled and any installment is past due.
    """
    if purchase.status in (PaymentStatus.PAID, PaymentStatus.CANCELLED):
        return purchase.status
    if overdue_installments(installments, today):
        return PaymentStatus.OVERDUE
    return purchase.status


def find_drift(purchase: PurchaseState, installments: Sequence[InstallmentState]) -> List[str]:
    """
    Compare a purchase's cached aggregate with its installments.

    Returns a list of human-readable problems, empty when consistent.
    """
    problems = []

    for inst in installments:
        if not 0 <= inst.paid_amount_cents <= inst.amount_cents:
            problems.append(
                f"installment {inst.number}: paid {inst.paid_amount_cents} outside 0..{inst.amount_cents}"
            )
        if (inst.paid_at is not None) != (inst.paid_amount_cents == inst.amount_cents):
            problems.append(f"installment {inst.number}: paid_at does not match paid amount")

    numbers = sorted(inst.number for inst in installments)
    if numbers != list(range(1, len(installments) + 1)):
        problems.append(f"installment numbers not contiguous: {numbers}")

    installments_paid = sum(inst.paid_amount_cents for inst in installments)
    if purchase.paid_cents != installments_paid:
        problems.append(f"purchase paid {purchase.paid_cents} != installments paid {installments_paid}")

    if not 0 <= purchase.paid_cents <= purchase.total_cents:
        problems.append(f"purchase paid {purchase.paid_cents} outside 0..{purchase.total_cents}")
    elif purchase.status not in (
        PaymentStatus.CANCELLED,
        derive_payment_status(purchase.paid_cents, purchase.total_cents),
    ):
        problems.append(f"stored status {purchase.status.value} does not match amounts")

    if (purchase.paid_at is not None) != (purchase.paid_cents == purchase.total_cents):
        problems.append("purchase paid_at does not match paid amount")

    return problems


def check_due_date_order(due_dates_by_number: Dict[int, date]) -> None:
    """
    Raise InvalidScheduleError unless due dates are non-decreasing by number.
    """
    previous = None
    for number in sorted(due_dates_by_number):
        due = due_dates_by_number[number]
        if previous is not None and due < previous[1]:
            raise InvalidScheduleError(
                f"Installment {number} due {due.isoformat()} precedes installment "
                f"{previous[0]} due {previous[1].isoformat()}"
            )
        previous = (number, due)
