"""Installment plan generation and validation for purchase repayment"""

from datetime import date
from typing import List, Sequence
from fair_settlement.domain.models import PlannedInstallment
from fair_settlement.domain.exceptions import InvalidScheduleError
from fair_settlement.utils.date_utils import add_months

MAX_INSTALLMENTS = 12


def generate_installment_plan(
    total_cents: int,
    num_installments: int = 3,
    first_due_date: date | None = None,
    interval_months: int = 1,
) -> List[PlannedInstallment]:
    """
    Split a purchase total into monthly installments.

    Requirements:
    - 1..12 installments, numbered from 1
    - Due dates one calendar month apart by default
    - Last installment absorbs rounding remainder (≤ num_installments-1 cents drift)

    Args:
        total_cents: Total amount to split into installments
        num_installments: Number of payments (default 3)
        first_due_date: Due date of installment 1 (default: one month from today)
        interval_months: Months between due dates (default 1)

    Returns:
        List of PlannedInstallment objects summing exactly to total_cents

    Example:
        $300.02 → [$100.00, $100.00, $100.02]
    """
    if total_cents <= 0:
        return []

    if not 1 <= num_installments <= MAX_INSTALLMENTS:
        raise InvalidScheduleError(f"num_installments must be between 1 and {MAX_INSTALLMENTS}")

    if num_installments > total_cents:
        raise InvalidScheduleError("Cannot split total into more installments than cents")

    if first_due_date is None:
        first_due_date = add_months(date.today(), interval_months)

    base_amount = total_cents // num_installments
    remainder = total_cents % num_installments

    installments = []
    for i in range(num_installments):
        amount = base_amount + (remainder if i == num_installments - 1 else 0)
        installments.append(
            PlannedInstallment(
                number=i + 1,
                due_date=add_months(first_due_date, i * interval_months),
                amount_cents=amount,
            )
        )

    return installments


def validate_installment_plan(total_cents: int, installments: Sequence[PlannedInstallment]) -> None:
    """
    Check a plan before it is persisted.

    Raises:
        InvalidScheduleError: numbers are not exactly 1..n, an amount is not
            positive, or the amounts do not add up to total_cents
    """
    if total_cents < 0:
        raise InvalidScheduleError("total_cents must not be negative")

    if len(installments) > MAX_INSTALLMENTS:
        raise InvalidScheduleError(f"A plan holds at most {MAX_INSTALLMENTS} installments")

    numbers = sorted(inst.number for inst in installments)
    if numbers != list(range(1, len(installments) + 1)):
        raise InvalidScheduleError(f"Installment numbers must be contiguous from 1, got {numbers}")

    if any(inst.amount_cents <= 0 for inst in installments):
        raise InvalidScheduleError("Installment amounts must be positive")

    planned_total = sum(inst.amount_cents for inst in installments)
    if planned_total != total_cents:
        raise InvalidScheduleError(
            f"Installments add up to {planned_total} cents, purchase total is {total_cents}"
        )
