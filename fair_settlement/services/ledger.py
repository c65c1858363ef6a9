"""Installment ledger - keeps installments and their purchase aggregate consistent"""

import logging
import uuid
from datetime import date, datetime
from typing import Iterable, List, Optional, Tuple

from fair_settlement.config import settings
from fair_settlement.domain.exceptions import (
    InvalidPaymentAmountError,
    InvalidScheduleError,
    NotFoundError,
    OverpaymentError,
    PurchaseCancelledError,
)
from fair_settlement.domain.models import InstallmentState, PaymentStatus, PurchaseState, SettlementResult
from fair_settlement.domain.status import check_due_date_order, derive_payment_status
from fair_settlement.infrastructure.database.models import Installment, InstallmentPayment, Purchase
from fair_settlement.infrastructure.database.repositories import (
    PurchaseRepository,
    to_installment_state,
    to_purchase_state,
)
from fair_settlement.infrastructure.database.session import UnitOfWork

logger = logging.getLogger(__name__)


class InstallmentLedger:
    """
    Applies payments and due-date changes to installments.

    Every operation runs inside a caller-supplied UnitOfWork and starts by
    locking the purchase and its full installment set, because the purchase
    aggregate is recomputed from all siblings. The ledger never commits.
    """

    def __init__(self, enforce_due_date_order: Optional[bool] = None):
        if enforce_due_date_order is None:
            enforce_due_date_order = settings.enforce_due_date_order
        self.enforce_due_date_order = enforce_due_date_order

    # Reads

    def snapshot(self, scope: UnitOfWork, installment_id: uuid.UUID) -> SettlementResult:
        """Lock and return the current installment + purchase pair"""
        purchase, _, installment = PurchaseRepository(scope.session).lock_for_installment(installment_id)
        return SettlementResult(to_installment_state(installment), to_purchase_state(purchase))

    def snapshot_purchase(
        self, scope: UnitOfWork, purchase_id: uuid.UUID
    ) -> Tuple[PurchaseState, List[InstallmentState]]:
        """Lock and return the current purchase with all of its installments"""
        purchase, installments = PurchaseRepository(scope.session).lock_purchase(purchase_id)
        return to_purchase_state(purchase), [to_installment_state(i) for i in installments]

    # Mutations

    def apply_payment(
        self,
        scope: UnitOfWork,
        installment_id: uuid.UUID,
        amount_cents: int,
        actor_id: str,
        paid_on: Optional[date] = None,
        note: Optional[str] = None,
    ) -> SettlementResult:
        """
        Record a (possibly partial) payment against one installment.

        Raises:
            InvalidPaymentAmountError: amount_cents is not a positive integer
            NotFoundError: installment does not exist
            OverpaymentError: payment exceeds the installment's remaining due
            PurchaseCancelledError: purchase is cancelled
        """
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
            raise InvalidPaymentAmountError(f"Payment amount must be a positive integer of cents, got {amount_cents!r}")

        purchase, installments, installment = PurchaseRepository(scope.session).lock_for_installment(installment_id)
        self._ensure_not_cancelled(purchase)

        remaining = installment.amount_cents - installment.paid_amount_cents
        if amount_cents > remaining:
            raise OverpaymentError(installment.id, amount_cents, remaining)

        self._append_payment(scope, installment, amount_cents, actor_id, paid_on, note)
        self._recompute_purchase(scope, purchase, installments)
        scope.flush()

        return SettlementResult(to_installment_state(installment), to_purchase_state(purchase))

    def reschedule(
        self,
        scope: UnitOfWork,
        installment_id: uuid.UUID,
        new_due_date: date,
        actor_id: str,
    ) -> SettlementResult:
        """
        Move an installment's due date. Amounts and paid state are untouched.

        Moving to the current due date changes nothing and flushes nothing.

        Raises:
            InvalidScheduleError: new_due_date is not a date, or breaks the
                due-date ordering rule when that rule is enabled
            NotFoundError: installment does not exist
        """
        if not isinstance(new_due_date, date) or isinstance(new_due_date, datetime):
            raise InvalidScheduleError(f"Due date must be a calendar date, got {new_due_date!r}")

        purchase, installments, installment = PurchaseRepository(scope.session).lock_for_installment(installment_id)

        if installment.due_date != new_due_date:
            if self.enforce_due_date_order:
                due_dates = {inst.number: inst.due_date for inst in installments}
                due_dates[installment.number] = new_due_date
                check_due_date_order(due_dates)

            installment.due_date = new_due_date
            scope.flush()

        return SettlementResult(to_installment_state(installment), to_purchase_state(purchase))

    def settle_installments(
        self,
        scope: UnitOfWork,
        purchase_id: uuid.UUID,
        actor_id: str,
        numbers: Optional[Iterable[int]] = None,
        pay_all: bool = False,
        paid_on: Optional[date] = None,
    ) -> List[SettlementResult]:
        """
        Pay off the remaining due of several installments of one purchase.

        Installments already fully paid are skipped. Returns one result per
        installment actually settled, all carrying the final purchase state.

        Raises:
            ValueError: neither numbers nor pay_all given
            NotFoundError: purchase or an installment number does not exist
            PurchaseCancelledError: purchase is cancelled
        """
        purchase, installments, selected = self._select_installments(scope, purchase_id, numbers, pay_all)

        settled = []
        for installment in selected:
            remaining = installment.amount_cents - installment.paid_amount_cents
            if remaining == 0:
                continue
            self._append_payment(scope, installment, remaining, actor_id, paid_on, note=None)
            settled.append(installment)

        return self._finish_bulk(scope, purchase, installments, settled)

    def unsettle_installments(
        self,
        scope: UnitOfWork,
        purchase_id: uuid.UUID,
        actor_id: str,
        numbers: Optional[Iterable[int]] = None,
        pay_all: bool = False,
        note: Optional[str] = None,
    ) -> List[SettlementResult]:
        """
        Reverse everything paid on several installments of one purchase.

        Each reversal is a negative payment row for the installment's paid
        amount, so payment history still sums to the installment's paid
        amount. Installments with nothing paid are skipped.

        Raises:
            ValueError: neither numbers nor pay_all given
            NotFoundError: purchase or an installment number does not exist
            PurchaseCancelledError: purchase is cancelled
        """
        purchase, installments, selected = self._select_installments(scope, purchase_id, numbers, pay_all)

        reversed_installments = []
        for installment in selected:
            if installment.paid_amount_cents == 0:
                continue
            self._append_payment(scope, installment, -installment.paid_amount_cents, actor_id, None, note)
            reversed_installments.append(installment)

        return self._finish_bulk(scope, purchase, installments, reversed_installments)

    # Helpers

    def _ensure_not_cancelled(self, purchase: Purchase) -> None:
        if purchase.status == PaymentStatus.CANCELLED:
            raise PurchaseCancelledError(purchase.id)

    def _select_installments(
        self,
        scope: UnitOfWork,
        purchase_id: uuid.UUID,
        numbers: Optional[Iterable[int]],
        pay_all: bool,
    ) -> Tuple[Purchase, List[Installment], List[Installment]]:
        """Lock the purchase and pick the requested installments in number order"""
        if not pay_all and not numbers:
            raise ValueError("Pass pay_all=True or a non-empty list of installment numbers")

        purchase, installments = PurchaseRepository(scope.session).lock_purchase(purchase_id)
        self._ensure_not_cancelled(purchase)
        by_number = {inst.number: inst for inst in installments}

        if pay_all:
            selected = sorted(by_number)
        else:
            selected = sorted(set(numbers))
            missing = [n for n in selected if n not in by_number]
            if missing:
                raise NotFoundError(f"Installments {missing} do not exist on purchase {purchase_id}")

        return purchase, installments, [by_number[n] for n in selected]

    def _finish_bulk(
        self,
        scope: UnitOfWork,
        purchase: Purchase,
        installments: List[Installment],
        changed: List[Installment],
    ) -> List[SettlementResult]:
        if changed:
            self._recompute_purchase(scope, purchase, installments)
            scope.flush()

        purchase_state = to_purchase_state(purchase)
        return [SettlementResult(to_installment_state(inst), purchase_state) for inst in changed]

    def _append_payment(
        self,
        scope: UnitOfWork,
        installment: Installment,
        amount_cents: int,
        actor_id: str,
        paid_on: Optional[date],
        note: Optional[str],
    ) -> None:
        scope.session.add(
            InstallmentPayment(
                installment_id=installment.id,
                amount_cents=amount_cents,
                paid_on=paid_on or scope.today,
                note=note,
                created_by_user_id=actor_id,
            )
        )
        installment.paid_amount_cents += amount_cents
        if installment.paid_amount_cents == installment.amount_cents:
            installment.paid_at = scope.started_at
        else:
            installment.paid_at = None

    def _recompute_purchase(self, scope: UnitOfWork, purchase: Purchase, installments: List[Installment]) -> None:
        """Rebuild the purchase aggregate from all of its installments"""
        paid_cents = sum(inst.paid_amount_cents for inst in installments)
        status = derive_payment_status(paid_cents, purchase.total_cents)

        purchase.paid_cents = paid_cents
        if purchase.status != PaymentStatus.CANCELLED:
            purchase.status = status
        if status == PaymentStatus.PAID:
            purchase.paid_at = purchase.paid_at or scope.started_at
        else:
            purchase.paid_at = None

        logger.debug(
            "Purchase aggregate recomputed",
            extra={"purchase_id": str(purchase.id), "paid_cents": paid_cents, "status": purchase.status.value},
        )
