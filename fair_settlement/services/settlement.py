"""Settlement orchestrator - one atomic scope per payment action, always audited"""

import logging
import time
import uuid
from datetime import date
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

from sqlalchemy.orm import Session

from fair_settlement.domain.exceptions import (
    InvalidPaymentAmountError,
    InvalidScheduleError,
    NotFoundError,
    OverpaymentError,
    PurchaseCancelledError,
)
from fair_settlement.domain.models import (
    AuditAction,
    AuditEntity,
    PaymentActionResult,
    PurchaseSummary,
    SettleInstallmentsResult,
    SettlementResult,
)
from fair_settlement.domain.status import derive_display_status, find_drift, overdue_installments
from fair_settlement.infrastructure.database.repositories import (
    PurchaseRepository,
    to_installment_state,
    to_purchase_state,
)
from fair_settlement.infrastructure.database.session import UnitOfWork, session_scope
from fair_settlement.infrastructure.observability.logging import log_settlement
from fair_settlement.infrastructure.observability.metrics import audit_entries_counter, record_settlement
from fair_settlement.services.audit import AuditRecorder
from fair_settlement.services.ledger import InstallmentLedger

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Caller mistakes; anything else escaping a scope is a failure of the store or the code
REJECTION_ERRORS = (
    NotFoundError,
    OverpaymentError,
    PurchaseCancelledError,
    InvalidPaymentAmountError,
    InvalidScheduleError,
    ValueError,
)


class SettlementService:
    """
    Transactional boundary for payment actions.

    Each call opens exactly one scope, lets the ledger mutate state, writes the
    audit entry through the recorder in that same scope, and commits. Any
    error from either rolls the whole scope back and is re-raised unchanged.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        ledger: Optional[InstallmentLedger] = None,
        recorder: Optional[AuditRecorder] = None,
        statement_timeout_ms: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.ledger = ledger or InstallmentLedger()
        self.recorder = recorder or AuditRecorder()
        self.statement_timeout_ms = statement_timeout_ms

    def record_payment(
        self,
        installment_id: uuid.UUID,
        amount_cents: int,
        actor_id: str,
        paid_on: Optional[date] = None,
        note: Optional[str] = None,
    ) -> PaymentActionResult:
        """
        Apply a (partial) payment to an installment and audit it atomically.

        Flow:
        1. Lock purchase + installments and snapshot the "before" state
        2. Apply the payment and recompute the purchase aggregate
        3. Append a PAYMENT_RECORDED audit entry with before/after snapshots
        4. Commit, or roll everything back on any error
        """

        def work(scope: UnitOfWork) -> Tuple[PaymentActionResult, AuditAction, int]:
            before = self.ledger.snapshot(scope, installment_id)
            after = self.ledger.apply_payment(scope, installment_id, amount_cents, actor_id, paid_on, note)
            self.recorder.record(
                scope,
                AuditAction.PAYMENT_RECORDED,
                AuditEntity.INSTALLMENT,
                after.installment.id,
                actor_id,
                before=before.to_snapshot(),
                after=after.to_snapshot(),
                meta={
                    "purchase_id": after.purchase.id,
                    "installment_number": after.installment.number,
                    "amount_cents": amount_cents,
                    "paid_on": paid_on or scope.today,
                    "note": note,
                },
            )
            return PaymentActionResult.from_settlement(after), AuditAction.PAYMENT_RECORDED, amount_cents

        result, _, duration_ms = self._run("record_payment", actor_id, work)
        self._log_action("record_payment", actor_id, result, amount_cents, duration_ms)
        return result

    def reschedule(
        self,
        installment_id: uuid.UUID,
        new_due_date: date,
        actor_id: str,
        reason: Optional[str] = None,
    ) -> PaymentActionResult:
        """
        Move an installment's due date and audit it atomically.

        Rescheduling to the current due date is a no-op: nothing is written
        and no audit entry is recorded.
        """

        def work(scope: UnitOfWork) -> Tuple[PaymentActionResult, Optional[AuditAction], int]:
            before = self.ledger.snapshot(scope, installment_id)
            after = self.ledger.reschedule(scope, installment_id, new_due_date, actor_id)
            if after.installment.due_date == before.installment.due_date:
                return PaymentActionResult.from_settlement(after), None, 0

            self.recorder.record(
                scope,
                AuditAction.INSTALLMENT_RESCHEDULED,
                AuditEntity.INSTALLMENT,
                after.installment.id,
                actor_id,
                before=before.to_snapshot(),
                after=after.to_snapshot(),
                meta={
                    "purchase_id": after.purchase.id,
                    "installment_number": after.installment.number,
                    "previous_due_date": before.installment.due_date,
                    "new_due_date": new_due_date,
                    "reason": reason,
                },
            )
            return PaymentActionResult.from_settlement(after), AuditAction.INSTALLMENT_RESCHEDULED, 0

        result, _, duration_ms = self._run("reschedule", actor_id, work)
        self._log_action("reschedule", actor_id, result, 0, duration_ms)
        return result

    def settle_installments(
        self,
        purchase_id: uuid.UUID,
        actor_id: str,
        numbers: Optional[Iterable[int]] = None,
        pay_all: bool = False,
        paid_on: Optional[date] = None,
    ) -> SettleInstallmentsResult:
        """
        Pay off the remaining due of the selected installments in one scope.

        Writes a single INSTALLMENTS_SETTLED audit entry on the purchase. When
        every selected installment was already paid nothing changes and no
        entry is written.
        """
        numbers = list(numbers) if numbers is not None else None

        def mutate(scope: UnitOfWork):
            return self.ledger.settle_installments(scope, purchase_id, actor_id, numbers, pay_all, paid_on)

        def meta(scope: UnitOfWork) -> dict:
            return {"paid_on": paid_on or scope.today}

        return self._run_bulk(
            "settle_installments",
            AuditAction.INSTALLMENTS_SETTLED,
            purchase_id,
            actor_id,
            numbers,
            pay_all,
            mutate,
            meta,
        )

    def unsettle_installments(
        self,
        purchase_id: uuid.UUID,
        actor_id: str,
        numbers: Optional[Iterable[int]] = None,
        pay_all: bool = False,
        reason: Optional[str] = None,
    ) -> SettleInstallmentsResult:
        """
        Reverse the payments on the selected installments in one scope.

        Writes a single INSTALLMENTS_UNSETTLED audit entry on the purchase, or
        none when nothing was paid on the selection.
        """
        numbers = list(numbers) if numbers is not None else None

        def mutate(scope: UnitOfWork):
            return self.ledger.unsettle_installments(scope, purchase_id, actor_id, numbers, pay_all, note=reason)

        def meta(scope: UnitOfWork) -> dict:
            return {"reason": reason}

        return self._run_bulk(
            "unsettle_installments",
            AuditAction.INSTALLMENTS_UNSETTLED,
            purchase_id,
            actor_id,
            numbers,
            pay_all,
            mutate,
            meta,
        )

    def get_payment_summary(self, purchase_id: uuid.UUID, today: Optional[date] = None) -> PurchaseSummary:
        """
        Read a purchase with its schedule, derived display status (OVERDUE) and
        a reconciliation check of the cached aggregate.

        Raises:
            NotFoundError: purchase does not exist
        """
        with session_scope(self.session_factory, self.statement_timeout_ms) as scope:
            repo = PurchaseRepository(scope.session)
            purchase = repo.get_purchase(purchase_id)
            if purchase is None:
                raise NotFoundError(f"Purchase {purchase_id} not found")

            purchase_state = to_purchase_state(purchase)
            installments = [to_installment_state(i) for i in repo.list_installments(purchase_id)]
            today = today or scope.today

        drift = find_drift(purchase_state, installments)
        if drift:
            logger.error(
                "Purchase aggregate drift detected",
                extra={"purchase_id": str(purchase_id), "problems": drift},
            )

        return PurchaseSummary(
            purchase=purchase_state,
            installments=installments,
            display_status=derive_display_status(purchase_state, installments, today),
            remaining_cents=purchase_state.total_cents - purchase_state.paid_cents,
            overdue_numbers=[inst.number for inst in overdue_installments(installments, today)],
            drift=drift,
        )

    def _run_bulk(
        self,
        operation: str,
        audit_action: AuditAction,
        purchase_id: uuid.UUID,
        actor_id: str,
        numbers: Optional[List[int]],
        pay_all: bool,
        mutate: Callable[[UnitOfWork], List[SettlementResult]],
        meta: Callable[[UnitOfWork], dict],
    ) -> SettleInstallmentsResult:
        """Shared flow for actions touching several installments of one purchase"""

        def work(scope: UnitOfWork) -> Tuple[SettleInstallmentsResult, Optional[AuditAction], int]:
            purchase_before, installments_before = self.ledger.snapshot_purchase(scope, purchase_id)
            changed = mutate(scope)
            purchase_after, installments_after = self.ledger.snapshot_purchase(scope, purchase_id)

            changed_numbers = [r.installment.number for r in changed]
            delta_cents = purchase_after.paid_cents - purchase_before.paid_cents
            action = None
            if changed:
                action = audit_action
                self.recorder.record(
                    scope,
                    action,
                    AuditEntity.PURCHASE,
                    purchase_id,
                    actor_id,
                    before={"purchase": purchase_before, "installments": installments_before},
                    after={"purchase": purchase_after, "installments": installments_after},
                    meta={
                        "pay_all": pay_all,
                        "requested_numbers": numbers,
                        "changed_numbers": changed_numbers,
                        "amount_cents": delta_cents,
                        **meta(scope),
                    },
                )

            result = SettleInstallmentsResult(
                ok=True,
                purchase_id=purchase_after.id,
                status=purchase_after.status,
                installments_count=len(installments_after),
                paid_count=sum(1 for inst in installments_after if inst.paid_at is not None),
                paid_cents=purchase_after.paid_cents,
                total_cents=purchase_after.total_cents,
                changed_numbers=changed_numbers,
            )
            return result, action, delta_cents

        result, delta_cents, duration_ms = self._run(operation, actor_id, work)
        log_settlement(
            operation=operation,
            actor_id=actor_id,
            purchase_id=str(result.purchase_id),
            installment_id=None,
            purchase_status=result.status.value,
            amount_cents=delta_cents,
            duration_ms=duration_ms,
        )
        return result

    def _run(
        self,
        operation: str,
        actor_id: str,
        work: Callable[[UnitOfWork], Tuple[T, Optional[AuditAction], int]],
    ) -> Tuple[T, int, float]:
        """
        Execute work inside one scope, with metrics and failure logging.

        Returns (result, cents applied, duration in ms). Metrics for a success
        are recorded only after the commit.
        """
        start_time = time.time()
        try:
            with session_scope(self.session_factory, self.statement_timeout_ms) as scope:
                result, audit_action, amount_cents = work(scope)
        except REJECTION_ERRORS as e:
            record_settlement(operation, "rejected", time.time() - start_time)
            logger.warning(
                f"Settlement rejected: {e}",
                extra={"operation": operation, "actor_id": actor_id, "error_kind": type(e).__name__},
            )
            raise
        except Exception as e:
            record_settlement(operation, "failed", time.time() - start_time)
            logger.error(
                f"Settlement failed, scope rolled back: {e}",
                extra={"operation": operation, "actor_id": actor_id, "error_kind": type(e).__name__},
            )
            raise

        duration = time.time() - start_time
        record_settlement(operation, "success", duration, amount_cents)
        if audit_action is not None:
            audit_entries_counter.labels(action=audit_action.value).inc()
        return result, amount_cents, duration * 1000

    def _log_action(self, operation: str, actor_id: str, result: PaymentActionResult, amount_cents: int, duration_ms: float) -> None:
        log_settlement(
            operation=operation,
            actor_id=actor_id,
            purchase_id=str(result.purchase_id),
            installment_id=str(result.installment_id),
            purchase_status=result.purchase_status.value,
            amount_cents=amount_cents,
            duration_ms=duration_ms,
        )
