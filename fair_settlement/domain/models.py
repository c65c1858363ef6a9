"""Domain models - pure Python dataclasses and enums representing business entities"""

import enum
import uuid
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Any, Dict, List, Optional


class PaymentStatus(str, enum.Enum):
    """Financial status of a purchase"""

    UNPAID = "UNPAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    CANCELLED = "CANCELLED"  # set outside settlement; blocks payment changes
    OVERDUE = "OVERDUE"  # display only, derived from due dates at read time


class AuditAction(str, enum.Enum):
    """Kind of state-changing action written to the audit log"""

    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    INSTALLMENT_RESCHEDULED = "INSTALLMENT_RESCHEDULED"
    INSTALLMENTS_SETTLED = "INSTALLMENTS_SETTLED"
    INSTALLMENTS_UNSETTLED = "INSTALLMENTS_UNSETTLED"


class AuditEntity(str, enum.Enum):
    """Kind of entity an audit entry points at"""

    PURCHASE = "PURCHASE"
    INSTALLMENT = "INSTALLMENT"


@dataclass
class PlannedInstallment:
    """Single slice of a purchase total, before it is persisted"""

    number: int
    due_date: date
    amount_cents: int


@dataclass(frozen=True)
class InstallmentState:
    """Point-in-time snapshot of one installment"""

    id: uuid.UUID
    purchase_id: uuid.UUID
    number: int
    amount_cents: int
    paid_amount_cents: int
    paid_at: Optional[datetime]
    due_date: date

    @property
    def remaining_cents(self) -> int:
        return self.amount_cents - self.paid_amount_cents


@dataclass(frozen=True)
class PurchaseState:
    """Point-in-time snapshot of a purchase aggregate"""

    id: uuid.UUID
    total_cents: int
    paid_cents: int
    paid_at: Optional[datetime]
    status: PaymentStatus


@dataclass(frozen=True)
class SettlementResult:
    """Post-mutation snapshot of the installment and its purchase"""

    installment: InstallmentState
    purchase: PurchaseState

    def to_snapshot(self) -> Dict[str, Any]:
        """Structured value stored as an audit before/after snapshot"""
        return {"installment": asdict(self.installment), "purchase": asdict(self.purchase)}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class PaymentActionResult:
    """Flat result for a single payment or reschedule action"""

    ok: bool
    purchase_id: uuid.UUID
    purchase_status: PaymentStatus
    purchase_total_cents: int
    purchase_paid_cents: int
    purchase_paid_at: Optional[datetime]
    installment_id: uuid.UUID
    installment_number: int
    installment_amount_cents: int
    installment_paid_amount_cents: int
    installment_paid_at: Optional[datetime]
    installment_due_date: date

    @classmethod
    def from_settlement(cls, result: SettlementResult) -> "PaymentActionResult":
        return cls(
            ok=True,
            purchase_id=result.purchase.id,
            purchase_status=result.purchase.status,
            purchase_total_cents=result.purchase.total_cents,
            purchase_paid_cents=result.purchase.paid_cents,
            purchase_paid_at=result.purchase.paid_at,
            installment_id=result.installment.id,
            installment_number=result.installment.number,
            installment_amount_cents=result.installment.amount_cents,
            installment_paid_amount_cents=result.installment.paid_amount_cents,
            installment_paid_at=result.installment.paid_at,
            installment_due_date=result.installment.due_date,
        )

    def as_dict(self) -> Dict[str, Any]:
        """Plain dict with string ids and ISO-8601 timestamps"""
        return {
            "ok": self.ok,
            "purchaseId": str(self.purchase_id),
            "purchaseStatus": self.purchase_status.value,
            "purchaseTotalCents": self.purchase_total_cents,
            "purchasePaidCents": self.purchase_paid_cents,
            "purchasePaidAt": _iso(self.purchase_paid_at),
            "installmentId": str(self.installment_id),
            "installmentNumber": self.installment_number,
            "installmentAmountCents": self.installment_amount_cents,
            "installmentPaidAmountCents": self.installment_paid_amount_cents,
            "installmentPaidAt": _iso(self.installment_paid_at),
            "installmentDueDate": self.installment_due_date.isoformat(),
        }


@dataclass
class SettleInstallmentsResult:
    """Result of settling or unsettling several installments of one purchase"""

    ok: bool
    purchase_id: uuid.UUID
    status: PaymentStatus
    installments_count: int
    paid_count: int
    paid_cents: int
    total_cents: int
    changed_numbers: List[int] = field(default_factory=list)  # installments the call actually changed


@dataclass
class PurchaseSummary:
    """Read model of a purchase with its schedule and display status"""

    purchase: PurchaseState
    installments: List[InstallmentState]
    display_status: PaymentStatus
    remaining_cents: int
    overdue_numbers: List[int]
    drift: List[str] = field(default_factory=list)  # reconciliation problems, empty when consistent
