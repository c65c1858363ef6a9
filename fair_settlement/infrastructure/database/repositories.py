"""Data access layer for purchases, installments and audit entries"""

import uuid
from typing import List, Optional, Sequence, Tuple
from sqlalchemy.orm import Session
from fair_settlement.infrastructure.database.models import (
    Purchase,
    Installment,
    InstallmentPayment,
    AuditLogEntry,
)
from fair_settlement.domain.models import (
    AuditEntity,
    InstallmentState,
    PlannedInstallment,
    PurchaseState,
)
from fair_settlement.domain.exceptions import NotFoundError
from fair_settlement.domain.installments import validate_installment_plan
from fair_settlement.domain.status import derive_payment_status
from fair_settlement.utils.date_utils import utc_now


def to_installment_state(row: Installment) -> InstallmentState:
    return InstallmentState(
        id=row.id,
        purchase_id=row.purchase_id,
        number=row.number,
        amount_cents=row.amount_cents,
        paid_amount_cents=row.paid_amount_cents,
        paid_at=row.paid_at,
        due_date=row.due_date,
    )


def to_purchase_state(row: Purchase) -> PurchaseState:
    return PurchaseState(
        id=row.id,
        total_cents=row.total_cents,
        paid_cents=row.paid_cents,
        paid_at=row.paid_at,
        status=row.status,
    )


class PurchaseRepository:
    """Repository for purchases and their installment plans"""

    def __init__(self, db: Session):
        self.db = db

    def create_purchase(
        self,
        owner_id: str,
        fair_id: str,
        total_cents: int,
        installments: Sequence[PlannedInstallment],
        description: Optional[str] = None,
    ) -> Purchase:
        """Create purchase with its installment plan (nothing paid yet)"""
        validate_installment_plan(total_cents, installments)

        status = derive_payment_status(0, total_cents)
        db_purchase = Purchase(
            owner_id=owner_id,
            fair_id=fair_id,
            description=description,
            total_cents=total_cents,
            paid_cents=0,
            # A zero-total purchase is settled from the start
            paid_at=utc_now() if total_cents == 0 else None,
            status=status,
        )
        self.db.add(db_purchase)
        self.db.flush()  # Get ID without committing

        for inst in sorted(installments, key=lambda i: i.number):
            self.db.add(
                Installment(
                    purchase_id=db_purchase.id,
                    number=inst.number,
                    due_date=inst.due_date,
                    amount_cents=inst.amount_cents,
                    paid_amount_cents=0,
                )
            )
        self.db.flush()

        return db_purchase

    def get_purchase(self, purchase_id: uuid.UUID) -> Optional[Purchase]:
        """Fetch purchase (installments load in number order)"""
        return self.db.query(Purchase).filter(Purchase.id == purchase_id).first()

    def list_installments(self, purchase_id: uuid.UUID) -> List[Installment]:
        return (
            self.db.query(Installment)
            .filter(Installment.purchase_id == purchase_id)
            .order_by(Installment.number.asc())
            .all()
        )

    def list_payments(self, installment_id: uuid.UUID) -> List[InstallmentPayment]:
        return (
            self.db.query(InstallmentPayment)
            .filter(InstallmentPayment.installment_id == installment_id)
            .order_by(InstallmentPayment.paid_on.asc(), InstallmentPayment.created_at.asc())
            .all()
        )

    def lock_purchase(self, purchase_id: uuid.UUID) -> Tuple[Purchase, List[Installment]]:
        """
        Lock the purchase row, then its whole installment set, FOR UPDATE.

        Lock order is always purchase first, then installments by number, so
        concurrent settlements on one purchase serialize without deadlocking.

        Raises:
            NotFoundError: purchase does not exist
        """
        purchase = (
            self.db.query(Purchase)
            .filter(Purchase.id == purchase_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if purchase is None:
            raise NotFoundError(f"Purchase {purchase_id} not found")

        installments = (
            self.db.query(Installment)
            .filter(Installment.purchase_id == purchase_id)
            .order_by(Installment.number.asc())
            .with_for_update()
            .populate_existing()
            .all()
        )
        return purchase, installments

    def lock_for_installment(self, installment_id: uuid.UUID) -> Tuple[Purchase, List[Installment], Installment]:
        """
        Lock the purchase owning an installment plus all of its installments.

        Raises:
            NotFoundError: installment does not exist
        """
        purchase_id = (
            self.db.query(Installment.purchase_id)
            .filter(Installment.id == installment_id)
            .scalar()
        )
        if purchase_id is None:
            raise NotFoundError(f"Installment {installment_id} not found")

        purchase, installments = self.lock_purchase(purchase_id)
        installment = next((inst for inst in installments if inst.id == installment_id), None)
        if installment is None:
            raise NotFoundError(f"Installment {installment_id} not found")
        return purchase, installments, installment


class AuditLogRepository:
    """Append and read audit entries; there is no update or delete"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, entry: AuditLogEntry) -> AuditLogEntry:
        self.db.add(entry)
        return entry

    def list_for_entity(self, entity: AuditEntity, entity_id: str, limit: int = 50) -> List[AuditLogEntry]:
        """Entries for one entity, oldest first"""
        return (
            self.db.query(AuditLogEntry)
            .filter(AuditLogEntry.entity == entity, AuditLogEntry.entity_id == str(entity_id))
            .order_by(AuditLogEntry.id.asc())
            .limit(limit)
            .all()
        )

    def count(self) -> int:
        return self.db.query(AuditLogEntry).count()
