"""SQLAlchemy ORM models for purchases, installments, payments and the audit log"""

import uuid
from sqlalchemy import (
    Column,
    BigInteger,
    Integer,
    DateTime,
    Date,
    Enum,
    ForeignKey,
    Text,
    JSON,
    CheckConstraint,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from sqlalchemy.sql.expression import FunctionElement

from fair_settlement.domain.models import PaymentStatus, AuditAction, AuditEntity
from fair_settlement.domain.exceptions import PersistenceError

Base = declarative_base()


class entry_timestamp(FunctionElement):
    """Wall-clock time at insert; now() on PostgreSQL is frozen at transaction start"""

    type = DateTime(timezone=True)
    inherit_cache = True


@compiles(entry_timestamp)
def _entry_timestamp_default(element, compiler, **kw):
    return "CURRENT_TIMESTAMP"


@compiles(entry_timestamp, "postgresql")
def _entry_timestamp_postgresql(element, compiler, **kw):
    return "clock_timestamp()"


class Purchase(Base):
    """Financial aggregate for one exhibitor's commitment at one fair"""

    __tablename__ = "purchase"
    __table_args__ = (
        CheckConstraint("paid_cents >= 0 AND paid_cents <= total_cents", name="ck_purchase_paid_bounds"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(Text, nullable=False, index=True)
    fair_id = Column(Text, nullable=False, index=True)
    description = Column(Text, nullable=True)
    total_cents = Column(BigInteger, nullable=False)
    paid_cents = Column(BigInteger, nullable=False, default=0)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(
        Enum(PaymentStatus, name="payment_status", native_enum=False, length=32),
        nullable=False,
        default=PaymentStatus.UNPAID,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    installments = relationship(
        "Installment",
        back_populates="purchase",
        order_by="Installment.number",
        cascade="save-update, merge",
    )


class Installment(Base):
    """One scheduled slice of a purchase total"""

    __tablename__ = "installment"
    __table_args__ = (
        UniqueConstraint("purchase_id", "number", name="uq_installment_purchase_number"),
        CheckConstraint("number >= 1", name="ck_installment_number"),
        CheckConstraint(
            "paid_amount_cents >= 0 AND paid_amount_cents <= amount_cents",
            name="ck_installment_paid_bounds",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    purchase_id = Column(UUID(as_uuid=True), ForeignKey("purchase.id", ondelete="RESTRICT"), nullable=False)
    number = Column(Integer, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    paid_amount_cents = Column(BigInteger, nullable=False, default=0)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    due_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    purchase = relationship("Purchase", back_populates="installments")
    payments = relationship(
        "InstallmentPayment",
        back_populates="installment",
        order_by="InstallmentPayment.created_at",
        cascade="save-update, merge",
    )


class InstallmentPayment(Base):
    """
    Append-only payment history; installment.paid_amount_cents caches its sum.

    Negative rows reverse earlier payments.
    """

    __tablename__ = "installment_payment"
    __table_args__ = (CheckConstraint("amount_cents <> 0", name="ck_payment_amount_nonzero"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    installment_id = Column(
        UUID(as_uuid=True), ForeignKey("installment.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    amount_cents = Column(BigInteger, nullable=False)
    paid_on = Column(Date, nullable=False)
    note = Column(Text, nullable=True)
    created_by_user_id = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    installment = relationship("Installment", back_populates="payments")


class AuditLogEntry(Base):
    """Immutable record of one state-changing action"""

    __tablename__ = "audit_log"

    # Integer key gives a strict insertion order even when timestamps tie
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    action = Column(Enum(AuditAction, name="audit_action", native_enum=False, length=64), nullable=False)
    entity = Column(Enum(AuditEntity, name="audit_entity", native_enum=False, length=32), nullable=False)
    entity_id = Column(Text, nullable=False, index=True)
    actor_user_id = Column(Text, nullable=False, index=True)
    before = Column("before_state", JSON(none_as_null=True), nullable=True)
    after = Column("after_state", JSON(none_as_null=True), nullable=True)
    meta = Column(JSON(none_as_null=True), nullable=True)
    # Entries are ordered by id; created_at is informational
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=entry_timestamp())


@event.listens_for(AuditLogEntry, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise PersistenceError(f"Audit log entry {target.id} is append-only and cannot be updated")


@event.listens_for(AuditLogEntry, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise PersistenceError(f"Audit log entry {target.id} is append-only and cannot be deleted")
