"""Integration tests for the audit recorder"""

import uuid
import pytest
from sqlalchemy.orm import Session
from fair_settlement.services.audit import AuditRecorder
from fair_settlement.infrastructure.database.models import AuditLogEntry
from fair_settlement.infrastructure.database.repositories import AuditLogRepository
from fair_settlement.infrastructure.database.session import session_scope
from fair_settlement.domain.models import AuditAction, AuditEntity
from fair_settlement.domain.exceptions import PersistenceError


class NullActorRecorder(AuditRecorder):
    """Recorder whose insert violates the NOT NULL actor column"""

    def _flush_and_load_timestamp(self, scope, entry):
        entry.actor_user_id = None
        super()._flush_and_load_timestamp(scope, entry)


def test_record_persists_entry_with_timestamp(db: Session, session_factory):
    recorder = AuditRecorder()
    entity_id = uuid.uuid4()

    with session_scope(session_factory) as scope:
        entry = recorder.record(
            scope,
            AuditAction.PAYMENT_RECORDED,
            AuditEntity.INSTALLMENT,
            entity_id,
            "admin_1",
            before={"paid_amount_cents": 0},
            after={"paid_amount_cents": 1000},
            meta={"amount_cents": 1000, "note": None},
        )
        assert entry.id is not None
        assert entry.created_at is not None

    entries = AuditLogRepository(db).list_for_entity(AuditEntity.INSTALLMENT, str(entity_id))
    assert len(entries) == 1
    assert entries[0].action == AuditAction.PAYMENT_RECORDED
    assert entries[0].actor_user_id == "admin_1"
    assert entries[0].before == {"paid_amount_cents": 0}
    assert entries[0].after == {"paid_amount_cents": 1000}
    assert entries[0].meta == {"amount_cents": 1000, "note": None}


def test_absent_snapshots_stored_as_null(db: Session, session_factory):
    entity_id = uuid.uuid4()

    with session_scope(session_factory) as scope:
        AuditRecorder().record(
            scope, AuditAction.INSTALLMENT_RESCHEDULED, AuditEntity.INSTALLMENT, entity_id, "admin_1"
        )

    entry = AuditLogRepository(db).list_for_entity(AuditEntity.INSTALLMENT, str(entity_id))[0]
    assert entry.before is None
    assert entry.after is None
    assert entry.meta is None


def test_entry_invisible_until_scope_commits(db: Session, session_factory):
    with pytest.raises(RuntimeError):
        with session_scope(session_factory) as scope:
            AuditRecorder().record(
                scope, AuditAction.PAYMENT_RECORDED, AuditEntity.INSTALLMENT, uuid.uuid4(), "admin_1"
            )
            raise RuntimeError("caller failed after recording")

    assert AuditLogRepository(db).count() == 0


@pytest.mark.parametrize(
    "entity_id,actor_id",
    [
        (uuid.uuid4(), ""),
        (uuid.uuid4(), "   "),
        (uuid.uuid4(), None),
        ("", "admin_1"),
        (None, "admin_1"),
    ],
)
def test_missing_identifiers_rejected(db: Session, session_factory, entity_id, actor_id):
    with pytest.raises(ValueError):
        with session_scope(session_factory) as scope:
            AuditRecorder().record(scope, AuditAction.PAYMENT_RECORDED, AuditEntity.INSTALLMENT, entity_id, actor_id)

    assert AuditLogRepository(db).count() == 0


def test_unknown_action_rejected(session_factory):
    with pytest.raises(ValueError):
        with session_scope(session_factory) as scope:
            AuditRecorder().record(scope, "PAYMENT_DELETED", AuditEntity.INSTALLMENT, uuid.uuid4(), "admin_1")


def test_store_rejection_surfaces_as_persistence_error(db: Session, session_factory):
    with pytest.raises(PersistenceError):
        with session_scope(session_factory) as scope:
            NullActorRecorder().record(
                scope, AuditAction.PAYMENT_RECORDED, AuditEntity.INSTALLMENT, uuid.uuid4(), "admin_1"
            )

    assert AuditLogRepository(db).count() == 0


def test_entries_cannot_be_updated(session_factory):
    with session_scope(session_factory) as scope:
        entry_id = AuditRecorder().record(
            scope, AuditAction.PAYMENT_RECORDED, AuditEntity.INSTALLMENT, uuid.uuid4(), "admin_1"
        ).id

    with pytest.raises(PersistenceError, match="append-only"):
        with session_scope(session_factory) as scope:
            entry = scope.session.get(AuditLogEntry, entry_id)
            entry.actor_user_id = "someone_else"
            scope.flush()


def test_entries_cannot_be_deleted(db: Session, session_factory):
    with session_scope(session_factory) as scope:
        entry_id = AuditRecorder().record(
            scope, AuditAction.PAYMENT_RECORDED, AuditEntity.INSTALLMENT, uuid.uuid4(), "admin_1"
        ).id

    with pytest.raises(PersistenceError, match="append-only"):
        with session_scope(session_factory) as scope:
            scope.session.delete(scope.session.get(AuditLogEntry, entry_id))
            scope.flush()

    assert AuditLogRepository(db).count() == 1
