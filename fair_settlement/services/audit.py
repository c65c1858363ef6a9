"""Audit recorder - appends one audit entry inside the caller's transaction"""

import enum
import uuid
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from fair_settlement.domain.models import AuditAction, AuditEntity
from fair_settlement.infrastructure.database.models import AuditLogEntry
from fair_settlement.infrastructure.database.repositories import AuditLogRepository
from fair_settlement.infrastructure.database.session import UnitOfWork, translate_db_error


def to_json_value(value: Any) -> Any:
    """Convert snapshots to JSON-storable values; None stays None"""
    if isinstance(value, enum.Enum):
        return value.value
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if is_dataclass(value) and not isinstance(value, type):
        return to_json_value(asdict(value))
    if isinstance(value, dict):
        return {str(k): to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_json_value(v) for v in value]
    raise TypeError(f"Cannot store {type(value).__name__} in an audit snapshot")


class AuditRecorder:
    """
    Writes audit entries. Never opens, commits or rolls back a transaction:
    the entry becomes visible only when the caller's scope commits, and a
    failure here must abort that scope.
    """

    def record(
        self,
        scope: UnitOfWork,
        action: AuditAction,
        entity: AuditEntity,
        entity_id: Any,
        actor_id: str,
        before: Optional[Any] = None,
        after: Optional[Any] = None,
        meta: Optional[Any] = None,
    ) -> AuditLogEntry:
        """
        Persist one audit entry in the open scope.

        Raises:
            ValueError: entity_id or actor_id is empty, or action/entity is not
                one of the known kinds
            PersistenceError: the store rejected the insert
        """
        if not isinstance(action, AuditAction):
            raise ValueError(f"Unknown audit action {action!r}")
        if not isinstance(entity, AuditEntity):
            raise ValueError(f"Unknown audit entity {entity!r}")
        if entity_id is None or not str(entity_id).strip():
            raise ValueError("entity_id is required")
        if not actor_id or not str(actor_id).strip():
            raise ValueError("actor_id is required")

        entry = AuditLogRepository(scope.session).add(
            AuditLogEntry(
                action=action,
                entity=entity,
                entity_id=str(entity_id),
                actor_user_id=str(actor_id),
                before=to_json_value(before),
                after=to_json_value(after),
                meta=to_json_value(meta),
            )
        )
        try:
            self._flush_and_load_timestamp(scope, entry)
        except SQLAlchemyError as e:
            raise translate_db_error(e) from e
        return entry

    def _flush_and_load_timestamp(self, scope: UnitOfWork, entry: AuditLogEntry) -> None:
        scope.session.flush()
        # created_at is assigned by the database on insert
        scope.session.refresh(entry, attribute_names=["created_at"])
