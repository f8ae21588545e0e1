"""Append-only audit trail.

Entries are written in a session of their own after the business transaction has
committed. A failed write is logged and dropped: losing an audit row must never
block or roll back a catalog edit.
"""

import enum
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, func, inspect, select
from sqlalchemy.orm import Session

from catalog.db.models import AuditLogEntry

logger = logging.getLogger("catalog.audit")


class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    RESTORE = "RESTORE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"


@dataclass(frozen=True)
class ActorContext:
    """Who triggered a mutation, as far as the request layer knows."""

    label: Optional[str] = None
    ip_address: Optional[str] = None
    client_info: Optional[str] = None


@dataclass
class AuditPage:
    items: List[AuditLogEntry]
    total: int
    page: int
    per_page: int
    pages: int = field(init=False)

    def __post_init__(self) -> None:
        self.pages = max(1, math.ceil(self.total / self.per_page)) if self.per_page else 1

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


def _json_safe(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, enum.Enum):
        return value.value
    return value


def snapshot(instance) -> Dict[str, Any]:
    """Column values of a mapped row as a JSON-safe dict."""
    mapper = inspect(instance).mapper
    return {column.key: _json_safe(getattr(instance, column.key)) for column in mapper.column_attrs}


class AuditLog:
    def __init__(self, session_factory: Callable[[], Session], *, default_actor: str = "admin"):
        self._session_factory = session_factory
        self.default_actor = default_actor

    def record(
        self,
        action: AuditAction,
        table_name: str,
        record_id: Optional[int] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        actor: Optional[ActorContext] = None,
    ) -> None:
        actor = actor or ActorContext()
        try:
            entry = AuditLogEntry(
                action=AuditAction(action).value,
                table_name=table_name,
                record_id=record_id,
                old_values=old_values,
                new_values=new_values,
                actor=(actor.label or self.default_actor)[:100],
                ip_address=actor.ip_address,
                client_info=actor.client_info,
            )
            with self._session_factory() as session:
                session.add(entry)
                session.commit()
        except Exception:
            logger.exception(
                "audit_write_failed",
                extra={"action": str(action), "table_name": table_name, "record_id": record_id},
            )

    def query(
        self,
        *,
        action: Optional[str] = None,
        table_name: Optional[str] = None,
        record_id: Optional[int] = None,
        page: int = 1,
        per_page: int = 50,
    ) -> AuditPage:
        page = max(page, 1)
        per_page = max(per_page, 1)
        conditions = []
        if action:
            conditions.append(AuditLogEntry.action == AuditAction(action).value)
        if table_name:
            conditions.append(AuditLogEntry.table_name == table_name)
        if record_id is not None:
            conditions.append(AuditLogEntry.record_id == record_id)

        with self._session_factory() as session:
            total = session.scalar(select(func.count(AuditLogEntry.id)).where(*conditions)) or 0
            items = session.scalars(
                select(AuditLogEntry)
                .where(*conditions)
                .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
                .offset((page - 1) * per_page)
                .limit(per_page)
            ).all()
            session.expunge_all()
        return AuditPage(items=list(items), total=total, page=page, per_page=per_page)

    def get(self, entry_id: int) -> Optional[AuditLogEntry]:
        with self._session_factory() as session:
            entry = session.get(AuditLogEntry, entry_id)
            if entry is not None:
                session.expunge(entry)
            return entry

    def purge_older_than(self, cutoff: datetime) -> int:
        """Physically delete entries created before ``cutoff``; returns the count removed."""
        with self._session_factory() as session:
            result = session.execute(delete(AuditLogEntry).where(AuditLogEntry.created_at < cutoff))
            session.commit()
        removed = result.rowcount or 0
        logger.info("audit_log_purged", extra={"cutoff": cutoff.isoformat(), "removed": removed})
        return removed
