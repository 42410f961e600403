from typing import Callable, List, Optional
from datetime import datetime

from intake.core.cache import KeyValueCache
from intake.core.logger import get_logger
from intake.models.directory import AUDIT_SCHEMA
from intake.schemas.audit import AuditLogResponse
from intake.store.schema import load_columns
from intake.store.tabular import TabularStore
from intake.utils.datetime_utils import now_local, to_storage

logger = get_logger(__name__)


class AuditService:
    """Append-only audit trail kept in the AuditLog sheet."""

    def __init__(self, store: TabularStore, cache: KeyValueCache, clock: Callable[[], datetime] = now_local):
        self.store = store
        self.cache = cache
        self.clock = clock

    def record(self, actor: str, action: str, details: str = "") -> None:
        columns = load_columns(self.store, self.cache, AUDIT_SCHEMA)
        self.store.append_row(AUDIT_SCHEMA.table, columns.build_row({
            "timestamp": to_storage(self.clock()),
            "username": actor,
            "action": action,
            "details": details,
        }))

    def list_entries(
        self,
        skip: int = 0,
        limit: int = 100,
        actor: Optional[str] = None,
        action: Optional[str] = None,
    ) -> List[AuditLogResponse]:
        """Entries newest first, optionally filtered by actor and action."""
        columns = load_columns(self.store, self.cache, AUDIT_SCHEMA)
        entries = []
        for row in reversed(self.store.read_rows(AUDIT_SCHEMA.table)):
            entry = AuditLogResponse(
                timestamp=columns.value(row, "timestamp"),
                username=columns.value(row, "username"),
                action=columns.value(row, "action"),
                details=columns.value(row, "details"),
            )
            if actor is not None and entry.username.lower() != actor.lower():
                continue
            if action is not None and entry.action != action:
                continue
            entries.append(entry)
        return entries[skip:skip + limit]
