"""
Teams and users as read by the ticket workflow.

Teams are a flat list of names used as ticket assignees. Users are only
read here (role, status and allowed types feed session refresh); user
management itself lives outside this service.
"""
from typing import List, NamedTuple, Optional

from intake.core.cache import KeyValueCache
from intake.core.errors import NotFoundError, ValidationError
from intake.core.lock import MutationLock, build_mutation_lock
from intake.core.logger import get_logger
from intake.models.directory import ALL_TYPES, TEAM_SCHEMA, USER_SCHEMA, Role, UserStatus
from intake.services.audit_service import AuditService
from intake.store.schema import invalidate_header, load_columns
from intake.store.tabular import TabularStore

logger = get_logger(__name__)

DIRECTORY_LOCK = "directory-mutation"


def parse_allowed_types(value: str) -> List[str]:
    items = [t.strip() for t in (value or "").split(",") if t.strip()]
    if not items or any(t.lower() == ALL_TYPES for t in items):
        return [ALL_TYPES]
    return items


def force_refresh_key(username: str) -> str:
    return f"force_refresh:{username.lower()}"


class UserRecord(NamedTuple):
    username: str
    role: str
    status: str
    team: str
    allowed_types: List[str]

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value


class UserRepository:
    def __init__(self, store: TabularStore, cache: KeyValueCache):
        self.store = store
        self.cache = cache

    def get(self, username: str) -> Optional[UserRecord]:
        """Case-insensitive lookup. A users header mismatch raises."""
        columns = load_columns(self.store, self.cache, USER_SCHEMA)
        wanted = username.strip().lower()
        for row in self.store.read_rows(USER_SCHEMA.table):
            if columns.value(row, "username").strip().lower() == wanted:
                return UserRecord(
                    username=columns.value(row, "username").strip(),
                    role=columns.value(row, "role"),
                    status=columns.value(row, "status"),
                    team=columns.value(row, "team"),
                    allowed_types=parse_allowed_types(columns.value(row, "allowed_types")),
                )
        return None


class TeamRepository:
    def __init__(self, store: TabularStore, cache: KeyValueCache, audit: AuditService, lock: MutationLock = None):
        self.store = store
        self.cache = cache
        self.audit = audit
        self.lock = lock or build_mutation_lock(DIRECTORY_LOCK)

    def list(self) -> List[str]:
        columns = load_columns(self.store, self.cache, TEAM_SCHEMA)
        names = (columns.value(row, "name").strip() for row in self.store.read_rows(TEAM_SCHEMA.table))
        return sorted((n for n in names if n), key=str.lower)

    def _find(self, name: str) -> Optional[int]:
        columns = load_columns(self.store, self.cache, TEAM_SCHEMA)
        wanted = name.lower()
        for position, row in enumerate(self.store.read_rows(TEAM_SCHEMA.table), start=2):
            if columns.value(row, "name").strip().lower() == wanted:
                return position
        return None

    def add(self, name: str, actor: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Team name is required")

        with self.lock.hold():
            if self._find(name) is not None:
                raise ValidationError(f"Team '{name}' already exists")
            columns = load_columns(self.store, self.cache, TEAM_SCHEMA)
            self.store.append_row(TEAM_SCHEMA.table, columns.build_row({"name": name}))
            self.audit.record(actor, "ADD_TEAM", name)
            invalidate_header(self.cache, TEAM_SCHEMA.table)

        logger.info(f"Team '{name}' added by {actor}")
        return name

    def delete(self, name: str, actor: str) -> None:
        name = (name or "").strip()
        with self.lock.hold():
            position = self._find(name)
            if position is None:
                raise NotFoundError("Team", name)
            self.store.delete_row(TEAM_SCHEMA.table, position)
            self.audit.record(actor, "DELETE_TEAM", name)
            invalidate_header(self.cache, TEAM_SCHEMA.table)

        logger.info(f"Team '{name}' deleted by {actor}")
