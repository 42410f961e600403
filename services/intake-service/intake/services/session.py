"""
Caller identity from a session token.

Sessions are issued by the login flow and stored in the key-value cache as
`session:<token>` -> {"username", "role", "allowed_types"}. This module only
reads them. When an admin changes a user's role or allowed types the
`force_refresh:<username>` flag is set, and the next request of that user
reloads both from the Users sheet.
"""
from typing import List, NamedTuple, Optional

from intake.core.cache import KeyValueCache
from intake.core.config import settings
from intake.core.logger import get_logger
from intake.models.directory import ALL_TYPES, Role
from intake.services.directory import UserRepository, force_refresh_key, parse_allowed_types

logger = get_logger(__name__)


class Identity(NamedTuple):
    username: str
    role: str
    allowed_types: List[str]

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    @property
    def sees_all_types(self) -> bool:
        return any(t.lower() == ALL_TYPES for t in self.allowed_types)


def session_key(token: str) -> str:
    return f"session:{token}"


class SessionResolver:
    def __init__(self, cache: KeyValueCache, users: UserRepository):
        self.cache = cache
        self.users = users

    def resolve(self, token: Optional[str]) -> Optional[Identity]:
        if not token:
            return None
        session = self.cache.get(session_key(token))
        if not session or not session.get("username"):
            return None

        username = session["username"]
        if self.cache.get(force_refresh_key(username)):
            session = self._refresh(token, username)
            if session is None:
                return None

        allowed = session.get("allowed_types") or ALL_TYPES
        if isinstance(allowed, str):
            allowed = parse_allowed_types(allowed)
        return Identity(username=username, role=session.get("role", Role.USER.value), allowed_types=list(allowed))

    def _refresh(self, token: str, username: str) -> Optional[dict]:
        user = self.users.get(username)
        if user is None or not user.is_active:
            logger.info(f"Session of {username} revoked on refresh (user missing or inactive)")
            self.cache.remove(session_key(token))
            self.cache.remove(force_refresh_key(username))
            return None

        session = {"username": user.username, "role": user.role, "allowed_types": user.allowed_types}
        self.cache.put(session_key(token), session, settings.SESSION_TTL_SECONDS)
        self.cache.remove(force_refresh_key(username))
        logger.info(f"Reloaded permissions for {username}: role={user.role}, types={user.allowed_types}")
        return session
