from functools import lru_cache
from typing import Callable, Optional

from fastapi import Depends, Request

from intake.core.cache import KeyValueCache, build_cache
from intake.core.config import settings
from intake.core.db import SessionLocal
from intake.core.errors import ForbiddenError, UnauthorizedError
from intake.core.lock import MutationLock, build_mutation_lock
from intake.services.audit_service import AuditService
from intake.services.blob_store import BlobStore, LocalBlobStore
from intake.services.dashboard import DashboardAggregator
from intake.services.directory import DIRECTORY_LOCK, TeamRepository, UserRepository
from intake.services.session import Identity, SessionResolver
from intake.services.ticket_service import TicketService
from intake.store.tabular import SqlTabularStore, TabularStore
from intake.utils.datetime_utils import now_local


@lru_cache()
def get_store() -> TabularStore:
    return SqlTabularStore(SessionLocal)


@lru_cache()
def get_cache() -> KeyValueCache:
    return build_cache()


@lru_cache()
def get_lock() -> MutationLock:
    return build_mutation_lock()


@lru_cache()
def get_directory_lock() -> MutationLock:
    return build_mutation_lock(DIRECTORY_LOCK)


@lru_cache()
def get_blob_store() -> BlobStore:
    return LocalBlobStore()


def get_clock() -> Callable:
    return now_local


def get_audit_service(
    store: TabularStore = Depends(get_store),
    cache: KeyValueCache = Depends(get_cache),
    clock: Callable = Depends(get_clock),
) -> AuditService:
    return AuditService(store, cache, clock)


def get_ticket_service(
    store: TabularStore = Depends(get_store),
    cache: KeyValueCache = Depends(get_cache),
    lock: MutationLock = Depends(get_lock),
    blob_store: BlobStore = Depends(get_blob_store),
    audit: AuditService = Depends(get_audit_service),
    clock: Callable = Depends(get_clock),
) -> TicketService:
    return TicketService(store, cache, lock, blob_store, audit, clock)


def get_dashboard(clock: Callable = Depends(get_clock)) -> DashboardAggregator:
    return DashboardAggregator(clock=clock)


def get_team_repository(
    store: TabularStore = Depends(get_store),
    cache: KeyValueCache = Depends(get_cache),
    audit: AuditService = Depends(get_audit_service),
    lock: MutationLock = Depends(get_directory_lock),
) -> TeamRepository:
    return TeamRepository(store, cache, audit, lock)


def get_session_resolver(
    store: TabularStore = Depends(get_store),
    cache: KeyValueCache = Depends(get_cache),
) -> SessionResolver:
    return SessionResolver(cache, UserRepository(store, cache))


def get_identity(request: Request, resolver: SessionResolver = Depends(get_session_resolver)) -> Identity:
    token: Optional[str] = request.headers.get(settings.SESSION_HEADER)
    identity = resolver.resolve(token)
    if identity is None:
        raise UnauthorizedError("Session is missing or expired")
    return identity


def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_admin:
        raise ForbiddenError("Admin role required")
    return identity
