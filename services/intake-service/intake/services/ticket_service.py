"""
Ticket creation and the admin update protocol.

Both mutate the Tickets sheet and run inside the same MutationLock, so an
ID is never handed out twice and an update always sees the previous
update's log. Submitter uploads run after the creation lock is released;
admin uploads run inside the update lock so a timed-out update stores
nothing. Both are best effort: a failed upload is logged and the ticket
write goes ahead.
"""
import secrets
import string
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from intake.core.cache import KeyValueCache
from intake.core.errors import LockTimeoutError, NotFoundError, ValidationError
from intake.core.lock import MutationLock
from intake.core.logger import get_logger
from intake.models.ticket import (
    ACTIVE_STATUSES,
    CLOSED_STATUSES,
    TICKET_SCHEMA,
    TICKETS_TABLE,
    UNASSIGNED,
    Ticket,
    TicketStatus,
    TicketType,
    join_urls,
    load_tickets,
    normalize_assignee,
    status_label,
)
from intake.schemas.ticket import TicketCreated, TicketResponse, TicketStatusView, TicketUpdateResult
from intake.services.audit_service import AuditService
from intake.services.blob_store import BlobStore, FilePayload
from intake.services.sequence import next_ticket_id
from intake.services.session import Identity
from intake.store.schema import ColumnMap, invalidate_header, load_columns
from intake.store.tabular import TabularStore
from intake.utils.datetime_utils import now_local, to_display

logger = get_logger(__name__)

ACCESS_KEY_LENGTH = 8
ACCESS_KEY_ALPHABET = string.ascii_uppercase + string.digits
ACCESS_KEY_ATTEMPTS = 10

LOG_SEPARATOR = "\n\n"

TICKET_TYPES = {t.value for t in TicketType}
TICKET_STATUSES = {s.value for s in TicketStatus}

# Cells an update may rewrite
MUTABLE_FIELDS = (
    "status",
    "admin_comment_log",
    "public_comment",
    "assigned_to",
    "admin_attachment_urls",
    "last_updated_at",
)


def _enum_value(value) -> str:
    return getattr(value, "value", value) or ""


def append_log(existing: str, entries: Sequence[str]) -> str:
    """Append a batch of entries to the log, each separated by a blank line."""
    if not entries:
        return existing
    batch = LOG_SEPARATOR.join(entries)
    if not existing.strip():
        return batch
    return f"{existing}{LOG_SEPARATOR}{batch}"


class TicketService:
    def __init__(
        self,
        store: TabularStore,
        cache: KeyValueCache,
        lock: MutationLock,
        blob_store: BlobStore,
        audit: AuditService,
        clock: Callable[[], datetime] = now_local,
    ):
        self.store = store
        self.cache = cache
        self.lock = lock
        self.blob_store = blob_store
        self.audit = audit
        self.clock = clock

    def _columns(self) -> ColumnMap:
        return load_columns(self.store, self.cache, TICKET_SCHEMA)

    def _read_ticket(self, columns: ColumnMap, row_number: int) -> Ticket:
        row = self.store.read_range(TICKETS_TABLE, row_number, 1, columns.width)[0]
        return Ticket.from_row(row, columns, row_number)

    def _find_ticket(self, columns: ColumnMap, ticket_id: str) -> Optional[Ticket]:
        row_number = self.store.find_row(TICKETS_TABLE, columns.index("id"), ticket_id)
        if row_number is None:
            return None
        return self._read_ticket(columns, row_number)

    def _new_access_key(self, columns: ColumnMap) -> str:
        for _ in range(ACCESS_KEY_ATTEMPTS):
            key = "".join(secrets.choice(ACCESS_KEY_ALPHABET) for _ in range(ACCESS_KEY_LENGTH))
            if self.store.find_row(TICKETS_TABLE, columns.index("access_key"), key) is None:
                return key
        raise RuntimeError("Could not generate a unique access key")

    def _upload_all(self, ticket_id: str, payloads: Sequence[FilePayload]) -> List[str]:
        urls = []
        for payload in payloads:
            try:
                urls.append(self.blob_store.upload(ticket_id, payload.filename, payload.data, payload.mime_type))
            except Exception:
                logger.exception(f"Upload of {payload.filename} for {ticket_id} failed, continuing without it")
        return urls

    def list_tickets(self) -> List[Ticket]:
        """Every ticket in storage order, read fresh."""
        columns = self._columns()
        return load_tickets(self.store.read_rows(TICKETS_TABLE), columns)

    def create_ticket(
        self,
        ticket_type,
        topic: str,
        details: str,
        location: str = "",
        attachments: Optional[Sequence[FilePayload]] = None,
    ) -> TicketCreated:
        ticket_type = _enum_value(ticket_type)
        topic = (topic or "").strip()
        details = (details or "").strip()
        if ticket_type not in TICKET_TYPES:
            raise ValidationError(f"Unknown ticket type: {ticket_type}", {"allowed": sorted(TICKET_TYPES)})
        if not topic:
            raise ValidationError("Topic is required")
        if not details:
            raise ValidationError("Details are required")

        with self.lock.hold():
            columns = self._columns()
            now = self.clock()
            last = self.store.last_row(TICKETS_TABLE)
            ticket = Ticket(
                id=next_ticket_id(now, columns.value(last, "id") if last else None),
                created_at=now,
                last_updated_at=now,
                type=ticket_type,
                topic=topic,
                details=details,
                location=(location or "").strip(),
                status=TicketStatus.NEW.value,
                access_key=self._new_access_key(columns),
            )
            self.store.append_row(TICKETS_TABLE, columns.build_row(ticket.to_values()))
            invalidate_header(self.cache, TICKETS_TABLE)

        logger.info(f"Ticket {ticket.id} created ({ticket.type})")

        urls = self._upload_all(ticket.id, attachments or [])
        if urls:
            urls = self._record_attachments(ticket.id, urls)

        return TicketCreated(ticket_id=ticket.id, access_key=ticket.access_key, attachment_urls=urls)

    def _record_attachments(self, ticket_id: str, urls: List[str]) -> List[str]:
        try:
            with self.lock.hold():
                columns = self._columns()
                ticket = self._find_ticket(columns, ticket_id)
                self.store.write_cell(TICKETS_TABLE, ticket.row_number, columns.index("attachment_urls"), join_urls(urls))
                invalidate_header(self.cache, TICKETS_TABLE)
        except LockTimeoutError:
            logger.error(f"Attachments of {ticket_id} uploaded but not recorded: {urls}")
            return []
        return urls

    def update_ticket(
        self,
        ticket_id: str,
        new_status,
        actor: str,
        internal_comment: Optional[str] = None,
        public_comment: Optional[str] = None,
        assigned_to: Optional[str] = None,
        admin_attachments: Optional[Sequence[FilePayload]] = None,
    ) -> TicketUpdateResult:
        """
        Apply an admin update and return the full comment log.

        Every change category (status, re-open archival, note, public note,
        assignment, attachments) adds its own log entry; a call that changes
        nothing adds none but still touches Last Updated. `assigned_to=None`
        leaves the assignee alone, "" or "Unassigned" clears it.
        """
        new_status = _enum_value(new_status)
        if not ticket_id:
            raise ValidationError("Ticket id is required")
        if new_status not in TICKET_STATUSES:
            raise ValidationError(f"Unknown status: {new_status}", {"allowed": sorted(TICKET_STATUSES)})

        with self.lock.hold():
            columns = self._columns()
            ticket = self._find_ticket(columns, ticket_id)
            if ticket is None:
                raise NotFoundError("Ticket", ticket_id)

            uploaded = []
            if admin_attachments:
                if columns.has("admin_attachment_urls"):
                    uploaded = self._upload_all(ticket_id, admin_attachments)
                else:
                    logger.warning(f"Tickets sheet has no admin attachment column, ignoring {len(admin_attachments)} file(s)")

            now = self.clock()
            entries = self._apply_changes(
                ticket, new_status, actor, now,
                internal_comment=internal_comment,
                public_comment=public_comment,
                assigned_to=assigned_to,
                uploaded=uploaded,
                track_attachments=columns.has("admin_attachment_urls"),
            )
            ticket.admin_comment_log = append_log(ticket.admin_comment_log, entries)
            ticket.last_updated_at = now

            values = ticket.to_values()
            self.store.write_cells(TICKETS_TABLE, ticket.row_number, {
                columns.index(name): values[name] for name in MUTABLE_FIELDS if columns.has(name)
            })
            if entries:
                self.audit.record(actor, "UPDATE_TICKET", f"{ticket_id}: {len(entries)} change(s), status {ticket.status}")
            invalidate_header(self.cache, TICKETS_TABLE)

        logger.info(f"Ticket {ticket_id} updated by {actor} with {len(entries)} log entries")
        return TicketUpdateResult(ticket_id=ticket_id, comment_log=ticket.admin_comment_log)

    def _apply_changes(
        self,
        ticket: Ticket,
        new_status: str,
        actor: str,
        now: datetime,
        internal_comment: Optional[str],
        public_comment: Optional[str],
        assigned_to: Optional[str],
        uploaded: List[str],
        track_attachments: bool,
    ) -> List[str]:
        stamp = f"[{to_display(now)} - {actor}]"
        entries = []
        old_status = ticket.status

        if new_status != old_status:
            entries.append(f"{stamp}: changed status from '{status_label(old_status)}' to '{status_label(new_status)}'")
            ticket.status = new_status

        if old_status in CLOSED_STATUSES and new_status in ACTIVE_STATUSES:
            if ticket.public_comment.strip():
                entries.append(f"{stamp}: archived public comment on reopen: {ticket.public_comment}")
            if track_attachments and ticket.admin_attachment_urls:
                entries.append(f"{stamp}: archived admin attachments on reopen: {join_urls(ticket.admin_attachment_urls)}")
            ticket.public_comment = ""
            ticket.admin_attachment_urls = []

        note = (internal_comment or "").strip()
        if note:
            entries.append(f"{stamp} (note): {note}")

        public = (public_comment or "").strip()
        if public and public != ticket.public_comment:
            ticket.public_comment = public
            entries.append(f"{stamp}: saved public resolution note: {public}")

        if assigned_to is not None:
            new_assignee = normalize_assignee(assigned_to)
            old_assignee = normalize_assignee(ticket.assigned_to)
            if new_assignee != old_assignee:
                entries.append(f"{stamp}: reassigned from '{old_assignee or UNASSIGNED}' to '{new_assignee or UNASSIGNED}'")
                ticket.assigned_to = new_assignee

        if uploaded:
            ticket.admin_attachment_urls = ticket.admin_attachment_urls + uploaded
            entries.append(f"{stamp}: uploaded {len(uploaded)} admin attachment(s)")

        return entries

    def check_status(self, access_key: str) -> TicketStatusView:
        key = (access_key or "").strip()
        if not key:
            raise ValidationError("Access key is required")

        columns = self._columns()
        row_number = self.store.find_row(TICKETS_TABLE, columns.index("access_key"), key)
        if row_number is None:
            raise NotFoundError("Ticket")
        ticket = self._read_ticket(columns, row_number)
        return TicketStatusView.from_ticket(ticket, to_display(ticket.last_updated_at))

    def get_ticket(self, ticket_id: str, viewer: Identity) -> TicketResponse:
        ticket = self._find_ticket(self._columns(), ticket_id)
        # Hidden types look the same as missing ones
        if ticket is None or (not viewer.sees_all_types and ticket.type not in viewer.allowed_types):
            raise NotFoundError("Ticket", ticket_id)
        return TicketResponse.from_ticket(ticket)
