import threading
import uuid

import pytest

from intake.core.cache import MemoryCache
from intake.core.errors import LockTimeoutError, NotFoundError, ValidationError
from intake.core.lock import MutationLock
from intake.models.directory import AUDIT_SCHEMA
from intake.models.ticket import TICKET_SCHEMA, TICKETS_TABLE, TicketStatus, TicketType
from intake.services.audit_service import AuditService
from intake.services.blob_store import BlobStore, FilePayload
from intake.services.session import Identity
from intake.services.ticket_service import TicketService, append_log
from intake.store.schema import header_cache_key
from intake.store.tabular import MemoryTabularStore

ADMIN = "admin"
STAMP = "[10/06/2024 09:00 - admin]"


class FailingBlobStore(BlobStore):
    def upload(self, folder_key, filename, data, mime_type):
        raise IOError("blob backend down")


def create(service, **overrides):
    kwargs = dict(ticket_type=TicketType.COMPLAINT, topic="Broken AC", details="Room 4 is hot", location="Block B")
    kwargs.update(overrides)
    return service.create_ticket(**kwargs)


def test_first_ticket_of_the_month(ticket_service):
    created = create(ticket_service)

    assert created.ticket_id == "REQ-2406001"
    assert len(created.access_key) == 8
    assert created.access_key.isalnum()

    [ticket] = ticket_service.list_tickets()
    assert ticket.status == TicketStatus.NEW.value
    assert ticket.admin_comment_log == ""
    assert ticket.public_comment == ""
    assert ticket.assigned_to == ""
    assert ticket.location == "Block B"
    assert ticket.created_at == ticket.last_updated_at


def test_ids_continue_then_reset_next_month(ticket_service, clock):
    assert create(ticket_service).ticket_id == "REQ-2406001"
    assert create(ticket_service).ticket_id == "REQ-2406002"

    clock.advance(days=25)
    assert create(ticket_service).ticket_id == "REQ-2407001"


def test_id_follows_last_row_in_storage(ticket_service, store):
    store.append_row(TICKETS_TABLE, ["REQ-2406041"] + [""] * 13)
    assert create(ticket_service).ticket_id == "REQ-2406042"


def test_corrupt_last_id_restarts_counter(ticket_service, store):
    store.append_row(TICKETS_TABLE, ["legacy-row"] + [""] * 13)
    assert create(ticket_service).ticket_id == "REQ-2406001"


def test_access_keys_are_unique(ticket_service):
    keys = {create(ticket_service).access_key for _ in range(5)}
    assert len(keys) == 5


@pytest.mark.parametrize("overrides", [
    {"ticket_type": "Praise"},
    {"topic": "   "},
    {"details": ""},
])
def test_create_rejects_invalid_input(ticket_service, overrides):
    with pytest.raises(ValidationError):
        create(ticket_service, **overrides)
    assert ticket_service.list_tickets() == []


def test_create_uploads_attachments(ticket_service):
    created = create(ticket_service, attachments=[FilePayload("photo.jpg", b"\xff\xd8", "image/jpeg")])

    assert len(created.attachment_urls) == 1
    assert created.attachment_urls[0].startswith("http://files.test/REQ-2406001/")
    assert created.attachment_urls[0].endswith("_photo.jpg")
    assert ticket_service.list_tickets()[0].attachment_urls == created.attachment_urls


def test_failed_upload_still_creates_ticket(ticket_service):
    ticket_service.blob_store = FailingBlobStore()

    created = create(ticket_service, attachments=[FilePayload("photo.jpg", b"x")])

    assert created.ticket_id == "REQ-2406001"
    assert created.attachment_urls == []
    assert ticket_service.list_tickets()[0].attachment_urls == []


def test_create_times_out_without_writing(store, cache, blob_store, audit, clock):
    name = f"test-{uuid.uuid4().hex}"
    service = TicketService(store, cache, MutationLock(name, timeout=0.1), blob_store, audit, clock)

    with MutationLock(name, timeout=1).hold():
        with pytest.raises(LockTimeoutError):
            create(service)

    assert service.list_tickets() == []


def test_status_change_and_note_in_order(ticket_service, clock):
    ticket_id = create(ticket_service).ticket_id

    result = ticket_service.update_ticket(
        ticket_id, TicketStatus.IN_PROGRESS, ADMIN, internal_comment="Called facilities"
    )

    assert result.comment_log == (
        f"{STAMP}: changed status from 'New' to 'In Progress'"
        f"\n\n{STAMP} (note): Called facilities"
    )
    ticket = ticket_service.list_tickets()[0]
    assert ticket.status == TicketStatus.IN_PROGRESS.value
    assert ticket.admin_comment_log == result.comment_log


def test_identical_update_adds_nothing_but_touches_last_updated(ticket_service, clock):
    ticket_id = create(ticket_service).ticket_id
    ticket_service.update_ticket(ticket_id, "InProgress", ADMIN, public_comment="On it")
    before = ticket_service.list_tickets()[0]

    clock.advance(hours=1)
    result = ticket_service.update_ticket(ticket_id, "InProgress", ADMIN, public_comment="On it")

    after = ticket_service.list_tickets()[0]
    assert result.comment_log == before.admin_comment_log
    assert after.last_updated_at > before.last_updated_at


def test_reopen_archives_public_comment(ticket_service, clock):
    ticket_id = create(ticket_service).ticket_id
    closed = ticket_service.update_ticket(ticket_id, "Completed", ADMIN, public_comment="Replaced the unit")
    assert ticket_service.check_status(
        ticket_service.list_tickets()[0].access_key
    ).public_comment == "Replaced the unit"

    clock.advance(days=1)
    result = ticket_service.update_ticket(ticket_id, "InProgress", ADMIN)

    stamp = "[11/06/2024 09:00 - admin]"
    assert result.comment_log.startswith(closed.comment_log)
    assert result.comment_log.endswith(
        f"{stamp}: changed status from 'Completed' to 'In Progress'"
        f"\n\n{stamp}: archived public comment on reopen: Replaced the unit"
    )
    assert ticket_service.list_tickets()[0].public_comment == ""


def test_reopen_archives_admin_attachments(ticket_service):
    ticket_id = create(ticket_service).ticket_id
    ticket_service.update_ticket(
        ticket_id, "Completed", ADMIN, admin_attachments=[FilePayload("report.pdf", b"%PDF", "application/pdf")]
    )
    urls = ticket_service.list_tickets()[0].admin_attachment_urls
    assert len(urls) == 1

    result = ticket_service.update_ticket(ticket_id, "New", ADMIN)

    assert f"archived admin attachments on reopen: {urls[0]}" in result.comment_log
    assert ticket_service.list_tickets()[0].admin_attachment_urls == []


def test_public_comment_saved_only_when_changed(ticket_service):
    ticket_id = create(ticket_service).ticket_id
    first = ticket_service.update_ticket(ticket_id, "New", ADMIN, public_comment="Scheduled for Monday")
    assert first.comment_log == f"{STAMP}: saved public resolution note: Scheduled for Monday"

    second = ticket_service.update_ticket(ticket_id, "New", ADMIN, public_comment="  Scheduled for Monday ")
    assert second.comment_log == first.comment_log


def test_reassignment(ticket_service):
    ticket_id = create(ticket_service).ticket_id

    result = ticket_service.update_ticket(ticket_id, "New", ADMIN, assigned_to="Facilities")
    assert result.comment_log == f"{STAMP}: reassigned from 'Unassigned' to 'Facilities'"
    assert ticket_service.list_tickets()[0].assigned_to == "Facilities"

    # omitted assignee keeps the current one
    ticket_service.update_ticket(ticket_id, "New", ADMIN)
    assert ticket_service.list_tickets()[0].assigned_to == "Facilities"

    result = ticket_service.update_ticket(ticket_id, "New", ADMIN, assigned_to="Unassigned")
    assert result.comment_log.endswith(f"{STAMP}: reassigned from 'Facilities' to 'Unassigned'")
    assert ticket_service.list_tickets()[0].assigned_to == ""


def test_failed_admin_upload_is_partial(ticket_service):
    ticket_id = create(ticket_service).ticket_id
    ticket_service.blob_store = FailingBlobStore()

    result = ticket_service.update_ticket(
        ticket_id, "Completed", ADMIN,
        public_comment="Done",
        admin_attachments=[FilePayload("report.pdf", b"%PDF")],
    )

    assert "uploaded" not in result.comment_log
    ticket = ticket_service.list_tickets()[0]
    assert ticket.status == TicketStatus.COMPLETED.value
    assert ticket.public_comment == "Done"
    assert ticket.admin_attachment_urls == []


def test_admin_attachments_ignored_without_column(cache, lock, blob_store, clock):
    store = MemoryTabularStore()
    store.ensure_table(TICKETS_TABLE, TICKET_SCHEMA.default_header[:-1])
    store.ensure_table(AUDIT_SCHEMA.table, AUDIT_SCHEMA.default_header)
    service = TicketService(store, cache, lock, blob_store, AuditService(store, MemoryCache(), clock), clock)
    ticket_id = create(service).ticket_id

    result = service.update_ticket(ticket_id, "Completed", ADMIN, admin_attachments=[FilePayload("a.txt", b"a")])

    assert result.comment_log == f"{STAMP}: changed status from 'New' to 'Completed'"
    assert len(store.last_row(TICKETS_TABLE)) == 13


def test_update_unknown_ticket(ticket_service):
    with pytest.raises(NotFoundError):
        ticket_service.update_ticket("REQ-2406999", "New", ADMIN)


def test_update_rejects_unknown_status(ticket_service):
    ticket_id = create(ticket_service).ticket_id
    with pytest.raises(ValidationError):
        ticket_service.update_ticket(ticket_id, "Escalated", ADMIN)


def test_update_writes_audit_entry(ticket_service, audit):
    ticket_id = create(ticket_service).ticket_id
    ticket_service.update_ticket(ticket_id, "Cancelled", ADMIN)

    [entry] = audit.list_entries()
    assert entry.username == ADMIN
    assert entry.action == "UPDATE_TICKET"
    assert entry.details.startswith(ticket_id)


def test_update_invalidates_header_cache(ticket_service, cache):
    ticket_id = create(ticket_service).ticket_id
    ticket_service.list_tickets()
    assert cache.get(header_cache_key(TICKETS_TABLE)) is not None

    ticket_service.update_ticket(ticket_id, "InProgress", ADMIN)

    assert cache.get(header_cache_key(TICKETS_TABLE)) is None


def test_check_status(ticket_service):
    created = create(ticket_service)
    ticket_service.update_ticket(created.ticket_id, "InProgress", ADMIN, internal_comment="secret")

    view = ticket_service.check_status(created.access_key)

    assert view.ticket_id == created.ticket_id
    assert view.status == "In Progress"
    assert view.type == "Complaint"
    assert view.last_updated == "10/06/2024 09:00"
    assert "secret" not in view.model_dump_json()


def test_check_status_unknown_key(ticket_service):
    create(ticket_service)
    with pytest.raises(NotFoundError) as exc:
        ticket_service.check_status("ZZZZZZZZ")
    assert exc.value.message == "Ticket not found"


def test_check_status_requires_key(ticket_service):
    with pytest.raises(ValidationError):
        ticket_service.check_status("  ")


def test_get_ticket_hides_disallowed_types(ticket_service):
    ticket_id = create(ticket_service, ticket_type=TicketType.SUGGESTION).ticket_id

    staff = Identity("staff", "User", ["Complaint"])
    with pytest.raises(NotFoundError):
        ticket_service.get_ticket(ticket_id, staff)

    viewer = Identity("lead", "User", ["all"])
    assert ticket_service.get_ticket(ticket_id, viewer).type == "Suggestion"


def test_append_log():
    assert append_log("", ["a"]) == "a"
    assert append_log("a", ["b", "c"]) == "a\n\nb\n\nc"
    assert append_log("a", []) == "a"


def test_concurrent_creates_get_distinct_gapless_ids(memory_ticket_service):
    ids = []
    errors = []

    def worker():
        try:
            ids.append(create(memory_ticket_service).ticket_id)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert sorted(ids) == [f"REQ-2406{n:03d}" for n in range(1, 11)]


def test_concurrent_updates_keep_every_entry(memory_ticket_service):
    ticket_id = create(memory_ticket_service).ticket_id

    def worker(n):
        memory_ticket_service.update_ticket(ticket_id, "InProgress", ADMIN, internal_comment=f"note {n}")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    log = memory_ticket_service.list_tickets()[0].admin_comment_log
    assert log.count("changed status") == 1
    for n in range(8):
        assert f"(note): note {n}" in log


def test_issue_report_scenario(ticket_service):
    created = ticket_service.create_ticket(TicketType.ISSUE_REPORT, topic="A", details="B", location="C")
    assert created.ticket_id == "REQ-2406001"

    result = ticket_service.update_ticket(created.ticket_id, "InProgress", ADMIN, internal_comment="checking")

    entries = result.comment_log.split("\n\n")
    assert entries == [
        f"{STAMP}: changed status from 'New' to 'In Progress'",
        f"{STAMP} (note): checking",
    ]
    ticket = ticket_service.list_tickets()[0]
    assert ticket.type == "IssueReport"
    assert ticket.assigned_to == ""


def test_update_timeout_stores_no_attachments(store, cache, blob_store, audit, clock, tmp_path):
    name = f"test-{uuid.uuid4().hex}"
    service = TicketService(store, cache, MutationLock(name, timeout=0.1), blob_store, audit, clock)
    ticket_id = create(service).ticket_id

    with MutationLock(name, timeout=1).hold():
        with pytest.raises(LockTimeoutError):
            service.update_ticket(ticket_id, "Completed", ADMIN, admin_attachments=[FilePayload("r.pdf", b"%PDF")])

    uploads = tmp_path / "uploads"
    assert not uploads.exists() or list(uploads.rglob("*.pdf")) == []
    ticket = service.list_tickets()[0]
    assert ticket.status == TicketStatus.NEW.value
    assert ticket.admin_comment_log == ""


@pytest.mark.parametrize("service_fixture", ["ticket_service", "memory_ticket_service"])
def test_concurrent_updates_to_different_tickets_stay_separate(request, service_fixture):
    service = request.getfixturevalue(service_fixture)
    ticket_ids = [create(service, topic=f"Topic {n}").ticket_id for n in range(4)]
    statuses = ["InProgress", "Completed", "Cancelled", "InProgress"]
    errors = []

    def worker(n):
        try:
            service.update_ticket(
                ticket_ids[n], statuses[n], ADMIN,
                internal_comment=f"note for {n}",
                assigned_to=f"Team {n}",
            )
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    tickets = {t.id: t for t in service.list_tickets()}
    for n, ticket_id in enumerate(ticket_ids):
        ticket = tickets[ticket_id]
        assert ticket.topic == f"Topic {n}"
        assert ticket.status == statuses[n]
        assert ticket.assigned_to == f"Team {n}"
        assert f"(note): note for {n}" in ticket.admin_comment_log
        others = [m for m in range(4) if m != n]
        assert all(f"note for {m}" not in ticket.admin_comment_log for m in others)
        assert all(f"Team {m}" not in ticket.admin_comment_log for m in others)
