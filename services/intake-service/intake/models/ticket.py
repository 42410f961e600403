from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence

from intake.store.schema import ColumnMap, TableSchema
from intake.utils.datetime_utils import parse_timestamp, to_storage

TICKETS_TABLE = "Tickets"

class TicketType(str, Enum):
    COMPLAINT = "Complaint"
    SUGGESTION = "Suggestion"
    ISSUE_REPORT = "IssueReport"

class TicketStatus(str, Enum):
    NEW = "New"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

ACTIVE_STATUSES = {TicketStatus.NEW.value, TicketStatus.IN_PROGRESS.value}
CLOSED_STATUSES = {TicketStatus.COMPLETED.value, TicketStatus.CANCELLED.value}

TYPE_LABELS = {
    TicketType.COMPLAINT.value: "Complaint",
    TicketType.SUGGESTION.value: "Suggestion",
    TicketType.ISSUE_REPORT.value: "Issue Report",
}

STATUS_LABELS = {
    TicketStatus.NEW.value: "New",
    TicketStatus.IN_PROGRESS.value: "In Progress",
    TicketStatus.COMPLETED.value: "Completed",
    TicketStatus.CANCELLED.value: "Cancelled",
}

UNASSIGNED = "Unassigned"

TICKET_SCHEMA = TableSchema(
    TICKETS_TABLE,
    required={
        "id": "Ticket ID",
        "created_at": "Created At",
        "last_updated_at": "Last Updated",
        "type": "Type",
        "topic": "Topic",
        "details": "Details",
        "location": "Location",
        "status": "Status",
        "attachment_urls": "Attachments",
        "admin_comment_log": "Admin Comments",
        "access_key": "Access Key",
        "public_comment": "Public Comment",
        "assigned_to": "Assigned To",
    },
    optional={
        "admin_attachment_urls": "Admin Attachments",
    },
)


def split_urls(value: str) -> List[str]:
    return [u.strip() for u in (value or "").split(",") if u.strip()]


def join_urls(urls: Sequence[str]) -> str:
    return ",".join(urls)


def type_label(value: str) -> str:
    return TYPE_LABELS.get(value, value)


def status_label(value: str) -> str:
    return STATUS_LABELS.get(value, value)


def normalize_assignee(value: Optional[str]) -> str:
    value = (value or "").strip()
    return "" if value.lower() == UNASSIGNED.lower() else value


@dataclass
class Ticket:
    """A row of the Tickets sheet."""
    id: str
    created_at: Optional[datetime]
    last_updated_at: Optional[datetime]
    type: str
    topic: str = ""
    details: str = ""
    location: str = ""
    status: str = TicketStatus.NEW.value
    attachment_urls: List[str] = field(default_factory=list)
    admin_comment_log: str = ""
    access_key: str = ""
    public_comment: str = ""
    assigned_to: str = ""
    admin_attachment_urls: List[str] = field(default_factory=list)
    row_number: Optional[int] = None

    @property
    def assignee_label(self) -> str:
        return self.assigned_to or UNASSIGNED

    @classmethod
    def from_row(cls, row: Sequence[str], columns: ColumnMap, row_number: int = None) -> "Ticket":
        value = lambda name: columns.value(row, name)
        return cls(
            id=value("id"),
            created_at=parse_timestamp(value("created_at")),
            last_updated_at=parse_timestamp(value("last_updated_at")),
            type=value("type"),
            topic=value("topic"),
            details=value("details"),
            location=value("location"),
            status=value("status"),
            attachment_urls=split_urls(value("attachment_urls")),
            admin_comment_log=value("admin_comment_log"),
            access_key=value("access_key"),
            public_comment=value("public_comment"),
            assigned_to=value("assigned_to"),
            admin_attachment_urls=split_urls(value("admin_attachment_urls")),
            row_number=row_number,
        )

    def to_values(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "created_at": to_storage(self.created_at) if self.created_at else "",
            "last_updated_at": to_storage(self.last_updated_at) if self.last_updated_at else "",
            "type": self.type,
            "topic": self.topic,
            "details": self.details,
            "location": self.location,
            "status": self.status,
            "attachment_urls": join_urls(self.attachment_urls),
            "admin_comment_log": self.admin_comment_log,
            "access_key": self.access_key,
            "public_comment": self.public_comment,
            "assigned_to": self.assigned_to,
            "admin_attachment_urls": join_urls(self.admin_attachment_urls),
        }


def load_tickets(rows: Sequence[Sequence[str]], columns: ColumnMap) -> List[Ticket]:
    """Parse data rows (header excluded) in storage order, skipping blank rows."""
    return [
        Ticket.from_row(row, columns, row_number=i)
        for i, row in enumerate(rows, start=2)
        if columns.value(row, "id").strip()
    ]
