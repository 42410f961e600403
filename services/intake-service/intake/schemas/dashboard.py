from datetime import date
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from intake.models.ticket import Ticket, type_label, status_label, join_urls
from intake.utils.datetime_utils import to_display

DateRangeKey = Literal["all", "today", "this_week", "this_month", "last_month", "custom"]


class DashboardFilters(BaseModel):
    type: Optional[str] = Field(None, description="Exact ticket type.")
    assignee: Optional[str] = Field(None, description="Exact team name; 'Unassigned' matches tickets with no team.")
    status: Optional[str] = Field(None, description="Exact status.")
    date_range: Optional[DateRangeKey] = Field(None, description="Creation date window.")
    start_date: Optional[date] = Field(None, description="First day of a custom window (inclusive).")
    end_date: Optional[date] = Field(None, description="Last day of a custom window (inclusive).")


class TicketSummary(BaseModel):
    id: str
    created_at: str
    last_updated: str
    type: str
    type_label: str
    topic: str
    details: str
    location: str
    status: str
    status_label: str
    assigned_to: str
    public_comment: str
    admin_comment_log: str
    attachments: str
    admin_attachments: str

    @classmethod
    def from_ticket(cls, ticket: Ticket) -> "TicketSummary":
        return cls(
            id=ticket.id,
            created_at=to_display(ticket.created_at),
            last_updated=to_display(ticket.last_updated_at),
            type=ticket.type,
            type_label=type_label(ticket.type),
            topic=ticket.topic,
            details=ticket.details,
            location=ticket.location,
            status=ticket.status,
            status_label=status_label(ticket.status),
            assigned_to=ticket.assignee_label,
            public_comment=ticket.public_comment,
            admin_comment_log=ticket.admin_comment_log,
            attachments=join_urls(ticket.attachment_urls),
            admin_attachments=join_urls(ticket.admin_attachment_urls),
        )


class GrandSummary(BaseModel):
    total: int = 0
    by_type: Dict[str, int] = {}
    by_status: Dict[str, int] = {}


class SlaSummary(BaseModel):
    critical: int = Field(0, description="New tickets older than the New threshold.")
    warning: int = Field(0, description="In-progress tickets older than the InProgress threshold.")


class AssigneePerformance(BaseModel):
    assignee: str
    active: int = 0
    completed: int = 0
    cancelled: int = 0
    total: int = 0


class Pagination(BaseModel):
    page: int
    page_size: int
    total_pages: int
    total_records: int


class DashboardResult(BaseModel):
    summary: GrandSummary
    filtered_status_counts: Dict[str, int]
    sla: SlaSummary
    assignee_performance: List[AssigneePerformance]
    unassigned_queue: List[TicketSummary]
    recent: List[TicketSummary]
    records: List[TicketSummary]
    pagination: Pagination
