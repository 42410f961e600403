import csv
import io
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from intake.models.ticket import TICKET_SCHEMA, Ticket, join_urls
from intake.schemas.dashboard import DashboardFilters
from intake.services.dashboard import apply_base_filters, apply_status_filter
from intake.utils.datetime_utils import now_local, to_export

EXPORT_HEADER = TICKET_SCHEMA.default_header


def export_row(ticket: Ticket) -> List[str]:
    return [
        ticket.id,
        to_export(ticket.created_at),
        to_export(ticket.last_updated_at),
        ticket.type,
        ticket.topic,
        ticket.details,
        ticket.location,
        ticket.status,
        join_urls(ticket.attachment_urls),
        ticket.admin_comment_log,
        ticket.access_key,
        ticket.public_comment,
        ticket.assigned_to,
        join_urls(ticket.admin_attachment_urls),
    ]


def export_rows(
    tickets: Sequence[Ticket],
    filters: Optional[DashboardFilters] = None,
    clock: Callable[[], datetime] = now_local,
) -> List[List[str]]:
    """
    Header plus every ticket matching the dashboard's type, assignee, date
    and status filters. Export is an admin operation, so neither the
    viewer's type restriction nor the free-text search applies, and there
    is no paging.
    """
    filters = filters or DashboardFilters()
    matching = apply_status_filter(apply_base_filters(tickets, filters, clock()), filters)
    return [list(EXPORT_HEADER)] + [export_row(t) for t in matching]


def to_csv(rows: Sequence[Sequence[str]]) -> str:
    buffer = io.StringIO()
    csv.writer(buffer).writerows(rows)
    return buffer.getvalue()
