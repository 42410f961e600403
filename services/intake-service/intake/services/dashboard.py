"""
Dashboard aggregation over the full ticket list.

Reads are lock-free: the caller passes tickets freshly read from the store
and everything here is computed in memory. The filter predicates (type,
assignee, date window, status) are shared with the export.
"""
import math
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from intake.core.config import settings
from intake.models.directory import ALL_TYPES
from intake.models.ticket import (
    ACTIVE_STATUSES,
    Ticket,
    TicketStatus,
    TicketType,
    join_urls,
    normalize_assignee,
    status_label,
    type_label,
)
from intake.schemas.dashboard import (
    AssigneePerformance,
    DashboardFilters,
    DashboardResult,
    GrandSummary,
    Pagination,
    SlaSummary,
    TicketSummary,
)
from intake.utils.datetime_utils import local_tz, now_local, to_display

UNASSIGNED_QUEUE_LIMIT = 20
RECENT_LIMIT = 5

Window = Tuple[Optional[datetime], Optional[datetime]]


def _midnight(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=local_tz())


def _first_of_month(day: date, months_back: int = 0) -> date:
    month_index = day.year * 12 + day.month - 1 - months_back
    return date(month_index // 12, month_index % 12 + 1, 1)


def date_window(key: Optional[str], now: datetime, start: Optional[date] = None, end: Optional[date] = None) -> Optional[Window]:
    """[start, end) bounds of a named creation-date window, or None for no filter."""
    today = now.astimezone(local_tz()).date()

    if key == "today":
        return _midnight(today), _midnight(today + timedelta(days=1))
    if key == "this_week":
        monday = today - timedelta(days=today.weekday())
        return _midnight(monday), _midnight(monday + timedelta(days=7))
    if key == "this_month":
        return _midnight(_first_of_month(today)), _midnight(_first_of_month(today, -1))
    if key == "last_month":
        return _midnight(_first_of_month(today, 1)), _midnight(_first_of_month(today))
    if key == "custom":
        if start is None and end is None:
            return None
        return (
            _midnight(start) if start else None,
            _midnight(end + timedelta(days=1)) if end else None,
        )
    return None


def in_window(ticket: Ticket, window: Window) -> bool:
    if ticket.created_at is None:
        return False
    lower, upper = window
    if lower is not None and ticket.created_at < lower:
        return False
    if upper is not None and ticket.created_at >= upper:
        return False
    return True


def apply_base_filters(tickets: Iterable[Ticket], filters: DashboardFilters, now: datetime) -> List[Ticket]:
    """Type, assignee and date window, in that order."""
    result = list(tickets)
    if filters.type:
        result = [t for t in result if t.type == filters.type]
    if filters.assignee:
        wanted = normalize_assignee(filters.assignee)
        result = [t for t in result if normalize_assignee(t.assigned_to) == wanted]
    window = date_window(filters.date_range, now, filters.start_date, filters.end_date)
    if window is not None:
        result = [t for t in result if in_window(t, window)]
    return result


def apply_status_filter(tickets: Iterable[Ticket], filters: DashboardFilters) -> List[Ticket]:
    if not filters.status:
        return list(tickets)
    return [t for t in tickets if t.status == filters.status]


def searchable_text(ticket: Ticket) -> str:
    # Everything the dashboard shows; the access key is never shown
    cells = [
        ticket.id,
        to_display(ticket.created_at),
        to_display(ticket.last_updated_at),
        ticket.type,
        type_label(ticket.type),
        ticket.topic,
        ticket.details,
        ticket.location,
        ticket.status,
        status_label(ticket.status),
        join_urls(ticket.attachment_urls),
        ticket.admin_comment_log,
        ticket.public_comment,
        ticket.assignee_label,
        join_urls(ticket.admin_attachment_urls),
    ]
    return "\n".join(cells).lower()


def restrict_to_types(tickets: Iterable[Ticket], allowed_types: Optional[Sequence[str]]) -> List[Ticket]:
    """None means unrestricted; otherwise keep only listed types unless "all" is listed."""
    if allowed_types is None:
        return list(tickets)
    allowed = {t.strip() for t in allowed_types if t and t.strip()}
    if any(t.lower() in (ALL_TYPES, "*") for t in allowed):
        return list(tickets)
    return [t for t in tickets if t.type in allowed]


def count_statuses(tickets: Iterable[Ticket]) -> Dict[str, int]:
    counts = {s.value: 0 for s in TicketStatus}
    for ticket in tickets:
        counts[ticket.status] = counts.get(ticket.status, 0) + 1
    return counts


class DashboardAggregator:
    def __init__(
        self,
        clock: Callable[[], datetime] = now_local,
        page_size: int = None,
        sla_new_hours: int = None,
        sla_in_progress_hours: int = None,
    ):
        self.clock = clock
        self.page_size = settings.PAGE_SIZE if page_size is None else page_size
        if self.page_size < 1:
            raise ValueError(f"page_size must be positive, got {self.page_size}")
        self.sla_new = timedelta(hours=settings.SLA_NEW_HOURS if sla_new_hours is None else sla_new_hours)
        self.sla_in_progress = timedelta(
            hours=settings.SLA_IN_PROGRESS_HOURS if sla_in_progress_hours is None else sla_in_progress_hours
        )

    def query(
        self,
        tickets: Sequence[Ticket],
        viewer_allowed_types: Optional[Sequence[str]],
        filters: Optional[DashboardFilters] = None,
        search_term: Optional[str] = None,
        page: Optional[int] = 1,
    ) -> DashboardResult:
        """
        Args:
            tickets: All tickets in storage (append) order
            viewer_allowed_types: Types the viewer may see; "all" disables the restriction
            filters: Type, assignee, date window and status filters
            search_term: Case-insensitive substring over displayed values
            page: Requested page, clamped into range
        """
        now = self.clock()
        filters = filters or DashboardFilters()
        visible = restrict_to_types(tickets, viewer_allowed_types)

        filtered = apply_base_filters(visible, filters, now)
        filtered_status_counts = count_statuses(filtered)
        filtered = apply_status_filter(filtered, filters)

        term = (search_term or "").strip().lower()
        if term:
            filtered = [t for t in filtered if term in searchable_text(t)]

        # Newest first is the reverse of append order
        filtered.reverse()

        total_records = len(filtered)
        total_pages = math.ceil(total_records / self.page_size)
        try:
            requested = int(page or 1)
        except (TypeError, ValueError):
            requested = 1
        current = max(1, min(requested, total_pages or 1))
        offset = (current - 1) * self.page_size

        return DashboardResult(
            summary=self._grand_summary(visible),
            filtered_status_counts=filtered_status_counts,
            sla=self._sla_summary(visible, now),
            assignee_performance=self._assignee_performance(visible),
            unassigned_queue=[TicketSummary.from_ticket(t) for t in self._unassigned_queue(visible)],
            recent=[TicketSummary.from_ticket(t) for t in list(reversed(visible))[:RECENT_LIMIT]],
            records=[TicketSummary.from_ticket(t) for t in filtered[offset:offset + self.page_size]],
            pagination=Pagination(
                page=current,
                page_size=self.page_size,
                total_pages=total_pages,
                total_records=total_records,
            ),
        )

    def _grand_summary(self, tickets: Sequence[Ticket]) -> GrandSummary:
        by_type = {t.value: 0 for t in TicketType}
        for ticket in tickets:
            by_type[ticket.type] = by_type.get(ticket.type, 0) + 1
        return GrandSummary(total=len(tickets), by_type=by_type, by_status=count_statuses(tickets))

    def _sla_summary(self, tickets: Sequence[Ticket], now: datetime) -> SlaSummary:
        sla = SlaSummary()
        for ticket in tickets:
            if ticket.created_at is None:
                continue
            age = now - ticket.created_at
            if ticket.status == TicketStatus.NEW.value and age > self.sla_new:
                sla.critical += 1
            elif ticket.status == TicketStatus.IN_PROGRESS.value and age > self.sla_in_progress:
                sla.warning += 1
        return sla

    def _assignee_performance(self, tickets: Sequence[Ticket]) -> List[AssigneePerformance]:
        groups: Dict[str, AssigneePerformance] = {}
        for ticket in tickets:
            name = ticket.assignee_label
            perf = groups.get(name)
            if perf is None:
                perf = groups[name] = AssigneePerformance(assignee=name)
            perf.total += 1
            if ticket.status in ACTIVE_STATUSES:
                perf.active += 1
            elif ticket.status == TicketStatus.COMPLETED.value:
                perf.completed += 1
            elif ticket.status == TicketStatus.CANCELLED.value:
                perf.cancelled += 1
        return sorted(groups.values(), key=lambda p: (p.active, p.total), reverse=True)

    def _unassigned_queue(self, tickets: Sequence[Ticket]) -> List[Ticket]:
        queue = []
        for ticket in tickets:
            if ticket.status in ACTIVE_STATUSES and not normalize_assignee(ticket.assigned_to):
                queue.append(ticket)
                if len(queue) == UNASSIGNED_QUEUE_LIMIT:
                    break
        return queue
