from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from intake.api.deps import get_dashboard, get_identity, get_ticket_service, require_admin
from intake.schemas.dashboard import DashboardFilters, DashboardResult, DateRangeKey
from intake.services.dashboard import DashboardAggregator
from intake.services.export import export_rows, to_csv
from intake.services.session import Identity
from intake.services.ticket_service import TicketService

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])

def dashboard_filters(
    type: Optional[str] = None,
    assignee: Optional[str] = None,
    status: Optional[str] = None,
    date_range: Optional[DateRangeKey] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> DashboardFilters:
    return DashboardFilters(
        type=type,
        assignee=assignee,
        status=status,
        date_range=date_range,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("", response_model=DashboardResult)
def get_dashboard_view(
    filters: DashboardFilters = Depends(dashboard_filters),
    search: Optional[str] = None,
    page: int = Query(1),
    identity: Identity = Depends(get_identity),
    service: TicketService = Depends(get_ticket_service),
    aggregator: DashboardAggregator = Depends(get_dashboard),
):
    """
    Summaries, SLA breaches, assignee performance and one page of tickets.
    Only the ticket types the caller may view are counted or listed.
    """
    return aggregator.query(
        service.list_tickets(),
        viewer_allowed_types=identity.allowed_types,
        filters=filters,
        search_term=search,
        page=page,
    )


@router.get("/export")
def export_tickets(
    filters: DashboardFilters = Depends(dashboard_filters),
    identity: Identity = Depends(require_admin),
    service: TicketService = Depends(get_ticket_service),
):
    """
    CSV of every ticket matching the filters, without paging or search.
    """
    rows = export_rows(service.list_tickets(), filters, clock=service.clock)
    return Response(
        content=to_csv(rows),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="tickets.csv"'},
    )
