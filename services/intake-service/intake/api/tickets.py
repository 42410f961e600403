from fastapi import APIRouter, Depends, Query, status
from intake.api.deps import get_identity, get_ticket_service, require_admin
from intake.schemas.ticket import (
    TicketCreate,
    TicketCreated,
    TicketResponse,
    TicketStatusView,
    TicketUpdate,
    TicketUpdateResult,
)
from intake.services.session import Identity
from intake.services.ticket_service import TicketService

router = APIRouter(prefix="/tickets", tags=["Tickets"])

@router.post("", response_model=TicketCreated, status_code=status.HTTP_201_CREATED)
def create_ticket(ticket_in: TicketCreate, service: TicketService = Depends(get_ticket_service)):
    """
    Submit a complaint, suggestion or issue report.
    Returns the ticket id and the access key needed to check its status later.
    """
    return service.create_ticket(
        ticket_type=ticket_in.type,
        topic=ticket_in.topic,
        details=ticket_in.details,
        location=ticket_in.location,
        attachments=[a.to_payload() for a in ticket_in.attachments],
    )


@router.get("/status", response_model=TicketStatusView)
def check_status(
    access_key: str = Query(..., min_length=1),
    service: TicketService = Depends(get_ticket_service),
):
    """
    Public status check by access key. Only the submitter-facing fields are returned.
    """
    return service.check_status(access_key)


@router.get("/{ticket_id}", response_model=TicketResponse)
def get_ticket(
    ticket_id: str,
    identity: Identity = Depends(get_identity),
    service: TicketService = Depends(get_ticket_service),
):
    return service.get_ticket(ticket_id, identity)


@router.patch("/{ticket_id}", response_model=TicketUpdateResult)
def update_ticket(
    ticket_id: str,
    update_data: TicketUpdate,
    identity: Identity = Depends(require_admin),
    service: TicketService = Depends(get_ticket_service),
):
    """
    Change status, add notes, reassign or attach resolution files.
    Each kind of change is recorded in the ticket's admin comment log.
    """
    return service.update_ticket(
        ticket_id=ticket_id,
        new_status=update_data.status,
        actor=identity.username,
        internal_comment=update_data.internal_comment,
        public_comment=update_data.public_comment,
        assigned_to=update_data.assigned_to,
        admin_attachments=[a.to_payload() for a in update_data.admin_attachments],
    )
