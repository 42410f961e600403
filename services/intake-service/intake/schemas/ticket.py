import base64
import binascii
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from intake.core.errors import ValidationError
from intake.models.ticket import TicketType, TicketStatus, Ticket, type_label, status_label
from intake.services.blob_store import FilePayload

class AttachmentIn(BaseModel):
    filename: str = Field(..., description="Original file name.")
    mime_type: str = Field("application/octet-stream", description="MIME type of the file.")
    content_base64: str = Field(..., description="File content, base64 encoded.")

    def to_payload(self) -> FilePayload:
        try:
            data = base64.b64decode(self.content_base64, validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError(f"Attachment '{self.filename}' is not valid base64")
        return FilePayload(self.filename, data, self.mime_type)


class TicketCreate(BaseModel):
    type: TicketType = Field(..., description="Complaint, Suggestion or IssueReport.")
    topic: str = Field(..., description="Short subject of the submission.")
    details: str = Field(..., description="Full description.")
    location: str = Field("", description="Where the matter happened.")
    attachments: List[AttachmentIn] = Field(default_factory=list, description="Files submitted with the ticket.")

class TicketCreated(BaseModel):
    ticket_id: str
    access_key: str = Field(..., description="Secret the submitter uses to check the ticket status.")
    attachment_urls: List[str] = []


class TicketUpdate(BaseModel):
    status: TicketStatus = Field(..., description="New status; may equal the current one.")
    internal_comment: Optional[str] = Field(None, description="Admin-only note appended to the comment log.")
    public_comment: Optional[str] = Field(None, description="Resolution note visible to the submitter.")
    assigned_to: Optional[str] = Field(None, description="Team name; empty or 'Unassigned' clears it. Omit to keep.")
    admin_attachments: List[AttachmentIn] = Field(default_factory=list, description="Resolution files.")

class TicketUpdateResult(BaseModel):
    ticket_id: str
    comment_log: str = Field(..., description="Full admin comment log after the update.")


class TicketStatusView(BaseModel):
    """What an anonymous access-key holder may see."""
    ticket_id: str
    last_updated: str
    type: str
    status: str
    public_comment: str
    admin_attachments: List[str] = []

    @classmethod
    def from_ticket(cls, ticket: Ticket, last_updated: str) -> "TicketStatusView":
        return cls(
            ticket_id=ticket.id,
            last_updated=last_updated,
            type=type_label(ticket.type),
            status=status_label(ticket.status),
            public_comment=ticket.public_comment,
            admin_attachments=ticket.admin_attachment_urls,
        )


class TicketResponse(BaseModel):
    id: str
    created_at: Optional[datetime]
    last_updated_at: Optional[datetime]
    type: str
    topic: str
    details: str
    location: str
    status: str
    attachment_urls: List[str] = []
    admin_comment_log: str = ""
    public_comment: str = ""
    assigned_to: str = ""
    admin_attachment_urls: List[str] = []

    @classmethod
    def from_ticket(cls, ticket: Ticket) -> "TicketResponse":
        return cls(
            id=ticket.id,
            created_at=ticket.created_at,
            last_updated_at=ticket.last_updated_at,
            type=ticket.type,
            topic=ticket.topic,
            details=ticket.details,
            location=ticket.location,
            status=ticket.status,
            attachment_urls=ticket.attachment_urls,
            admin_comment_log=ticket.admin_comment_log,
            public_comment=ticket.public_comment,
            assigned_to=ticket.assigned_to,
            admin_attachment_urls=ticket.admin_attachment_urls,
        )
