from pydantic import BaseModel, Field


class AuditLogResponse(BaseModel):
    timestamp: str = Field(..., description="When the action happened (ISO-8601).")
    username: str = Field(..., description="The actor performing the action.")
    action: str = Field(..., description="The action being performed.")
    details: str = Field("", description="Free-text details of the action.")
