# consentlink/schemas/connection_message.py
from datetime import datetime

from pydantic import BaseModel, Field

from consentlink.services.connection_message_service import MAX_MESSAGE_LENGTH


class MessageCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)


class ConnectionMessageResponse(BaseModel):
    id: str
    connection_id: str
    sender_user_id: str | None = None
    sender_tenant_id: str | None = None
    sender_profile_id: str | None = None
    body: str
    created_at: datetime

    class Config:
        from_attributes = True
