from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from relay.schemas.gateway import MessageMedia

INBOUND_MESSAGE_EVENT = "message:in:new"


class ChatOwner(BaseModel):
    model_config = ConfigDict(extra="allow")

    agent: Optional[str] = None


class ChatContact(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None


class ChatInfo(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    type: Optional[str] = "chat"
    status: Optional[str] = None
    wa_status: Optional[str] = Field(default=None, alias="waStatus")
    from_number: Optional[str] = Field(default=None, alias="fromNumber")
    labels: List[str] = []
    owner: Optional[ChatOwner] = None
    contact: Optional[ChatContact] = None
    metadata: Optional[Any] = None


class InboundMessage(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Optional[str] = None
    type: Optional[str] = "text"
    from_number: str = Field(alias="fromNumber")
    body: Optional[str] = ""
    chat: ChatInfo
    media: Optional[MessageMedia] = None
    date: Optional[datetime] = None

    @property
    def is_audio(self) -> bool:
        return self.type in {"audio", "voice", "ptt"}


class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    event: str
    data: InboundMessage


class WebhookResponse(BaseModel):
    ok: bool = True
    message: Optional[str] = None
