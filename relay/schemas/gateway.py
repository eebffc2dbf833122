from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class GatewayModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class DeviceSession(GatewayModel):
    status: Optional[str] = None


class DeviceSubscription(GatewayModel):
    product: Optional[str] = None


class DeviceBilling(GatewayModel):
    subscription: Optional[DeviceSubscription] = None


class Device(GatewayModel):
    id: str
    phone: Optional[str] = None
    alias: Optional[str] = None
    status: Optional[str] = None
    session: Optional[DeviceSession] = None
    billing: Optional[DeviceBilling] = None

    @property
    def is_operative(self) -> bool:
        return self.status == "operative"

    @property
    def session_status(self) -> Optional[str]:
        return self.session.status if self.session else None

    @property
    def product(self) -> Optional[str]:
        if self.billing and self.billing.subscription:
            return self.billing.subscription.product
        return None


class MemberAvailability(GatewayModel):
    mode: Optional[str] = None


class TeamMember(GatewayModel):
    id: str
    display_name: Optional[str] = Field(default=None, alias="displayName")
    status: Optional[str] = None
    role: Optional[str] = None
    availability: Optional[MemberAvailability] = None
    last_seen_at: Optional[datetime] = Field(default=None, alias="lastSeenAt")


class Label(GatewayModel):
    name: str
    color: Optional[str] = None
    description: Optional[str] = None


class MessageMedia(GatewayModel):
    id: Optional[str] = None
    type: Optional[str] = None
    mime: Optional[str] = None
    meta: Optional[dict[str, Any]] = None

    @property
    def duration(self) -> Optional[float]:
        value = (self.meta or {}).get("duration")
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None


class ChatMessage(GatewayModel):
    id: str
    chat: Optional[Any] = None
    type: Optional[str] = "text"
    flow: Optional[str] = None
    from_me: Optional[bool] = Field(default=None, alias="fromMe")
    body: Optional[str] = None
    media: Optional[MessageMedia] = None
    date: Optional[datetime] = None

    @property
    def is_outbound(self) -> bool:
        return self.flow == "outbound" or bool(self.from_me)
