from relay.schemas.gateway import ChatMessage, Device, Label, TeamMember
from relay.schemas.message import ErrorResponse, SendMessageRequest
from relay.schemas.webhook import INBOUND_MESSAGE_EVENT, ChatInfo, InboundMessage, WebhookEvent, WebhookResponse

__all__ = [
    "ChatInfo",
    "ChatMessage",
    "Device",
    "ErrorResponse",
    "INBOUND_MESSAGE_EVENT",
    "InboundMessage",
    "Label",
    "SendMessageRequest",
    "TeamMember",
    "WebhookEvent",
    "WebhookResponse",
]
