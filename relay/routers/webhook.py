from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from relay.logging_config import get_logger
from relay.runtime import Runtime, get_runtime
from relay.schemas.webhook import INBOUND_MESSAGE_EVENT, WebhookEvent, WebhookResponse

logger = get_logger("webhook")

router = APIRouter()

MSG_INVALID_PAYLOAD = "Invalid webhook payload"
MSG_IGNORED_EVENT = "Ignoring non-message event"


def _invalid_payload() -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"message": MSG_INVALID_PAYLOAD})


@router.post("/webhook", response_model=WebhookResponse, response_model_exclude_none=True)
async def handle_webhook(request: Request, runtime: Runtime = Depends(get_runtime)):
    """Acknowledge a gateway event and process inbound messages in the background."""
    try:
        body = await request.json()
    except ValueError:
        return _invalid_payload()

    if not isinstance(body, dict) or not body.get("event") or not isinstance(body.get("data"), dict):
        return _invalid_payload()

    if body["event"] != INBOUND_MESSAGE_EVENT:
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content={"message": MSG_IGNORED_EVENT})

    try:
        event = WebhookEvent.model_validate(body)
    except ValidationError as e:
        logger.warning(f"Webhook payload rejected: {e.error_count()} validation errors")
        return _invalid_payload()

    data = event.data
    logger.info(
        f"Webhook received: event={event.id}, chat={data.chat.id}",
        extra={"context": {"phone": data.from_number, "type": data.type}},
    )
    if not runtime.dispatcher.submit(event):
        logger.error(
            f"Failed to process inbound message: event={event.id}",
            extra={"context": {"phone": data.from_number, "body": data.body}},
        )
    return WebhookResponse(ok=True)
