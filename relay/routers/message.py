from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from relay.logging_config import get_logger
from relay.runtime import Runtime, get_runtime
from relay.schemas.message import ErrorResponse, SendMessageRequest
from relay.services.result import Result

logger = get_logger("message")

router = APIRouter()

SAMPLE_MESSAGE = "Hello from Wassenger Chatbot!"


def _failure_response(result: Result, message: str) -> JSONResponse:
    details = result.details or {}
    status_code = details.get("status_code") or status.HTTP_500_INTERNAL_SERVER_ERROR
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message, error=details.get("body") or result.error).model_dump(),
    )


def _device_not_ready() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=ErrorResponse(message="WhatsApp device not loaded yet").model_dump(exclude_none=True),
    )


@router.post("/message")
async def send_message(request: SendMessageRequest, runtime: Runtime = Depends(get_runtime)):
    """Send a message through the gateway."""
    if not request.phone or not request.message:
        error = ErrorResponse(message="Invalid request payload")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error.model_dump(exclude_none=True))
    if runtime.device is None:
        return _device_not_ready()

    result = await runtime.gateway.send_message(request.phone, request.message, device_id=runtime.device.id)
    if not result.ok:
        return _failure_response(result, "Failed to send message")
    return result.value


@router.get("/sample")
async def send_sample(
    phone: Optional[str] = None,
    message: Optional[str] = None,
    runtime: Runtime = Depends(get_runtime),
):
    """Send a test message, by default to the device's own number."""
    if runtime.device is None:
        return _device_not_ready()

    result = await runtime.gateway.send_message(
        phone or runtime.device.phone,
        message or SAMPLE_MESSAGE,
        device_id=runtime.device.id,
    )
    if not result.ok:
        return _failure_response(result, "Failed to send sample message")
    return result.value
