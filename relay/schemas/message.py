from typing import Any, Optional

from pydantic import BaseModel


class SendMessageRequest(BaseModel):
    phone: Optional[str] = None
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    message: str
    error: Optional[Any] = None
