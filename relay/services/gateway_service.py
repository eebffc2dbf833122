"""Client for the WhatsApp gateway REST API (Wassenger)."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from relay.logging_config import get_logger
from relay.schemas.gateway import ChatMessage, Device, Label, TeamMember
from relay.schemas.webhook import INBOUND_MESSAGE_EVENT, ChatInfo
from relay.services.cache_service import LABELS_KEY, MEMBERS_KEY, CacheStore
from relay.services.result import (
    DOWNLOAD_FAILED,
    HTTP_ERROR,
    INVALID_RESPONSE,
    NETWORK_ERROR,
    NOT_FOUND,
    SEND_FAILED,
    Result,
)
from relay.services.state_service import ConversationStore

logger = get_logger("gateway_service")

DEFAULT_API_BASE_URL = "https://api.wassenger.com/v1"
SEND_ATTEMPTS = 3
MESSAGES_PAGE_LIMIT = 25
LABEL_NAME_MAX_LENGTH = 30
LABEL_COLOR = "blue"
LABEL_DESCRIPTION = "Chatbot label"
TYPING_DURATION_SECONDS = 10
WEBHOOK_NAME = "Chatbot"


def normalize_label_name(name: str) -> str:
    return name[:LABEL_NAME_MAX_LENGTH].strip()


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:500]


class GatewayClient:
    """Outbound calls to the messaging gateway.

    Every operation returns a ``Result``; network and HTTP failures are
    logged here and never raised to callers.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_API_BASE_URL,
        *,
        cache: CacheStore,
        conversations: ConversationStore,
        device_id: Optional[str] = None,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.cache = cache
        self.conversations = conversations
        self.device_id = device_id
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[dict] = None,
    ) -> Result[Any]:
        """Make request to the gateway API."""
        try:
            response = await self._client.request(
                method,
                self._url(path),
                headers=self._headers(),
                json=json,
                params=params,
            )
        except httpx.HTTPError as e:
            logger.error(f"Gateway API error: {method} {path}: {e}")
            return Result.failure(str(e) or type(e).__name__, NETWORK_ERROR)

        if not response.is_success:
            body = _response_body(response)
            details = {"status_code": response.status_code, "body": body}
            code = NOT_FOUND if response.status_code == 404 else HTTP_ERROR
            logger.error(
                f"Gateway API error: {method} {path} -> {response.status_code}",
                extra={"context": details},
            )
            return Result.failure(f"Gateway responded with {response.status_code}", code, details)

        if not response.content:
            return Result.success(None)
        try:
            return Result.success(response.json())
        except ValueError:
            logger.error(f"Gateway API returned non-JSON body: {method} {path}")
            return Result.failure("Invalid JSON response", INVALID_RESPONSE)

    # -------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------

    async def send_message(
        self,
        phone: str,
        message: Optional[str] = None,
        *,
        device_id: Optional[str] = None,
        media: Optional[dict] = None,
        **fields: Any,
    ) -> Result[dict]:
        """Send a message, trying up to ``SEND_ATTEMPTS`` times."""
        body: Dict[str, Any] = {"phone": phone, **fields}
        if device_id or self.device_id:
            body["device"] = device_id or self.device_id
        if message is not None:
            body["message"] = message
        if media:
            body["media"] = media
        body["enqueue"] = "never"

        last_failure: Optional[Result] = None
        for attempt in range(1, SEND_ATTEMPTS + 1):
            result = await self._request("POST", "messages", json=body)
            if result.ok:
                data = result.value or {}
                logger.info(
                    f"Message sent: phone={phone}, id={data.get('id')}, status={data.get('status')}",
                    extra={"context": {"attempt": attempt}},
                )
                return result
            last_failure = result
            logger.warning(
                f"Failed to send message: phone={phone}, attempt={attempt}/{SEND_ATTEMPTS}",
                extra={"context": {"error": result.error, "details": result.details, "transient": result.is_transient}},
            )

        logger.error(f"Message not sent after {SEND_ATTEMPTS} attempts: phone={phone}, message={message or '<no message>'}")
        return Result.failure(
            f"Failed to send message after {SEND_ATTEMPTS} attempts: {last_failure.error}",
            SEND_FAILED,
            last_failure.details,
        )

    async def send_typing_state(self, phone: str, device: Device, action: str = "typing") -> Result[Any]:
        """Show a presence indicator in the chat. Failures are only logged."""
        body = {"action": action, "duration": TYPING_DURATION_SECONDS, "chat": phone}
        result = await self._request("POST", f"chat/{device.id}/typing", json=body)
        if not result.ok:
            logger.warning(f"Failed to send typing state to {phone}: {result.error}")
        return result

    async def pull_chat_messages(self, chat_id: str, device: Device) -> Result[List[ChatMessage]]:
        """Fetch the latest chat messages and merge them into conversation state."""
        result = await self._request(
            "GET",
            f"chat/{device.id}/messages/",
            params={"chat": chat_id, "limit": MESSAGES_PAGE_LIMIT},
        )
        if not result.ok:
            logger.error(f"Failed to pull chat messages: chat={chat_id}, error={result.error}")
            return result

        try:
            messages = [ChatMessage.model_validate(item) for item in result.value or []]
        except (ValidationError, TypeError) as e:
            logger.error(f"Invalid chat messages payload for chat {chat_id}: {e}")
            return Result.failure(str(e), INVALID_RESPONSE)

        self.conversations.merge(chat_id, messages)
        return Result.success(messages)

    async def download_media(self, device: Device, media_id: str, destination: Path) -> Result[Path]:
        """Stream a chat attachment into ``destination``."""
        url = self._url(f"chat/{device.id}/files/{media_id}/download")
        try:
            async with self._client.stream("GET", url, headers=self._headers()) as response:
                if response.status_code != 200:
                    logger.warning(f"Media download failed: media={media_id}, status={response.status_code}")
                    return Result.failure(
                        f"Download responded with {response.status_code}",
                        DOWNLOAD_FAILED,
                        {"status_code": response.status_code},
                    )
                with destination.open("wb") as handle:
                    async for chunk in response.aiter_bytes():
                        if chunk:
                            handle.write(chunk)
        except (httpx.HTTPError, OSError) as e:
            logger.error(f"Media download error: media={media_id}, error={e}")
            return Result.failure(str(e) or type(e).__name__, DOWNLOAD_FAILED)

        return Result.success(destination)

    # -------------------------------------------------------------------
    # Team members and labels
    # -------------------------------------------------------------------

    async def pull_members(self, device: Device) -> Result[List[TeamMember]]:
        cached = self.cache.get(MEMBERS_KEY)
        if cached is not None:
            return Result.success(cached)

        result = await self._request("GET", f"devices/{device.id}/team")
        if not result.ok:
            return result
        try:
            members = [TeamMember.model_validate(item) for item in result.value or []]
        except (ValidationError, TypeError) as e:
            logger.error(f"Invalid team members payload: {e}")
            return Result.failure(str(e), INVALID_RESPONSE)

        self.cache.set(MEMBERS_KEY, members)
        return Result.success(members)

    async def pull_labels(self, device: Device, force: bool = False) -> Result[List[Label]]:
        if not force:
            cached = self.cache.get(LABELS_KEY)
            if cached is not None:
                return Result.success(cached)

        result = await self._request("GET", f"devices/{device.id}/labels")
        if not result.ok:
            return result
        try:
            labels = [Label.model_validate(item) for item in result.value or []]
        except (ValidationError, TypeError) as e:
            logger.error(f"Invalid labels payload: {e}")
            return Result.failure(str(e), INVALID_RESPONSE)

        self.cache.set(LABELS_KEY, labels)
        return Result.success(labels)

    async def create_labels(self, device: Device, required_labels: Sequence[str]) -> Result[List[str]]:
        """Create the required labels that do not exist yet. Returns created names."""
        known = await self.pull_labels(device)
        if not known.ok:
            logger.warning(f"Skipping label creation, labels unavailable: {known.error}")
            return Result.failure(known.error or "labels unavailable", known.error_code or "unknown", known.details)

        known_names = {label.name for label in known.value or []}
        missing: List[str] = []
        for label in required_labels:
            name = normalize_label_name(label)
            if name and name not in known_names and name not in missing:
                missing.append(name)

        created: List[str] = []
        for name in missing:
            logger.info(f"Creating label: {name}")
            body = {"name": name, "color": LABEL_COLOR, "description": LABEL_DESCRIPTION}
            result = await self._request("POST", f"devices/{device.id}/labels", json=body)
            if result.ok:
                created.append(name)
            else:
                logger.error(f"Failed to create label: {name}: {result.error}")

        if missing:
            refreshed = await self.pull_labels(device, force=True)
            if not refreshed.ok and created:
                labels = list(known.value or []) + [
                    Label(name=name, color=LABEL_COLOR, description=LABEL_DESCRIPTION) for name in created
                ]
                self.cache.set(LABELS_KEY, labels)

        return Result.success(created)

    # -------------------------------------------------------------------
    # Chats
    # -------------------------------------------------------------------

    async def update_chat_labels(self, chat: ChatInfo, device: Device, labels: Sequence[str]) -> Result[Any]:
        """Append labels to the chat's current label list."""
        new_labels = list(chat.labels or []) + list(labels)
        logger.info(f"Update chat labels: chat={chat.id}, labels={new_labels}")
        return await self._request("PATCH", f"chat/{device.id}/chats/{chat.id}/labels", json=new_labels)

    async def update_chat_metadata(self, chat: ChatInfo, device: Device, metadata: List[dict]) -> Result[Any]:
        logger.info(f"Update chat metadata: chat={chat.id}, keys={[item.get('key') for item in metadata]}")
        return await self._request("PATCH", f"chat/{device.id}/contacts/{chat.id}/metadata", json=metadata)

    async def assign_chat(self, chat_id: str, device: Device, member_id: str) -> Result[Any]:
        logger.info(f"Assign chat: chat={chat_id}, member={member_id}")
        return await self._request("PATCH", f"chat/{device.id}/chats/{chat_id}/owner", json={"agent": member_id})

    # -------------------------------------------------------------------
    # Device and webhooks
    # -------------------------------------------------------------------

    async def load_device(self) -> Result[Device]:
        """Select the configured device, or the first operative one."""
        result = await self._request("GET", "devices")
        if not result.ok:
            return result
        try:
            devices = [Device.model_validate(item) for item in result.value or []]
        except (ValidationError, TypeError) as e:
            logger.error(f"Invalid devices payload: {e}")
            return Result.failure(str(e), INVALID_RESPONSE)

        if self.device_id:
            device = next((d for d in devices if d.id == self.device_id), None)
        else:
            device = next((d for d in devices if d.is_operative), None)

        if device is None:
            return Result.failure("No matching device found", NOT_FOUND)
        return Result.success(device)

    async def register_webhook(self, callback_url: str, device: Device) -> Result[dict]:
        """Return the webhook for ``callback_url`` on this device, creating it if missing."""
        existing = await self._request("GET", "webhooks")
        if not existing.ok:
            return existing

        for webhook in existing.value or []:
            if webhook.get("url") == callback_url and webhook.get("device") == device.id:
                return Result.success(webhook)

        body = {
            "url": callback_url,
            "name": WEBHOOK_NAME,
            "events": [INBOUND_MESSAGE_EVENT],
            "device": device.id,
        }
        created = await self._request("POST", "webhooks", json=body)
        if created.ok:
            logger.info(f"Webhook registered: {callback_url}")
        return created
