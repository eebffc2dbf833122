"""Startup checks: credentials, device, labels, team lists and webhook."""

import asyncio
from pathlib import Path
from typing import List, Sequence

from relay.config import Settings
from relay.logging_config import get_logger
from relay.schemas.gateway import Device, TeamMember
from relay.services.gateway_service import GatewayClient

logger = get_logger("bootstrap_service")

MIN_API_KEY_LENGTH = 60
MIN_OPENAI_KEY_LENGTH = 45
TEAM_MEMBER_ID_LENGTH = 24
REQUIRED_PRODUCT = "io"
APP_URL = "https://app.wassenger.com"


class FatalStartupError(Exception):
    """Configuration or account state that prevents the service from running."""


def validate_credentials(settings: Settings) -> None:
    if not settings.api_key or len(settings.api_key) < MIN_API_KEY_LENGTH:
        raise FatalStartupError(f"Please sign up in Wassenger and obtain your API key: {APP_URL}/apikeys")
    if not settings.openai_api_key or len(settings.openai_api_key) < MIN_OPENAI_KEY_LENGTH:
        raise FatalStartupError(
            "Missing required OpenAI API key. Obtain it here: https://platform.openai.com/account/api-keys"
        )


async def load_device(gateway: GatewayClient) -> Device:
    """Load the device and check it can receive and answer messages."""
    result = await gateway.load_device()
    if not result.ok:
        status_code = (result.details or {}).get("status_code")
        if status_code == 403:
            raise FatalStartupError(f"Unauthorized Wassenger API key. Obtain your API key: {APP_URL}/developers/apikeys")
        if result.error_code == "not_found":
            raise FatalStartupError(f"No active WhatsApp numbers in your Wassenger account. Connect a number: {APP_URL}/create")
        raise FatalStartupError(f"Failed to load WhatsApp device: {result.error}")

    device = result.value
    if not device.is_operative:
        raise FatalStartupError(f"No active WhatsApp numbers in your Wassenger account. Connect a number: {APP_URL}/create")
    if device.session_status != "online":
        raise FatalStartupError(
            f"WhatsApp number ({device.alias}) is not online. Ensure it is connected: {APP_URL}/{device.id}/scan"
        )
    if device.product != REQUIRED_PRODUCT:
        raise FatalStartupError(
            f"WhatsApp number plan ({device.alias}) does not support inbound messages. "
            f"Upgrade here: {APP_URL}/{device.id}/plan?product=io"
        )
    return device


def validate_members(member_ids: Sequence[str], members: List[TeamMember]) -> None:
    """Every configured team id must be well-formed and belong to a known member."""
    known = {member.id for member in members}
    for member_id in member_ids:
        if not isinstance(member_id, str) or len(member_id) != TEAM_MEMBER_ID_LENGTH:
            raise FatalStartupError(f"Invalid Team User ID: {member_id}")
        if member_id not in known:
            raise FatalStartupError(f"Team user ID does not exist: {member_id}")


async def bootstrap(runtime) -> Device:
    """Prepare the runtime for traffic. Raises FatalStartupError on any blocking issue."""
    settings = runtime.settings
    gateway = runtime.gateway

    validate_credentials(settings)
    device = await load_device(gateway)

    Path(settings.temp_path).mkdir(parents=True, exist_ok=True)

    members, _ = await asyncio.gather(gateway.pull_members(device), gateway.pull_labels(device))
    created = await gateway.create_labels(device, settings.required_labels)
    if created.ok and created.value:
        logger.info(f"Created labels: {created.value}")

    team_ids = list(settings.team_whitelist) + list(settings.team_blacklist)
    if team_ids:
        if not members.ok:
            raise FatalStartupError(f"Unable to validate team members: {members.error}")
        validate_members(team_ids, members.value or [])

    runtime.set_device(device)
    logger.info(
        f"Using WhatsApp number: {device.phone} {device.alias or ''} (ID: {device.id})",
        extra={"context": {"device_id": device.id}},
    )

    if settings.production and not settings.webhook_url:
        raise FatalStartupError("Missing required environment variable: WEBHOOK_URL must be present in production mode")
    if settings.webhook_url:
        webhook = await gateway.register_webhook(settings.webhook_url, device)
        if not webhook.ok:
            raise FatalStartupError(f"Webhook endpoint missing. Create it here: {APP_URL}/{device.id}/webhooks")
        logger.info(f"Webhook is active: {(webhook.value or {}).get('url', settings.webhook_url)}")

    return device
