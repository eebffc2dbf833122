import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from conftest import make_device, make_settings
from relay.schemas.gateway import TeamMember
from relay.services.bootstrap_service import (
    FatalStartupError,
    bootstrap,
    load_device,
    validate_credentials,
    validate_members,
)
from relay.services.result import HTTP_ERROR, NOT_FOUND, Result

MEMBER_ID = "a" * 24


def make_runtime(device=None, webhook=None, **settings_overrides):
    gateway = Mock()
    gateway.load_device = AsyncMock(return_value=Result.success(device or make_device()))
    gateway.pull_members = AsyncMock(return_value=Result.success([TeamMember(id=MEMBER_ID, status="active")]))
    gateway.pull_labels = AsyncMock(return_value=Result.success([]))
    gateway.create_labels = AsyncMock(return_value=Result.success(["from-bot", "bot"]))
    gateway.register_webhook = AsyncMock(return_value=webhook or Result.success({"url": "https://bot.test/webhook"}))
    runtime = Mock()
    runtime.settings = make_settings(**settings_overrides)
    runtime.gateway = gateway
    return runtime


class TestValidateCredentials:
    def test_valid(self):
        validate_credentials(make_settings())

    def test_short_gateway_key(self):
        with pytest.raises(FatalStartupError, match="API key"):
            validate_credentials(make_settings(api_key="short"))

    def test_missing_openai_key(self):
        with pytest.raises(FatalStartupError, match="OpenAI"):
            validate_credentials(make_settings(openai_api_key=""))


class TestLoadDevice:
    def _gateway(self, result):
        gateway = Mock()
        gateway.load_device = AsyncMock(return_value=result)
        return gateway

    def test_unauthorized(self):
        result = Result.failure("forbidden", HTTP_ERROR, {"status_code": 403})
        with pytest.raises(FatalStartupError, match="Unauthorized"):
            asyncio.run(load_device(self._gateway(result)))

    def test_no_device(self):
        with pytest.raises(FatalStartupError, match="No active WhatsApp numbers"):
            asyncio.run(load_device(self._gateway(Result.failure("none", NOT_FOUND))))

    def test_not_operative(self):
        device = make_device(status="pending")
        with pytest.raises(FatalStartupError, match="No active"):
            asyncio.run(load_device(self._gateway(Result.success(device))))

    def test_offline(self):
        device = make_device(session={"status": "offline"})
        with pytest.raises(FatalStartupError, match="not online"):
            asyncio.run(load_device(self._gateway(Result.success(device))))

    def test_wrong_product(self):
        device = make_device(billing={"subscription": {"product": "chat"}})
        with pytest.raises(FatalStartupError, match="does not support inbound"):
            asyncio.run(load_device(self._gateway(Result.success(device))))

    def test_ready_device(self):
        device = asyncio.run(load_device(self._gateway(Result.success(make_device()))))
        assert device.id == "dev-1"


class TestValidateMembers:
    def test_malformed_id(self):
        with pytest.raises(FatalStartupError, match="Invalid Team User ID"):
            validate_members(["short"], [])

    def test_unknown_id(self):
        with pytest.raises(FatalStartupError, match="does not exist"):
            validate_members(["c" * 24], [TeamMember(id=MEMBER_ID)])

    def test_known_id(self):
        validate_members([MEMBER_ID], [TeamMember(id=MEMBER_ID)])


class TestBootstrap:
    def test_full_bootstrap(self, tmp_path):
        temp = tmp_path / "audio"
        runtime = make_runtime(temp_path=str(temp), team_whitelist=[MEMBER_ID], webhook_url="https://bot.test/webhook")

        device = asyncio.run(bootstrap(runtime))

        assert device.id == "dev-1"
        assert temp.is_dir()
        runtime.set_device.assert_called_once_with(device)
        runtime.gateway.create_labels.assert_awaited_once_with(device, ["from-bot", "bot"])
        runtime.gateway.register_webhook.assert_awaited_once_with("https://bot.test/webhook", device)

    def test_webhook_skipped_without_url(self, tmp_path):
        runtime = make_runtime(temp_path=str(tmp_path))
        asyncio.run(bootstrap(runtime))
        runtime.gateway.register_webhook.assert_not_awaited()

    def test_production_requires_webhook_url(self, tmp_path):
        runtime = make_runtime(temp_path=str(tmp_path), production=True)
        with pytest.raises(FatalStartupError, match="WEBHOOK_URL"):
            asyncio.run(bootstrap(runtime))

    def test_webhook_failure_is_fatal(self, tmp_path):
        runtime = make_runtime(
            temp_path=str(tmp_path),
            webhook_url="https://bot.test/webhook",
            webhook=Result.failure("nope", HTTP_ERROR),
        )
        with pytest.raises(FatalStartupError, match="Webhook endpoint missing"):
            asyncio.run(bootstrap(runtime))

    def test_invalid_team_list(self, tmp_path):
        runtime = make_runtime(temp_path=str(tmp_path), team_blacklist=["d" * 24])
        with pytest.raises(FatalStartupError, match="does not exist"):
            asyncio.run(bootstrap(runtime))

    def test_label_creation_failure_not_fatal(self, tmp_path):
        runtime = make_runtime(temp_path=str(tmp_path))
        runtime.gateway.create_labels.return_value = Result.failure("down", HTTP_ERROR)
        asyncio.run(bootstrap(runtime))
        runtime.set_device.assert_called_once()
