"""Process-wide service instances shared by the HTTP routes."""

from dataclasses import dataclass
from typing import Optional

from relay.config import Settings, settings as default_settings
from relay.schemas.gateway import Device
from relay.services.cache_service import CacheStore
from relay.services.dispatch_service import PipelineDispatcher
from relay.services.gateway_service import GatewayClient
from relay.services.llm import LLMProvider, OpenAIProvider
from relay.services.pipeline_service import ReplyPipeline
from relay.services.state_service import ConversationStore
from relay.services.transcription_service import TranscriptionService


@dataclass
class Runtime:
    settings: Settings
    cache: CacheStore
    conversations: ConversationStore
    gateway: GatewayClient
    llm: LLMProvider
    transcriber: TranscriptionService
    pipeline: ReplyPipeline
    dispatcher: PipelineDispatcher
    device: Optional[Device] = None

    def set_device(self, device: Device) -> None:
        self.device = device
        self.pipeline.device = device

    async def aclose(self) -> None:
        await self.dispatcher.shutdown()
        await self.gateway.aclose()
        close = getattr(self.llm, "aclose", None)
        if close is not None:
            await close()


def build_runtime(config: Optional[Settings] = None) -> Runtime:
    config = config or default_settings
    cache = CacheStore(ttl_seconds=config.cache_ttl_seconds)
    conversations = ConversationStore(
        config.chat_history_limit,
        max_messages_per_chat=config.max_messages_per_chat,
        counter_window_seconds=config.max_messages_per_chat_counter_time,
    )
    gateway = GatewayClient(
        config.api_key,
        config.api_base_url,
        cache=cache,
        conversations=conversations,
        device_id=config.device_id,
        timeout=config.request_timeout_seconds,
    )
    llm = OpenAIProvider(
        config.openai_api_key,
        config.openai_model,
        base_url=config.openai_base_url,
        transcription_model=config.transcription_model,
    )
    transcriber = TranscriptionService(gateway, llm, config.temp_path)
    pipeline = ReplyPipeline(config, gateway, conversations, llm, transcriber)
    dispatcher = PipelineDispatcher(
        pipeline.process,
        max_concurrency=config.max_concurrent_tasks,
        max_pending=config.max_pending_tasks,
    )
    return Runtime(
        settings=config,
        cache=cache,
        conversations=conversations,
        gateway=gateway,
        llm=llm,
        transcriber=transcriber,
        pipeline=pipeline,
        dispatcher=dispatcher,
    )


_runtime: Optional[Runtime] = None


def get_runtime() -> Runtime:
    """FastAPI dependency returning the process runtime."""
    global _runtime
    if _runtime is None:
        _runtime = build_runtime()
    return _runtime
