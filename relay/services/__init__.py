from relay.services.cache_service import CacheStore
from relay.services.dispatch_service import PipelineDispatcher
from relay.services.gateway_service import GatewayClient
from relay.services.pipeline_service import PipelineOutcome, ReplyPipeline
from relay.services.result import Result
from relay.services.state_service import ConversationStore
from relay.services.transcription_service import TranscriptionService

__all__ = [
    "CacheStore",
    "ConversationStore",
    "GatewayClient",
    "PipelineDispatcher",
    "PipelineOutcome",
    "ReplyPipeline",
    "Result",
    "TranscriptionService",
]
