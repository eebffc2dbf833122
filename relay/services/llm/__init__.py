from relay.services.llm.base import LLMError, LLMProvider, LLMResponse, ToolCall
from relay.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMError", "LLMProvider", "LLMResponse", "OpenAIProvider", "ToolCall"]
