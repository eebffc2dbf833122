from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional


class LLMError(Exception):
    """Raised when the AI provider cannot produce a response."""


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    message: Optional[dict] = None

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        tools: Optional[List[dict]] = None,
        user: Optional[str] = None,
    ) -> LLMResponse:
        """Generate response from LLM."""
        pass

    @abstractmethod
    async def transcribe_file(self, path: Path, *, model: Optional[str] = None, **options: Any) -> str:
        """Convert an audio file to plain text."""
        pass
