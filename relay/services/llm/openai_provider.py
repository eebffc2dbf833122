import json
from pathlib import Path
from typing import Any, List, Optional

import httpx

from relay.logging_config import get_logger
from relay.services.llm.base import LLMError, LLMProvider, LLMResponse, ToolCall

logger = get_logger("llm.openai")


def _parse_tool_calls(message: dict) -> List[ToolCall]:
    calls: List[ToolCall] = []
    for raw in message.get("tool_calls") or []:
        function = raw.get("function") or {}
        arguments = function.get("arguments") or "{}"
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except ValueError:
                logger.warning(f"Tool call with invalid JSON arguments: {function.get('name')}")
                arguments = {}
        if not isinstance(arguments, dict):
            arguments = {}
        calls.append(ToolCall(id=raw.get("id") or "", name=function.get("name") or "", arguments=arguments))
    return calls


class OpenAIProvider(LLMProvider):
    """OpenAI API provider."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4o",
        *,
        base_url: str = "https://api.openai.com/v1",
        transcription_model: str = "whisper-1",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.transcription_model = transcription_model
        self.base_url = f"{base_url.rstrip('/')}/chat/completions"
        self.audio_url = f"{base_url.rstrip('/')}/audio/transcriptions"
        self._client = http_client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    def _get_client(self, timeout: float) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=timeout)
        return self._client

    async def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        tools: Optional[List[dict]] = None,
        user: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        """Generate response from OpenAI."""

        model = model or self.default_model
        timeout = timeout_seconds if timeout_seconds is not None else 60.0

        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_completion_tokens": max_tokens,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        if user:
            payload["user"] = user
        logger.debug(f"OpenAI request: model={model}, messages_count={len(messages)}, tools={len(tools or [])}")

        try:
            response = await self._get_client(timeout).post(
                self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"OpenAI request failed: {e}")
            raise LLMError(f"OpenAI request failed: {e}") from e

        logger.debug(f"OpenAI response status: {response.status_code}")

        if response.status_code != 200:
            logger.error(f"OpenAI error: {response.text}")
            raise LLMError(f"OpenAI API error: {response.status_code} - {response.text}")

        try:
            data = response.json()
        except ValueError as e:
            raise LLMError("OpenAI returned invalid JSON") from e

        content = ""
        tool_calls: List[ToolCall] = []
        message: dict = {}
        if data.get("choices"):
            message = data["choices"][0].get("message") or {}
            content = message.get("content") or ""
            tool_calls = _parse_tool_calls(message)
        logger.debug(f"OpenAI content: {content[:100] if content else 'EMPTY'}, tool_calls={len(tool_calls)}")

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage"),
            tool_calls=tool_calls,
            message=message or None,
        )

    async def transcribe_file(
        self,
        path: Path,
        *,
        model: Optional[str] = None,
        mime_type: Optional[str] = None,
        language: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> str:
        """Transcribe an audio file using OpenAI speech-to-text."""
        model = model or self.transcription_model
        audio_bytes = path.read_bytes()
        if not audio_bytes:
            raise ValueError(f"audio file is empty: {path.name}")

        files = {"file": (path.name, audio_bytes, mime_type or "audio/mpeg")}
        data = {"model": model, "response_format": "text"}
        if language:
            data["language"] = language

        timeout = timeout_seconds if timeout_seconds is not None else 30.0
        try:
            response = await self._get_client(timeout).post(
                self.audio_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                files=files,
                data=data,
                timeout=timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"OpenAI transcription request failed: {e}")
            raise LLMError(f"OpenAI transcription request failed: {e}") from e

        logger.debug(f"OpenAI transcription status: {response.status_code}")
        if response.status_code != 200:
            logger.error(f"OpenAI transcription error: {response.text}")
            raise LLMError(f"OpenAI transcription error: {response.status_code} - {response.text}")

        transcript = (response.text or "").strip()
        if not transcript:
            logger.warning("OpenAI transcription returned empty text")
        return transcript
