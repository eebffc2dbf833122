import asyncio
import json

import httpx
import pytest

from relay.services.llm import LLMError, OpenAIProvider


def make_provider(handler) -> OpenAIProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAIProvider("sk-test", "gpt-4o", base_url="https://ai.test/v1", http_client=client)


def completion(message: dict) -> dict:
    return {"model": "gpt-4o", "choices": [{"message": message}], "usage": {"total_tokens": 12}}


class TestGenerate:
    def test_text_reply(self):
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["auth"] = request.headers["Authorization"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion({"role": "assistant", "content": "Hello!"}))

        provider = make_provider(handler)
        response = asyncio.run(
            provider.generate([{"role": "user", "content": "Hi"}], temperature=0.2, max_tokens=50, user="dev_chat")
        )

        assert response.content == "Hello!"
        assert response.wants_tools is False
        assert captured["url"] == "https://ai.test/v1/chat/completions"
        assert captured["auth"] == "Bearer sk-test"
        assert captured["body"]["max_completion_tokens"] == 50
        assert captured["body"]["user"] == "dev_chat"
        assert "tools" not in captured["body"]

    def test_tool_calls_parsed(self):
        message = {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "verifyMeetingAvailability", "arguments": '{"date": "2024-05-06T10:00:00"}'},
                },
                {"id": "call_2", "type": "function", "function": {"name": "getPlanPrices", "arguments": "not json"}},
            ],
        }
        tools = [{"type": "function", "function": {"name": "getPlanPrices"}}]

        def handler(request):
            body = json.loads(request.content)
            assert body["tools"] == tools
            assert body["tool_choice"] == "auto"
            return httpx.Response(200, json=completion(message))

        response = asyncio.run(make_provider(handler).generate([], tools=tools))

        assert response.wants_tools is True
        assert response.tool_calls[0].name == "verifyMeetingAvailability"
        assert response.tool_calls[0].arguments == {"date": "2024-05-06T10:00:00"}
        assert response.tool_calls[1].arguments == {}
        assert response.message == message

    def test_non_200_raises(self):
        provider = make_provider(lambda request: httpx.Response(429, json={"error": "rate limited"}))
        with pytest.raises(LLMError):
            asyncio.run(provider.generate([]))

    def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(LLMError):
            asyncio.run(make_provider(handler).generate([]))


class TestTranscribeFile:
    def test_transcribe(self, tmp_path):
        audio = tmp_path / "abc.mp3"
        audio.write_bytes(b"ID3data")
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["body"] = request.content
            return httpx.Response(200, text=" Hello world \n")

        transcript = asyncio.run(make_provider(handler).transcribe_file(audio, mime_type="audio/ogg"))

        assert transcript == "Hello world"
        assert captured["url"] == "https://ai.test/v1/audio/transcriptions"
        assert b"whisper-1" in captured["body"]
        assert b"ID3data" in captured["body"]

    def test_empty_file_rejected(self, tmp_path):
        audio = tmp_path / "empty.mp3"
        audio.write_bytes(b"")
        with pytest.raises(ValueError):
            asyncio.run(make_provider(lambda request: httpx.Response(200)).transcribe_file(audio))

    def test_error_status_raises(self, tmp_path):
        audio = tmp_path / "abc.mp3"
        audio.write_bytes(b"data")
        with pytest.raises(LLMError):
            asyncio.run(make_provider(lambda request: httpx.Response(500)).transcribe_file(audio))
