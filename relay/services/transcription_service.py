"""Voice note transcription: gateway download + speech-to-text."""

import re
from pathlib import Path
from typing import Optional, Union

from relay.logging_config import get_logger
from relay.schemas.gateway import ChatMessage, Device
from relay.schemas.webhook import InboundMessage
from relay.services.gateway_service import GatewayClient
from relay.services.llm.base import LLMProvider
from relay.services.result import INVALID_INPUT, MISSING_MEDIA, TRANSCRIPTION_FAILED, Result

logger = get_logger("transcription_service")

_SAFE_MEDIA_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class TranscriptionService:
    def __init__(self, gateway: GatewayClient, provider: LLMProvider, temp_path: Union[str, Path] = ".tmp"):
        self.gateway = gateway
        self.provider = provider
        self.temp_path = Path(temp_path)

    async def transcribe(self, message: Union[InboundMessage, ChatMessage], device: Device) -> Result[str]:
        """Download the message audio and return its transcript.

        The temporary file is removed on every path.
        """
        media_id: Optional[str] = message.media.id if message.media else None
        if not media_id:
            return Result.failure("Message has no media reference", MISSING_MEDIA)
        if not _SAFE_MEDIA_ID.match(media_id):
            return Result.failure(f"Invalid media id: {media_id}", INVALID_INPUT)

        self.temp_path.mkdir(parents=True, exist_ok=True)
        tmp_file = self.temp_path / f"{media_id}.mp3"
        try:
            downloaded = await self.gateway.download_media(device, media_id, tmp_file)
            if not downloaded.ok:
                return downloaded

            transcript = await self.provider.transcribe_file(tmp_file, mime_type=message.media.mime)
            if not transcript:
                return Result.failure("Empty transcription", TRANSCRIPTION_FAILED)
            logger.info(f"Audio transcribed: media={media_id}, chars={len(transcript)}")
            return Result.success(transcript)
        except Exception as e:
            logger.error(f"Failed to transcribe audio: media={media_id}, error={e}")
            return Result.failure(str(e), TRANSCRIPTION_FAILED)
        finally:
            try:
                tmp_file.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to delete temp file {tmp_file}: {e}")
