"""Inbound message processing: eligibility, context, AI reply, side effects."""

import json
import random
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence
from uuid import uuid4

from relay.config import Settings
from relay.logging_config import chat_logger
from relay.schemas.gateway import ChatMessage, Device, TeamMember
from relay.schemas.webhook import InboundMessage, WebhookEvent
from relay.services.gateway_service import GatewayClient
from relay.services.llm.base import LLMError, LLMProvider
from relay.services.result import AI_ERROR, Result
from relay.services.state_service import ConversationStore
from relay.services.tool_service import list_openai_tools, run_tool
from relay.services.transcription_service import TranscriptionService

HUMAN_REQUEST_PATTERN = re.compile(r"^(human|person|help|stop)$", re.IGNORECASE)
HUMAN_PREFIX_PATTERN = re.compile(r"^human\b", re.IGNORECASE)
MAX_TOOL_ROUNDS = 3
MEMBER_ONLINE_WINDOW = timedelta(minutes=30)

# Pipeline outcomes
REPLIED = "replied"
SKIPPED = "skipped"
ASSIGNED = "assigned"
ESCALATED = "escalated"
LIMITED = "limited"
FAILED = "failed"


@dataclass
class PipelineOutcome:
    action: str
    reason: Optional[str] = None
    reply: Optional[str] = None
    member_id: Optional[str] = None


def normalize_number(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def is_human_request(text: str) -> bool:
    text = (text or "").strip()
    return bool(HUMAN_REQUEST_PATTERN.match(text) or HUMAN_PREFIX_PATTERN.match(text))


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ReplyPipeline:
    def __init__(
        self,
        settings: Settings,
        gateway: GatewayClient,
        conversations: ConversationStore,
        llm: LLMProvider,
        transcriber: TranscriptionService,
        *,
        device: Optional[Device] = None,
        chooser: Callable[[Sequence[TeamMember]], TeamMember] = random.choice,
    ):
        self.settings = settings
        self.gateway = gateway
        self.conversations = conversations
        self.llm = llm
        self.transcriber = transcriber
        self.device = device
        self._choose = chooser

    async def process(self, event: WebhookEvent) -> PipelineOutcome:
        """Run the full reply flow for one inbound message."""
        data = event.data
        chat = data.chat
        log = chat_logger("pipeline", chat.id, phone=data.from_number)
        device = self.device
        if device is None:
            log.error("Device not loaded, dropping message")
            return PipelineOutcome(FAILED, reason="device_not_loaded")

        # 1. Eligibility
        reason = self.skip_reason(data)
        if reason:
            log.info(f"Skip message: {reason}")
            return PipelineOutcome(SKIPPED, reason=reason)

        if not self.conversations.has_quota(chat.id):
            count = self.conversations.count_message(chat.id)
            if count == self.settings.max_messages_per_chat + 1:
                await self._reply(data, self.settings.chat_limit_reached_message)
            log.info(f"Chat message quota exceeded ({count})")
            return PipelineOutcome(LIMITED, reason="quota_exceeded")
        self.conversations.count_message(chat.id)

        # 2. Conversation context
        self.conversations.add(chat.id, self._to_chat_message(data))
        await self.gateway.pull_chat_messages(chat.id, device)

        # 3. Audio
        body = (data.body or "").strip()
        if data.is_audio:
            transcript = await self._transcribe(data)
            if not transcript:
                message = self.settings.no_audio_accepted_message
                await self._reply(data, message)
                return PipelineOutcome(REPLIED, reason="audio_not_supported", reply=message)
            body = transcript.strip()

        body = body[: self.settings.max_input_characters]
        log.info(f"New inbound message: type={data.type}, body={body or '<empty message>'}")

        if not body:
            message = self.settings.default_message
            await self._reply(data, message)
            return PipelineOutcome(REPLIED, reason="empty_message", reply=message)

        if is_human_request(body):
            member = await self.assign_chat_to_member(data, force=True)
            if member is None:
                message = self.settings.assignment_unavailable_message
                await self._reply(data, message)
                return PipelineOutcome(ESCALATED, reason="no_member_available", reply=message)
            message = self.settings.chat_assigned_message
            await self._reply(data, message)
            return PipelineOutcome(ASSIGNED, reason="human_request", reply=message, member_id=member.id)

        # 4. Reply generation with tools
        await self.gateway.send_typing_state(data.from_number, device)
        generated = await self.generate_reply(data, body)
        if not generated.ok or not generated.value:
            log.warning(f"Reply generation failed: {generated.error or 'empty reply'}")
            message = self.settings.unknown_command_message
            await self._reply(data, message)
            member = None
            if self.settings.enable_member_chat_assignment:
                member = await self.assign_chat_to_member(data)
            return PipelineOutcome(
                ESCALATED,
                reason=generated.error_code or "empty_reply",
                reply=message,
                member_id=member.id if member else None,
            )

        # 5. Send
        sent = await self._reply(data, generated.value)
        if not sent.ok:
            log.error(f"Reply dropped: {sent.error}")
            return PipelineOutcome(FAILED, reason=sent.error_code, reply=generated.value)

        # 6. Bot chat side effects
        await self.apply_bot_chat_side_effects(data)
        return PipelineOutcome(REPLIED, reply=generated.value)

    # -------------------------------------------------------------------
    # Eligibility
    # -------------------------------------------------------------------

    def skip_reason(self, data: InboundMessage) -> Optional[str]:
        """Return why the bot must not handle this chat, or None."""
        chat = data.chat
        if chat.owner and chat.owner.agent:
            return "assigned_to_agent"
        if chat.type and chat.type != "chat":
            return "not_direct_chat"

        skip_labels = set(self.settings.skip_chat_with_labels)
        if skip_labels and skip_labels.intersection(chat.labels or []):
            return "excluded_label"

        number = normalize_number(data.from_number or chat.from_number)
        whitelist = {normalize_number(n) for n in self.settings.numbers_whitelist}
        if whitelist and number not in whitelist:
            return "not_whitelisted"
        blacklist = {normalize_number(n) for n in self.settings.numbers_blacklist}
        if number in blacklist:
            return "blacklisted"

        if "banned" in (chat.status, chat.wa_status):
            return "banned"
        if chat.contact and chat.contact.status == "blocked":
            return "blocked"
        if self.settings.skip_archived_chats and "archived" in (chat.status, chat.wa_status):
            return "archived"
        return None

    def is_member_eligible(self, member: TeamMember) -> bool:
        if member.status != "active":
            return False
        if self.settings.team_blacklist and member.id in self.settings.team_blacklist:
            return False
        if self.settings.team_whitelist and member.id not in self.settings.team_whitelist:
            return False
        if self.settings.assign_only_to_online_members:
            mode = member.availability.mode if member.availability else None
            last_seen = member.last_seen_at
            if mode != "auto" or last_seen is None:
                return False
            if last_seen.tzinfo is None:
                last_seen = last_seen.replace(tzinfo=timezone.utc)
            if datetime.now(timezone.utc) - last_seen > MEMBER_ONLINE_WINDOW:
                return False
        if member.role in self.settings.skip_team_roles_from_assignment:
            return False
        return True

    # -------------------------------------------------------------------
    # Reply generation
    # -------------------------------------------------------------------

    def build_messages(self, data: InboundMessage, body: str) -> List[dict]:
        limit = self.settings.max_input_characters
        messages = [{"role": "system", "content": self.settings.bot_instructions}]
        history = self.conversations.history(
            data.chat.id,
            limit=self.settings.chat_history_limit,
            exclude_id=data.id,
        )
        for message in history:
            text = (message.body or "").strip()
            if not text:
                continue
            role = "assistant" if message.is_outbound else "user"
            messages.append({"role": role, "content": text[:limit]})
        messages.append({"role": "user", "content": body})
        return messages

    async def generate_reply(self, data: InboundMessage, body: str) -> Result[str]:
        """Ask the model for a reply, running requested tools in between."""
        messages = self.build_messages(data, body)
        tools = list_openai_tools()
        user = f"{self.device.id}_{data.chat.id}" if self.device else data.chat.id

        for round_number in range(MAX_TOOL_ROUNDS + 1):
            try:
                response = await self.llm.generate(
                    messages,
                    model=self.settings.openai_model,
                    temperature=self.settings.temperature,
                    max_tokens=self.settings.max_output_tokens,
                    tools=tools if round_number < MAX_TOOL_ROUNDS else None,
                    user=user,
                )
            except LLMError as e:
                return Result.failure(str(e), AI_ERROR)

            if not response.wants_tools:
                return Result.success(response.content.strip())

            messages.append(response.message or self._assistant_tool_message(response.content, response.tool_calls))
            for call in response.tool_calls:
                output = await run_tool(call.name, call.arguments)
                messages.append({"role": "tool", "tool_call_id": call.id, "content": output})

        return Result.failure("Tool call rounds exhausted", AI_ERROR)

    @staticmethod
    def _assistant_tool_message(content: str, tool_calls) -> dict:
        return {
            "role": "assistant",
            "content": content or None,
            "tool_calls": [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments or {}, ensure_ascii=False)},
                }
                for call in tool_calls
            ],
        }

    async def _transcribe(self, data: InboundMessage) -> Optional[str]:
        if not self.settings.audio_input:
            return None
        duration = data.media.duration if data.media else None
        if duration is not None and duration > self.settings.max_audio_duration:
            return None
        result = await self.transcriber.transcribe(data, self.device)
        return result.value if result.ok else None

    # -------------------------------------------------------------------
    # Side effects
    # -------------------------------------------------------------------

    async def _reply(self, data: InboundMessage, message: str) -> Result[dict]:
        fields = {"quote": data.id} if data.id else {}
        return await self.gateway.send_message(
            data.from_number,
            message,
            device_id=self.device.id if self.device else None,
            **fields,
        )

    async def apply_bot_chat_side_effects(self, data: InboundMessage) -> None:
        """Label and tag a chat the first time the bot replies in it.

        The chat is only marked once every update succeeded, so a failed
        update is retried on the next reply.
        """
        chat = data.chat
        if self.conversations.is_bot_chat(chat.id):
            return
        log = chat_logger("pipeline", chat.id)
        labels = [label for label in self.settings.set_labels_on_bot_chats if label not in (chat.labels or [])]
        if labels:
            updated = await self.gateway.update_chat_labels(chat, self.device, labels)
            if not updated.ok:
                log.warning(f"Failed to label bot chat: {updated.error}")
                return
        if self.settings.set_metadata_on_bot_chats:
            metadata = [{"key": key, "value": _now_iso()} for key in self.settings.set_metadata_on_bot_chats]
            updated = await self.gateway.update_chat_metadata(chat, self.device, metadata)
            if not updated.ok:
                log.warning(f"Failed to set bot chat metadata: {updated.error}")
                return
        self.conversations.mark_bot_chat(chat.id)

    async def assign_chat_to_member(self, data: InboundMessage, force: bool = False) -> Optional[TeamMember]:
        """Hand the chat to a random eligible team member."""
        if not self.settings.enable_member_chat_assignment and not force:
            return None
        chat = data.chat
        log = chat_logger("pipeline", chat.id)

        members = await self.gateway.pull_members(self.device)
        if not members.ok:
            log.error(f"Unable to assign chat, members unavailable: {members.error}")
            return None

        eligible = [member for member in members.unwrap_or([]) if self.is_member_eligible(member)]
        if not eligible:
            log.warning("Unable to assign chat: no eligible team members")
            return None

        target = self._choose(eligible)
        assigned = await self.gateway.assign_chat(chat.id, self.device, target.id)
        if not assigned.ok:
            log.error(f"Failed to assign chat to {target.id}: {assigned.error}")
            return None
        log.info(f"Chat assigned to member {target.id}")

        await self._apply_assignment_side_effects(data)
        return target

    async def _apply_assignment_side_effects(self, data: InboundMessage) -> None:
        chat = data.chat
        if self.settings.set_labels_on_user_assignment:
            current = list(chat.labels or [])
            if self.settings.remove_labels_after_assignment:
                current = [label for label in current if label not in self.settings.set_labels_on_bot_chats]
            new_labels = [label for label in self.settings.set_labels_on_user_assignment if label not in current]
            if new_labels or len(current) != len(chat.labels or []):
                await self.gateway.update_chat_labels(chat.model_copy(update={"labels": current}), self.device, new_labels)
        if self.settings.set_metadata_on_assignment:
            metadata = [{"key": key, "value": _now_iso()} for key in self.settings.set_metadata_on_assignment]
            await self.gateway.update_chat_metadata(chat, self.device, metadata)

    @staticmethod
    def _to_chat_message(data: InboundMessage) -> ChatMessage:
        return ChatMessage(
            id=data.id or f"inbound-{uuid4().hex}",
            chat=data.chat.id,
            type=data.type,
            flow="inbound",
            body=data.body,
            media=data.media,
            date=data.date or datetime.now(timezone.utc),
        )
