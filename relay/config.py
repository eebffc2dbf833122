from typing import List, Optional

from pydantic_settings import BaseSettings

BOT_INSTRUCTIONS = """You are a smart virtual customer support assistant who works for Wassenger.
You can identify yourself as Milo, the Wassenger AI Assistant.
You will be chatting with customers who may contact you with general queries about the product.
Wassenger offers WhatsApp API and multi-user live communication services designed for businesses and developers.
Be polite. Be helpful. Be concise.
If you can't help, ask the user to type *human* in order to talk with customer support."""

DEFAULT_MESSAGE = """Try asking anything to the AI chatbot using natural language!

Example queries:

1. What is Wassenger?
2. Can I use Wassenger to send automatic messages?
3. Can I schedule messages using Wassenger?
4. Is there a free trial available?

Type *human* to talk with a person. Give it a try!"""

UNKNOWN_COMMAND_MESSAGE = """I'm sorry, I was unable to understand your message. Can you please elaborate more?

If you would like to chat with a human, just reply with *human*."""


class Settings(BaseSettings):
    # Credentials
    api_key: str = ""
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    openai_base_url: str = "https://api.openai.com/v1"
    transcription_model: str = "whisper-1"

    # Gateway
    api_base_url: str = "https://api.wassenger.com/v1"
    device_id: Optional[str] = None
    webhook_url: Optional[str] = None
    production: bool = False
    port: int = 3000
    request_timeout_seconds: float = 30.0

    temp_path: str = ".tmp"

    # Templates
    bot_instructions: str = BOT_INSTRUCTIONS
    default_message: str = DEFAULT_MESSAGE
    unknown_command_message: str = UNKNOWN_COMMAND_MESSAGE
    no_audio_accepted_message: str = "Audio messages are not supported: please send text messages only."
    chat_assigned_message: str = (
        "You will be contacted shortly by someone from our team. Thank you for your patience."
    )
    assignment_unavailable_message: str = (
        "Sorry, nobody from our team is available right now. Please try again later."
    )
    chat_limit_reached_message: str = (
        "You have reached the maximum number of messages for today. Please try again later."
    )

    # Features
    audio_input: bool = True
    enable_member_chat_assignment: bool = True
    assign_only_to_online_members: bool = False
    skip_archived_chats: bool = True
    remove_labels_after_assignment: bool = True

    # Policies
    numbers_whitelist: List[str] = []
    numbers_blacklist: List[str] = []
    team_whitelist: List[str] = []
    team_blacklist: List[str] = []
    skip_team_roles_from_assignment: List[str] = ["admin"]
    skip_chat_with_labels: List[str] = ["no-bot"]
    set_labels_on_bot_chats: List[str] = ["bot"]
    set_labels_on_user_assignment: List[str] = ["from-bot"]
    set_metadata_on_bot_chats: List[str] = ["bot_start"]
    set_metadata_on_assignment: List[str] = ["bot_stop"]

    # Limits
    max_input_characters: int = 1000
    max_output_tokens: int = 1000
    chat_history_limit: int = 20
    max_messages_per_chat: int = 500
    max_messages_per_chat_counter_time: int = 24 * 60 * 60
    max_audio_duration: int = 2 * 60
    temperature: float = 0.2

    # Runtime
    cache_ttl_seconds: float = 10 * 60
    max_concurrent_tasks: int = 10
    max_pending_tasks: int = 100
    business_timezone: str = "UTC"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def required_labels(self) -> List[str]:
        return list(dict.fromkeys(self.set_labels_on_user_assignment + self.set_labels_on_bot_chats))


settings = Settings()
