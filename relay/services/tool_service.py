"""Functions exposed to the AI model for tool-augmented replies."""

import inspect
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Awaitable, Callable, List, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from relay.config import settings
from relay.logging_config import get_logger

logger = get_logger("tool_service")

ToolHandler = Callable[..., Union[str, Awaitable[str]]]

BUSINESS_HOURS_START = 9
BUSINESS_HOURS_END = 17

PLAN_PRICES = """*Send & Receive messages + API + Webhooks + Team Chat + Campaigns + CRM + Analytics*

- Platform Professional: 30,000 messages + unlimited inbound messages + 10 campaigns / month
- Platform Business: 60,000 messages + unlimited inbound messages + 20 campaigns / month
- Platform Enterprise: unlimited messages + 30 campaigns

Each plan is limited to one WhatsApp number. You can purchase multiple plans if you have multiple numbers.

*Find more details here:* https://wassenger.com/#pricing"""

MSG_CRM_UNAVAILABLE = "I am unable to access the CRM at the moment. Please try again later."
MSG_WEEKEND = "Not available on weekends."
MSG_OUTSIDE_HOURS = "Not available outside business hours: 9 AM to 5 PM."
MSG_AVAILABLE = "Available"
MSG_INVALID_DATE = "Invalid date. Please provide the date and time in ISO 8601 format."
MSG_MEETING_BOOKED = "Meeting booked successfully. You will receive a confirmation email shortly."

DATE_PARAMETERS = {
    "type": "object",
    "properties": {
        "date": {"type": "string", "format": "date-time", "description": "Date of the meeting"},
    },
    "required": ["date"],
}


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    handler: ToolHandler
    parameters: Optional[dict] = None

    def to_openai(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters or {"type": "object", "properties": {}},
            },
        }


def _business_tz() -> tzinfo:
    if settings.business_timezone.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(settings.business_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown business timezone {settings.business_timezone!r}, using UTC")
        return timezone.utc


def parse_meeting_date(value: str) -> Optional[datetime]:
    """Parse an ISO 8601 date into the business timezone.

    Naive values are taken as business-local time.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    tz = _business_tz()
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)


def get_plan_prices() -> str:
    logger.info("Fetching plan prices")
    return PLAN_PRICES


def load_user_information() -> str:
    logger.info("Trying to load user information")
    return MSG_CRM_UNAVAILABLE


def verify_meeting_availability(date: str) -> str:
    logger.info(f"Checking availability for {date}")
    when = parse_meeting_date(date)
    if when is None:
        return MSG_INVALID_DATE
    if when.weekday() >= 5:
        return MSG_WEEKEND
    if when.hour < BUSINESS_HOURS_START or when.hour >= BUSINESS_HOURS_END:
        return MSG_OUTSIDE_HOURS
    return MSG_AVAILABLE


def book_sales_meeting(date: str) -> str:
    logger.info(f"Booking meeting for {date}")
    return MSG_MEETING_BOOKED


def current_date_and_time() -> str:
    return datetime.now(_business_tz()).strftime("%Y-%m-%d %H:%M:%S %Z")


TOOLS: List[ToolDefinition] = [
    ToolDefinition(
        name="getPlanPrices",
        description="Get available plans and pricing for Wassenger services.",
        handler=get_plan_prices,
        parameters={"type": "object", "properties": {}},
    ),
    ToolDefinition(
        name="loadUserInformation",
        description="Retrieve user name and email from CRM.",
        handler=load_user_information,
        parameters={"type": "object", "properties": {}},
    ),
    ToolDefinition(
        name="verifyMeetingAvailability",
        description="Check if a given date and time is available for a meeting.",
        handler=verify_meeting_availability,
        parameters=DATE_PARAMETERS,
    ),
    ToolDefinition(
        name="bookSalesMeeting",
        description="Book a sales/demo meeting on a specific date and time.",
        handler=book_sales_meeting,
        parameters=DATE_PARAMETERS,
    ),
    ToolDefinition(
        name="currentDateAndTime",
        description="Retrieve the current date and time.",
        handler=current_date_and_time,
    ),
]

_TOOLS_BY_NAME = {tool.name: tool for tool in TOOLS}


def get_tool(name: str) -> Optional[ToolDefinition]:
    return _TOOLS_BY_NAME.get(name)


def list_openai_tools() -> List[dict]:
    return [tool.to_openai() for tool in TOOLS]


async def run_tool(name: str, arguments: Optional[dict] = None) -> str:
    """Execute a catalog tool and return its text output.

    Unknown tools, bad arguments and handler errors come back as text so the
    model can recover.
    """
    tool = get_tool(name)
    if tool is None:
        label = name or "unknown"
        logger.warning(f"Unknown tool requested: {label}")
        return f"Error: unknown tool {label}"

    allowed = set((tool.parameters or {}).get("properties", {}))
    params = {key: value for key, value in (arguments or {}).items() if key in allowed}
    try:
        output: Any = tool.handler(**params)
        if inspect.isawaitable(output):
            output = await output
    except TypeError as exc:
        logger.warning(f"Invalid arguments for tool {name}: {exc}")
        return f"Error: invalid arguments for {name}"
    except Exception as exc:
        logger.exception(f"Tool failed ({name})")
        return f"Error: {name} failed: {exc}"
    return output if isinstance(output, str) else str(output)
