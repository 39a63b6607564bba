"""
Built-in Tools
--------------
Side-effect free tools every deployment ships with.

A `clock` capability (callable returning an aware datetime) replaces the
system clock when present, which keeps these tools deterministic in tests.
"""

from datetime import datetime, timezone
from typing import Callable, Literal

from pydantic import BaseModel, ConfigDict, Field

from .contract import BoundTool, ToolContract
from .types import ToolCapabilities, ToolEffect


Clock = Callable[[], datetime]


def _now(capabilities: ToolCapabilities) -> datetime:
    clock = capabilities.get("clock") if capabilities else None
    now = clock() if clock is not None else datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


class GetCurrentTimeInput(BaseModel):
    model_config = ConfigDict(extra="forbid")


class GetCurrentTimeOutput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    current_time: str = Field(description="Current time, ISO-8601 in UTC")


GET_CURRENT_TIME_CONTRACT = ToolContract(
    name="core__get_current_time",
    description="Get the current date and time in UTC (ISO-8601)",
    input_model=GetCurrentTimeInput,
    output_model=GetCurrentTimeOutput,
    effect=ToolEffect.READ_ONLY,
    allowlist=("current_time",),
)


async def get_current_time(args: GetCurrentTimeInput, capabilities: ToolCapabilities) -> GetCurrentTimeOutput:
    now = _now(capabilities)
    return GetCurrentTimeOutput(current_time=now.isoformat().replace("+00:00", "Z"))


class GetCurrentDateInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    format: Literal["short", "long", "iso"] = Field(
        default="long",
        description="Date format: 'short' (2024-01-31), 'long' (Wednesday, January 31, 2024) or 'iso'",
    )


class GetCurrentDateOutput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: str
    format: str


GET_CURRENT_DATE_CONTRACT = ToolContract(
    name="core__get_current_date",
    description="Get the current date in UTC",
    input_model=GetCurrentDateInput,
    output_model=GetCurrentDateOutput,
    effect=ToolEffect.READ_ONLY,
    allowlist=("date", "format"),
)

_DATE_FORMATS = {
    "short": "%Y-%m-%d",
    "long": "%A, %B %d, %Y",
}


async def get_current_date(args: GetCurrentDateInput, capabilities: ToolCapabilities) -> GetCurrentDateOutput:
    today = _now(capabilities)
    if args.format == "iso":
        value = today.date().isoformat()
    else:
        value = today.strftime(_DATE_FORMATS[args.format])
    return GetCurrentDateOutput(date=value, format=args.format)


BUILTIN_TOOLS = (
    BoundTool(contract=GET_CURRENT_TIME_CONTRACT, implementation=get_current_time),
    BoundTool(contract=GET_CURRENT_DATE_CONTRACT, implementation=get_current_date),
)
