"""
Tool Types
----------
Shapes shared by the adapter, policy, source and runner.

A BoundToolRuntime is what the runner executes. It is built once from a
contract and an implementation, and capabilities are injected per call
by the runner, never stored on the runtime.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Dict, Literal, Mapping, Optional, Protocol, Tuple, Union
import asyncio

from aicore.errors import ToolErrorCode


class ToolEffect(str, Enum):
    """Side-effect class of a tool, used by policy."""
    READ_ONLY = "read_only"                        # No side effects
    STATE_CHANGE = "state_change"                  # Modifies our own data
    EXTERNAL_SIDE_EFFECT = "external_side_effect"  # Touches the outside world


class ToolPolicyDecision(str, Enum):
    """Outcome of a policy check."""
    ALLOW = "allow"
    DENY = "deny"
    REQUIRE_APPROVAL = "require_approval"


@dataclass(frozen=True)
class ToolRedactionConfig:
    """Top-level allowlist applied to tool output before it leaves the runner."""
    allowlist: Tuple[str, ...] = ()
    mode: Literal["top_level_only"] = "top_level_only"


@dataclass(frozen=True)
class ToolSpec:
    """What the model sees: name, description and compiled JSON schema."""
    name: str
    description: str
    input_schema: Dict[str, Any]
    effect: ToolEffect = ToolEffect.READ_ONLY
    redaction: ToolRedactionConfig = field(default_factory=ToolRedactionConfig)

    def to_openai_function(self) -> Dict[str, Any]:
        """Convert to OpenAI function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


@dataclass(frozen=True)
class ToolInvocationContext:
    """
    Per-call context handed to the implementation.

    Holds references only. Credentials travel in capabilities.
    """
    run_id: str
    tool_call_id: str
    connection_id: Optional[str] = None
    abort_signal: Optional[asyncio.Event] = None

    @property
    def aborted(self) -> bool:
        return self.abort_signal is not None and self.abort_signal.is_set()


# Opaque to the runner; resolved by the composition root
ToolCapabilities = Mapping[str, Any]

MaybeAwaitable = Union[Any, Awaitable[Any]]


class BoundToolRuntime(Protocol):
    """Executable tool as the runner sees it."""

    id: str
    spec: ToolSpec
    effect: ToolEffect
    requires_connection: bool
    capabilities: Tuple[str, ...]

    def validate_input(self, raw_args: Any) -> MaybeAwaitable:
        ...

    async def exec(
        self,
        validated_args: Any,
        ctx: ToolInvocationContext,
        capabilities: ToolCapabilities,
    ) -> Any:
        ...

    def validate_output(self, raw_output: Any) -> MaybeAwaitable:
        ...

    def redact(self, validated_output: Any) -> MaybeAwaitable:
        ...


@dataclass(frozen=True)
class ToolOk:
    """Successful tool call carrying the redacted value."""
    value: Dict[str, Any]

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ToolErr:
    """Failed tool call; safe_message never contains internal detail."""
    error_code: ToolErrorCode
    safe_message: str

    @property
    def ok(self) -> bool:
        return False


ToolResult = Union[ToolOk, ToolErr]
