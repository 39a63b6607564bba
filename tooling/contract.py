"""
Tool Contracts
--------------
A contract describes a tool with pydantic models for input and output.
The adapter turns contract + implementation into a BoundToolRuntime the
runner can execute.

Contract rules:
- Names are namespaced: <namespace>__<tool>
- Validation errors raise, they are never coerced away
- Redaction keeps allowlisted top-level keys only
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Type

from pydantic import BaseModel

from .types import (
    ToolCapabilities,
    ToolEffect,
    ToolInvocationContext,
    ToolRedactionConfig,
    ToolSpec,
)


ToolImplementation = Callable[[BaseModel, ToolCapabilities], Awaitable[Any]]

RedactFn = Callable[[Dict[str, Any]], Dict[str, Any]]


@dataclass(frozen=True)
class ToolContract:
    """
    Declarative description of a tool.

    input_model and output_model should forbid extra fields so that
    unknown keys from the model are rejected.
    """
    name: str
    description: str
    input_model: Type[BaseModel]
    output_model: Type[BaseModel]
    effect: ToolEffect = ToolEffect.READ_ONLY
    allowlist: Tuple[str, ...] = ()
    redact: Optional[RedactFn] = None

    def __post_init__(self):
        namespace, sep, tool = self.name.partition("__")
        if not sep or not namespace or not tool:
            raise ValueError(f"Tool name must be namespaced as ns__tool: {self.name}")


@dataclass(frozen=True)
class BoundTool:
    """Contract paired with its implementation."""
    contract: ToolContract
    implementation: ToolImplementation


def to_tool_spec(contract: ToolContract) -> ToolSpec:
    """Compile the contract's input model into a model-facing spec."""
    return ToolSpec(
        name=contract.name,
        description=contract.description,
        input_schema=contract.input_model.model_json_schema(),
        effect=contract.effect,
        redaction=ToolRedactionConfig(allowlist=tuple(contract.allowlist)),
    )


def redact_top_level(output: Dict[str, Any], allowlist: Iterable[str]) -> Dict[str, Any]:
    """Keep only allowlisted top-level keys. Nested values pass as-is."""
    allowed = set(allowlist)
    return {key: value for key, value in output.items() if key in allowed}


class ContractToolRuntime:
    """BoundToolRuntime backed by a ToolContract."""

    def __init__(
        self,
        bound_tool: BoundTool,
        requires_connection: bool = False,
        capabilities: Optional[Sequence[str]] = None,
    ):
        self._contract = bound_tool.contract
        self._implementation = bound_tool.implementation

        self.id = self._contract.name
        self.spec = to_tool_spec(self._contract)
        self.effect = self._contract.effect
        self.requires_connection = requires_connection
        if capabilities is not None:
            self.capabilities: Tuple[str, ...] = tuple(capabilities)
        else:
            self.capabilities = ("auth",) if requires_connection else ()

    def validate_input(self, raw_args: Any) -> BaseModel:
        return self._contract.input_model.model_validate(raw_args)

    async def exec(
        self,
        validated_args: BaseModel,
        ctx: ToolInvocationContext,
        capabilities: ToolCapabilities,
    ) -> Any:
        return await self._implementation(validated_args, capabilities)

    def validate_output(self, raw_output: Any) -> Dict[str, Any]:
        validated = self._contract.output_model.model_validate(raw_output)
        return validated.model_dump(mode="json")

    def redact(self, validated_output: Dict[str, Any]) -> Dict[str, Any]:
        if self._contract.redact is not None:
            return self._contract.redact(validated_output)
        return redact_top_level(validated_output, self._contract.allowlist)

    def __repr__(self) -> str:
        return f"ContractToolRuntime(id={self.id}, effect={self.effect.value})"


def to_bound_tool_runtime(
    bound_tool: BoundTool,
    requires_connection: bool = False,
    capabilities: Optional[Sequence[str]] = None,
) -> ContractToolRuntime:
    """Adapt one bound tool for the runner."""
    return ContractToolRuntime(bound_tool, requires_connection, capabilities)


def to_bound_tool_runtimes(bound_tools: Iterable[BoundTool]) -> List[ContractToolRuntime]:
    """Adapt a batch of bound tools with default options."""
    return [to_bound_tool_runtime(tool) for tool in bound_tools]


def contract_to_runtime(
    contract: ToolContract,
    implementation: ToolImplementation,
    requires_connection: bool = False,
    capabilities: Optional[Sequence[str]] = None,
) -> ContractToolRuntime:
    """Shorthand for binding and adapting in one step."""
    return to_bound_tool_runtime(
        BoundTool(contract=contract, implementation=implementation),
        requires_connection=requires_connection,
        capabilities=capabilities,
    )
