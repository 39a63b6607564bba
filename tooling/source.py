"""
Tool Source & Catalog
---------------------
The source is the runner's only way to find a tool. It is immutable once
built and rejects duplicate IDs at construction.

The catalog is the per-request view of what the model may see: specs that
the policy allows for the current run.
"""

from types import MappingProxyType
from typing import Dict, Iterable, List, Optional, Protocol, Tuple
import logging

from .policy import DENY_ALL_POLICY, ToolPolicy, ToolPolicyContext
from .types import BoundToolRuntime, ToolPolicyDecision, ToolSpec


class ToolSourcePort(Protocol):
    def get_bound_tool(self, tool_id: str) -> Optional[BoundToolRuntime]:
        ...

    def list_tool_specs(self) -> Tuple[ToolSpec, ...]:
        ...

    def has_tool_id(self, tool_id: str) -> bool:
        ...


class StaticToolSource:
    """
    Fixed set of bound tools.

    Specs are computed once here so list_tool_specs() is allocation free.
    """

    def __init__(self, tools: Iterable[BoundToolRuntime]):
        tools_by_id: Dict[str, BoundToolRuntime] = {}
        for tool in tools:
            if tool.id in tools_by_id:
                raise ValueError(f"Duplicate tool ID: {tool.id}")
            tools_by_id[tool.id] = tool

        self._tools = MappingProxyType(tools_by_id)
        self._specs: Tuple[ToolSpec, ...] = tuple(tool.spec for tool in tools_by_id.values())

        logging.getLogger("toolrun.tooling.source").debug(
            f"Tool source built with {len(self._tools)} tools"
        )

    def get_bound_tool(self, tool_id: str) -> Optional[BoundToolRuntime]:
        return self._tools.get(tool_id)

    def list_tool_specs(self) -> Tuple[ToolSpec, ...]:
        return self._specs

    def has_tool_id(self, tool_id: str) -> bool:
        return tool_id in self._tools

    def tool_ids(self) -> List[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, tool_id: str) -> bool:
        return tool_id in self._tools


def create_static_tool_source(tools: Iterable[BoundToolRuntime]) -> StaticToolSource:
    return StaticToolSource(tools)


class ToolCatalog:
    """Read-only set of specs visible to the model for one request."""

    def __init__(self, specs: Iterable[ToolSpec] = ()):
        specs_by_name: Dict[str, ToolSpec] = {}
        for spec in specs:
            if spec.name in specs_by_name:
                raise ValueError(f"Duplicate tool ID in catalog: {spec.name}")
            specs_by_name[spec.name] = spec
        self._specs = MappingProxyType(specs_by_name)

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._specs.get(name)

    def list_specs(self) -> List[ToolSpec]:
        return list(self._specs.values())

    def names(self) -> List[str]:
        return list(self._specs)

    def to_openai_functions(self) -> List[Dict]:
        """All visible specs in OpenAI function format."""
        return [spec.to_openai_function() for spec in self._specs.values()]

    def __len__(self) -> int:
        return len(self._specs)

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def __repr__(self) -> str:
        return f"ToolCatalog({', '.join(self._specs) or 'empty'})"


EMPTY_CATALOG = ToolCatalog()


def create_tool_catalog(
    specs: Iterable[ToolSpec],
    policy: ToolPolicy = DENY_ALL_POLICY,
    ctx: Optional[ToolPolicyContext] = None,
) -> ToolCatalog:
    """
    Filter specs through the policy.

    Only ALLOW decisions are visible; require_approval tools are hidden
    from the model along with denied ones.
    """
    all_specs = ToolCatalog(specs)
    ctx = ctx or ToolPolicyContext(run_id="catalog_bootstrap")

    visible = [
        spec for spec in all_specs.list_specs()
        if policy.decide(ctx, spec.name, spec.effect) == ToolPolicyDecision.ALLOW
    ]
    if not visible:
        return EMPTY_CATALOG
    return ToolCatalog(visible)
