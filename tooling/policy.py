"""
Tool Policy
-----------
Decides whether a tool may run in a given run context.

Rules:
- Deny by default: no policy means DENY_ALL_POLICY
- Allowlist short-circuits: unknown tools are denied before effect checks
- Effects listed in require_approval_for_effects need an approval gate
- Budgets cap runtime and result size per call

Config format (YAML):
    tool_policy:
      allowed_tools: [core__get_current_time]
      require_approval_for_effects: [external_side_effect]
      budgets:
        max_runtime_ms: 5000
        max_result_bytes: 65536
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Protocol, Union
import logging

import yaml

from .types import ToolEffect, ToolPolicyDecision


_logger = logging.getLogger("toolrun.tooling.policy")


@dataclass(frozen=True)
class ToolPolicyContext:
    """Run-scoped input to policy decisions."""
    run_id: str


@dataclass(frozen=True)
class ToolBudgets:
    """Per-call limits. None means unlimited."""
    max_runtime_ms: Optional[int] = None
    max_result_bytes: Optional[int] = None


class ToolPolicy(Protocol):
    allowed_tools: FrozenSet[str]
    require_approval_for_effects: FrozenSet[ToolEffect]
    budgets: ToolBudgets

    def decide(self, ctx: ToolPolicyContext, tool_id: str, effect: ToolEffect) -> ToolPolicyDecision:
        ...


@dataclass(frozen=True)
class AllowlistToolPolicy:
    """Allowlist policy with optional approval effects and budgets."""
    allowed_tools: FrozenSet[str] = frozenset()
    require_approval_for_effects: FrozenSet[ToolEffect] = frozenset()
    budgets: ToolBudgets = field(default_factory=ToolBudgets)

    def decide(self, ctx: ToolPolicyContext, tool_id: str, effect: ToolEffect) -> ToolPolicyDecision:
        if tool_id not in self.allowed_tools:
            return ToolPolicyDecision.DENY
        if ToolEffect(effect) in self.require_approval_for_effects:
            return ToolPolicyDecision.REQUIRE_APPROVAL
        return ToolPolicyDecision.ALLOW


@dataclass(frozen=True)
class DenyAllToolPolicy:
    """Denies every call. Used wherever no policy was configured."""
    allowed_tools: FrozenSet[str] = frozenset()
    require_approval_for_effects: FrozenSet[ToolEffect] = frozenset()
    budgets: ToolBudgets = field(default_factory=ToolBudgets)

    def decide(self, ctx: ToolPolicyContext, tool_id: str, effect: ToolEffect) -> ToolPolicyDecision:
        return ToolPolicyDecision.DENY


DENY_ALL_POLICY = DenyAllToolPolicy()


def create_tool_allowlist_policy(
    allowed_tools: Iterable[str],
    require_approval_for_effects: Optional[Iterable[Union[ToolEffect, str]]] = None,
    budgets: Optional[ToolBudgets] = None,
) -> AllowlistToolPolicy:
    """Build an allowlist policy."""
    return AllowlistToolPolicy(
        allowed_tools=frozenset(allowed_tools),
        require_approval_for_effects=frozenset(
            ToolEffect(effect) for effect in (require_approval_for_effects or ())
        ),
        budgets=budgets or ToolBudgets(),
    )


def _optional_int(value: Any, name: str) -> Optional[int]:
    if value is None:
        return None
    number = int(value)
    if number <= 0:
        raise ValueError(f"{name} must be positive, got {number}")
    return number


def load_tool_policy(section: Optional[Mapping[str, Any]]) -> ToolPolicy:
    """
    Build a policy from a `tool_policy` config section.

    A missing or empty section, or one that fails to parse, yields
    DENY_ALL_POLICY.
    """
    if not section:
        _logger.info("No tool_policy configured, denying all tools")
        return DENY_ALL_POLICY

    try:
        allowed = section.get("allowed_tools") or []
        if isinstance(allowed, str):
            allowed = [name.strip() for name in allowed.split(",") if name.strip()]

        budgets_data = section.get("budgets") or {}
        budgets = ToolBudgets(
            max_runtime_ms=_optional_int(budgets_data.get("max_runtime_ms"), "max_runtime_ms"),
            max_result_bytes=_optional_int(budgets_data.get("max_result_bytes"), "max_result_bytes"),
        )

        policy = create_tool_allowlist_policy(
            allowed_tools=allowed,
            require_approval_for_effects=[
                str(effect).lower() for effect in section.get("require_approval_for_effects") or []
            ],
            budgets=budgets,
        )
    except (TypeError, ValueError, AttributeError) as e:
        _logger.error(f"Failed to load tool policy, denying all tools: {e}")
        return DENY_ALL_POLICY

    _logger.info(
        f"Loaded tool policy: {len(policy.allowed_tools)} allowed tools, "
        f"{len(policy.require_approval_for_effects)} approval effects"
    )
    return policy


def load_tool_policy_file(path: Union[str, Path]) -> ToolPolicy:
    """
    Load a policy from a YAML file with a top-level tool_policy key.

    Fails closed: a file that is absent or cannot be parsed yields
    DENY_ALL_POLICY.
    """
    path = Path(path)
    if not path.exists():
        _logger.warning(f"Tool policy file not found: {path}")
        return DENY_ALL_POLICY

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        _logger.error(f"Tool policy file unreadable, denying all tools: {path}: {type(e).__name__}")
        return DENY_ALL_POLICY

    if not isinstance(data, dict):
        _logger.error(f"Tool policy file is not a mapping: {path}")
        return DENY_ALL_POLICY

    return load_tool_policy(data.get("tool_policy"))
