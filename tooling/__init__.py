# Tooling module - tool contracts, policy, source and the runner
# The runner is the firewall between the model and tool implementations:
# every call goes through policy, validation and redaction

from .types import (
    BoundToolRuntime, ToolEffect, ToolErr, ToolInvocationContext, ToolOk,
    ToolPolicyDecision, ToolRedactionConfig, ToolResult, ToolSpec,
)
from .contract import (
    BoundTool, ContractToolRuntime, ToolContract, contract_to_runtime,
    to_bound_tool_runtime, to_bound_tool_runtimes, to_tool_spec,
)
from .policy import (
    DENY_ALL_POLICY, AllowlistToolPolicy, ToolBudgets, ToolPolicy,
    ToolPolicyContext, create_tool_allowlist_policy, load_tool_policy,
    load_tool_policy_file,
)
from .source import (
    EMPTY_CATALOG, StaticToolSource, ToolCatalog, ToolSourcePort,
    create_static_tool_source, create_tool_catalog,
)
from .runner import ToolRunner, ToolRunnerConfig, ToolSpanPort, generate_tool_call_id
from .builtin import BUILTIN_TOOLS

__all__ = [
    # Types
    "BoundToolRuntime",
    "ToolEffect",
    "ToolErr",
    "ToolInvocationContext",
    "ToolOk",
    "ToolPolicyDecision",
    "ToolRedactionConfig",
    "ToolResult",
    "ToolSpec",
    # Contracts
    "BoundTool",
    "ContractToolRuntime",
    "ToolContract",
    "contract_to_runtime",
    "to_bound_tool_runtime",
    "to_bound_tool_runtimes",
    "to_tool_spec",
    # Policy
    "DENY_ALL_POLICY",
    "AllowlistToolPolicy",
    "ToolBudgets",
    "ToolPolicy",
    "ToolPolicyContext",
    "create_tool_allowlist_policy",
    "load_tool_policy",
    "load_tool_policy_file",
    # Source
    "EMPTY_CATALOG",
    "StaticToolSource",
    "ToolCatalog",
    "ToolSourcePort",
    "create_static_tool_source",
    "create_tool_catalog",
    # Runner
    "ToolRunner",
    "ToolRunnerConfig",
    "ToolSpanPort",
    "generate_tool_call_id",
    "BUILTIN_TOOLS",
]
