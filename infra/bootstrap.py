"""
Composition Root
----------------
Wires config, logging, policy, tool source, spans and billing into the
objects a run needs. Nothing else in the codebase reads config.

Usage:
    config = ConfigManager("toolrun.yaml")
    configure_from(config)

    fanout = EventFanout()
    billing = create_billing_subscriber(config)
    fanout.subscribe_billing(billing)

    runner = create_tool_runtime(config, fanout, run_id="run_42")
"""

from typing import Any, Iterable, Mapping, Optional
import logging

from aicore.billing import DEFAULT_MAX_TRACKED_RUNS, BillingSubscriber
from aicore.events import EmitAiEvent
from tooling.builtin import BUILTIN_TOOLS
from tooling.contract import BoundTool, to_bound_tool_runtime
from tooling.policy import ToolPolicyContext, load_tool_policy
from tooling.runner import ApprovalGate, ToolRunner, ToolRunnerConfig
from tooling.source import StaticToolSource

from .config import ConfigManager
from .ledger import SqliteUsageLedger
from .logging import configure_logging
from .spans import LoggingSpanPort


_logger = logging.getLogger("toolrun.infra.bootstrap")


def configure_from(config: ConfigManager) -> None:
    """Apply the logging section."""
    configure_logging(
        level=config.log_level(),
        log_dir=config.get("logging.dir"),
        console=config.get_bool("logging.console", True),
        file=config.get_bool("logging.file", False),
    )


def create_tool_source(extra_tools: Iterable[BoundTool] = ()) -> StaticToolSource:
    """Built-in tools plus any extras. Duplicate IDs raise ValueError."""
    tools = list(BUILTIN_TOOLS) + list(extra_tools)
    return StaticToolSource(to_bound_tool_runtime(tool) for tool in tools)


def create_tool_runtime(
    config: ConfigManager,
    emit: EmitAiEvent,
    run_id: str,
    capabilities: Optional[Mapping[str, Any]] = None,
    extra_tools: Iterable[BoundTool] = (),
    trace_id: Optional[str] = None,
    span_port: Optional[LoggingSpanPort] = None,
    approval_gate: Optional[ApprovalGate] = None,
) -> ToolRunner:
    """
    Build a ToolRunner for one run.

    The policy comes from the tool_policy section; with no section every
    tool is denied.
    """
    policy = load_tool_policy(config.get_section("tool_policy"))
    source = create_tool_source(extra_tools)

    runner_config = ToolRunnerConfig(
        policy=policy,
        ctx=ToolPolicyContext(run_id=run_id),
        capabilities=dict(capabilities or {}),
        span_port=span_port or LoggingSpanPort(),
        trace_id=trace_id or run_id,
        approval_gate=approval_gate,
    )

    _logger.info(f"Tool runtime ready: run_id={run_id}, {len(source)} tools in source")
    return ToolRunner(source, emit, runner_config)


def create_billing_subscriber(config: ConfigManager) -> BillingSubscriber:
    """Billing subscriber writing to the configured SQLite ledger."""
    ledger = SqliteUsageLedger(config.get("ledger.path", "toolrun_usage.db"))
    max_runs = config.get_int("billing.max_tracked_runs", DEFAULT_MAX_TRACKED_RUNS)
    return BillingSubscriber(ledger, max_tracked_runs=max_runs)
