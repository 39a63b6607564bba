"""
Test Configuration
------------------
Shared fixtures and builders for all tests.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

import pytest
from pydantic import BaseModel, ConfigDict

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from tooling.contract import BoundTool, ToolContract  # noqa: E402
from tooling.types import ToolEffect  # noqa: E402


FIXED_NOW = datetime(2024, 1, 31, 14, 30, 0, tzinfo=timezone.utc)


# =============================================================================
# Usage fact builders
# =============================================================================

def build_inproc_usage_fact(**overrides: Any) -> Dict[str, Any]:
    """Valid strict fact from an in-process executor (wire form)."""
    fact = {
        "runId": "run_abc",
        "attempt": 0,
        "usageUnitId": "litellm-call-1",
        "source": "litellm",
        "executorType": "inproc",
        "billingAccountId": "ba_1",
        "virtualKeyId": "vk_1",
        "graphId": "langgraph:poet",
        "model": "gpt-4o-mini",
        "inputTokens": 120,
        "outputTokens": 40,
        "costUsd": 0.0012,
    }
    fact.update(overrides)
    return {k: v for k, v in fact.items() if v is not None}


def build_sandbox_usage_fact(**overrides: Any) -> Dict[str, Any]:
    return build_inproc_usage_fact(executorType="sandbox", graphId="sandbox:agent", **overrides)


def build_external_usage_fact(**overrides: Any) -> Dict[str, Any]:
    """Valid hints fact from an external executor."""
    fact = build_inproc_usage_fact(
        executorType="langgraph_server",
        usageUnitId=None,
        source="langgraph",
    )
    fact.update(overrides)
    return {k: v for k, v in fact.items() if v is not None}


# =============================================================================
# Tool builders
# =============================================================================

class EchoInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    value: str


class EchoOutput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    value: str
    secret: str = "hunter2"


def make_echo_tool(name: str = "test__echo", effect: ToolEffect = ToolEffect.READ_ONLY, implementation=None, redact=None) -> BoundTool:
    """Echo tool whose output carries a non-allowlisted secret field."""
    async def echo(args: EchoInput, capabilities) -> Dict[str, Any]:
        return {"value": args.value, "secret": "hunter2"}

    contract = ToolContract(
        name=name,
        description="Echo the input value",
        input_model=EchoInput,
        output_model=EchoOutput,
        effect=effect,
        allowlist=("value",),
        redact=redact,
    )
    return BoundTool(contract=contract, implementation=implementation or echo)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def project_root():
    """Return the project root path."""
    return PROJECT_ROOT


@pytest.fixture
def events() -> List[Any]:
    """Event sink collecting everything emitted."""
    return []


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def ledger_path(tmp_path) -> str:
    return str(tmp_path / "usage.db")
