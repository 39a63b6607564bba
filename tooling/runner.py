"""
Tool Runner
-----------
The only entry point for executing a tool call from a model.

Pipeline (strictly sequential, never reordered):
    lookup -> policy -> parse args -> validate input -> emit start
    -> execute -> validate output -> redact -> result budget
    -> emit result -> return

Guarantees:
- One tool_call_id per call, used in every event and the span
- Every failure emits exactly one tool_call_result with isError and
  returns a ToolErr; tool failures never raise out of exec()
- Un-redacted output never leaves the runner
- Args, outputs and capabilities are never logged

Usage:
    runner = ToolRunner(source, emit, ToolRunnerConfig(policy=policy))
    result = await runner.exec("core__get_current_time", {})
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union
import asyncio
import inspect
import json
import logging
import secrets
import string
import time

from pydantic import BaseModel, ValidationError

from aicore.errors import AbortError, ToolErrorCode, safe_message
from aicore.events import EmitAiEvent, ToolCallResultEvent, ToolCallStartEvent
from aicore.run_context import run_scope

from .policy import DENY_ALL_POLICY, ToolPolicy, ToolPolicyContext
from .source import ToolSourcePort
from .types import (
    BoundToolRuntime,
    ToolCapabilities,
    ToolEffect,
    ToolErr,
    ToolInvocationContext,
    ToolOk,
    ToolPolicyDecision,
    ToolResult,
)


_TOOL_CALL_ID_ALPHABET = string.ascii_letters + string.digits
_TOOL_CALL_ID_LENGTH = 9

REDACTION_FAILED_MESSAGE = "Internal error processing tool result"


def generate_tool_call_id() -> str:
    """Random 9-character alphanumeric ID."""
    return "".join(secrets.choice(_TOOL_CALL_ID_ALPHABET) for _ in range(_TOOL_CALL_ID_LENGTH))


class ToolSpanPort(Protocol):
    """Tracing backend. Handles are opaque to the runner."""

    def start_span(self, trace_id: str, name: str, input: Any, metadata: Dict[str, Any]) -> Any:
        ...

    def end_span(self, span: Any, output: Any, level: str, metadata: Dict[str, Any]) -> None:
        ...


SpanHook = Callable[[Any], Any]
ApprovalGate = Callable[[ToolPolicyContext, str, ToolEffect], Union[bool, Awaitable[bool]]]


@dataclass(frozen=True)
class ToolRunnerConfig:
    """
    Runner wiring supplied by the composition root.

    approval_gate is consulted only for REQUIRE_APPROVAL decisions; without
    one those calls are denied.
    """
    policy: ToolPolicy = DENY_ALL_POLICY
    ctx: ToolPolicyContext = field(default_factory=lambda: ToolPolicyContext(run_id="toolrunner_default"))
    capabilities: ToolCapabilities = field(default_factory=lambda: MappingProxyType({}))
    span_port: Optional[ToolSpanPort] = None
    trace_id: Optional[str] = None
    span_input: Optional[SpanHook] = None
    span_output: Optional[SpanHook] = None
    approval_gate: Optional[ApprovalGate] = None


class _RuntimeBudgetExceeded(Exception):
    pass


@dataclass
class _SpanState:
    handle: Any = None
    hook_input_failed: bool = False
    ended: bool = False


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _error_message(error: Exception, fallback: str) -> str:
    """Readable message without echoing input values back."""
    if isinstance(error, ValidationError):
        parts = []
        for detail in error.errors():
            location = ".".join(str(part) for part in detail.get("loc", ())) or "input"
            parts.append(f"{location}: {detail.get('msg', 'invalid')}")
        return "; ".join(parts) or fallback
    return safe_message(error, fallback)


class ToolRunner:
    """
    Executes tool calls against a tool source under a policy.

    One runner per run: its policy context and capabilities are fixed at
    construction.
    """

    def __init__(
        self,
        source: ToolSourcePort,
        emit: EmitAiEvent,
        config: Optional[ToolRunnerConfig] = None,
    ):
        self._source = source
        self._emit_sink = emit
        self._config = config or ToolRunnerConfig()
        self._logger = logging.getLogger("toolrun.tooling.runner")

    @property
    def config(self) -> ToolRunnerConfig:
        return self._config

    async def exec(
        self,
        tool_name: str,
        raw_args: Any,
        model_tool_call_id: Optional[str] = None,
        connection_id: Optional[str] = None,
        abort_signal: Optional[asyncio.Event] = None,
    ) -> ToolResult:
        """
        Run one tool call through the full pipeline.

        Returns ToolOk with the redacted value, or ToolErr. Only
        cancellation of the calling task propagates.
        """
        with run_scope(self._config.ctx.run_id):
            return await self._exec(tool_name, raw_args, model_tool_call_id, connection_id, abort_signal)

    async def _exec(
        self,
        tool_name: str,
        raw_args: Any,
        model_tool_call_id: Optional[str],
        connection_id: Optional[str],
        abort_signal: Optional[asyncio.Event],
    ) -> ToolResult:
        tool_call_id = model_tool_call_id or generate_tool_call_id()
        started = time.monotonic()
        span = self._start_span(tool_name, tool_call_id, raw_args)

        # Lookup
        tool = self._source.get_bound_tool(tool_name)
        if tool is None:
            return self._fail(
                tool_name, tool_call_id, span, started,
                ToolErrorCode.UNAVAILABLE,
                safe=f"Tool '{tool_name}' is not available",
                event_message=f"Tool '{tool_name}' not found",
            )

        # Policy, evaluated once
        decision = await self._decide(tool_name, tool.effect)
        if decision != ToolPolicyDecision.ALLOW:
            return self._fail(
                tool_name, tool_call_id, span, started,
                ToolErrorCode.POLICY_DENIED,
                safe=f"Tool '{tool_name}' is not allowed by current policy",
                event_message=f"Tool '{tool_name}' is not allowed by policy",
                metadata={"policyDecision": decision.value, "effect": tool.effect.value},
            )

        # Argument decoding
        args = raw_args
        if isinstance(raw_args, (str, bytes, bytearray)):
            try:
                args = json.loads(raw_args) if raw_args else {}
            except ValueError:
                return self._fail(
                    tool_name, tool_call_id, span, started,
                    ToolErrorCode.INVALID_JSON,
                    safe="Tool arguments are not valid JSON",
                )
        if args is None:
            args = {}
        if not isinstance(args, dict):
            return self._fail(
                tool_name, tool_call_id, span, started,
                ToolErrorCode.INVALID_JSON,
                safe="Tool arguments must be a JSON object",
            )

        # Input validation
        try:
            validated = await _resolve(tool.validate_input(args))
        except Exception as e:
            return self._fail(
                tool_name, tool_call_id, span, started,
                ToolErrorCode.VALIDATION,
                safe=_error_message(e, "Invalid tool input"),
            )

        self._emit(ToolCallStartEvent(
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            args=self._event_args(validated),
        ))

        # Execution
        invocation = ToolInvocationContext(
            run_id=self._config.ctx.run_id,
            tool_call_id=tool_call_id,
            connection_id=connection_id,
            abort_signal=abort_signal,
        )
        max_runtime_ms = self._config.policy.budgets.max_runtime_ms
        try:
            raw_output = await self._run_with_limits(tool, validated, invocation, max_runtime_ms)
        except _RuntimeBudgetExceeded:
            return self._fail(
                tool_name, tool_call_id, span, started,
                ToolErrorCode.TIMEOUT,
                safe=f"Tool '{tool_name}' exceeded its runtime budget of {max_runtime_ms}ms",
            )
        except AbortError:
            return self._fail(
                tool_name, tool_call_id, span, started,
                ToolErrorCode.EXECUTION,
                safe="Tool execution aborted",
                metadata={"aborted": True},
            )
        except Exception as e:
            return self._fail(
                tool_name, tool_call_id, span, started,
                ToolErrorCode.EXECUTION,
                safe=safe_message(e, "Tool execution failed"),
            )

        # Output validation
        try:
            validated_output = await _resolve(tool.validate_output(raw_output))
        except Exception as e:
            return self._fail(
                tool_name, tool_call_id, span, started,
                ToolErrorCode.VALIDATION,
                safe=_error_message(e, "Invalid tool output"),
            )

        # Redaction, fail closed
        try:
            redacted = await _resolve(tool.redact(validated_output))
            if not isinstance(redacted, dict):
                raise TypeError(f"Redaction returned {type(redacted).__name__}, expected dict")
        except Exception as e:
            # Type only: the message can quote unredacted values
            self._logger.error(f"Redaction failed for {tool_name}: {type(e).__name__} (call {tool_call_id})")
            return self._fail(
                tool_name, tool_call_id, span, started,
                ToolErrorCode.REDACTION_FAILED,
                safe=REDACTION_FAILED_MESSAGE,
            )

        # Result size budget
        max_result_bytes = self._config.policy.budgets.max_result_bytes
        if max_result_bytes is not None:
            size = len(json.dumps(redacted, default=str).encode("utf-8"))
            if size > max_result_bytes:
                return self._fail(
                    tool_name, tool_call_id, span, started,
                    ToolErrorCode.EXECUTION,
                    safe=f"Tool result exceeds size budget ({size} > {max_result_bytes} bytes)",
                )

        self._emit(ToolCallResultEvent(tool_call_id=tool_call_id, result=redacted))

        duration_ms = (time.monotonic() - started) * 1000
        self._logger.info(f"Tool {tool_name} succeeded in {duration_ms:.0f}ms (call {tool_call_id})")
        self._end_span(span, redacted, "DEFAULT", {
            "durationMs": round(duration_ms, 2),
            "effect": tool.effect.value,
        }, hook=self._config.span_output)

        return ToolOk(value=redacted)

    async def _decide(self, tool_name: str, effect: ToolEffect) -> ToolPolicyDecision:
        ctx = self._config.ctx
        try:
            decision = ToolPolicyDecision(self._config.policy.decide(ctx, tool_name, effect))
        except Exception as e:
            self._logger.error(f"Policy check failed for {tool_name}, denying: {e}")
            return ToolPolicyDecision.DENY

        if decision != ToolPolicyDecision.REQUIRE_APPROVAL:
            return decision

        gate = self._config.approval_gate
        if gate is None:
            self._logger.warning(f"Tool {tool_name} requires approval but no approval gate is configured")
            return decision

        try:
            approved = bool(await _resolve(gate(ctx, tool_name, effect)))
        except Exception as e:
            self._logger.error(f"Approval gate failed for {tool_name}, denying: {e}")
            return decision

        self._logger.info(f"Approval for {tool_name}: {'granted' if approved else 'refused'}")
        return ToolPolicyDecision.ALLOW if approved else decision

    async def _run_with_limits(
        self,
        tool: BoundToolRuntime,
        validated: Any,
        invocation: ToolInvocationContext,
        max_runtime_ms: Optional[int],
    ) -> Any:
        """Race the implementation against the runtime budget and abort signal."""
        abort_signal = invocation.abort_signal
        if abort_signal is not None and abort_signal.is_set():
            raise AbortError("Tool execution aborted before start")

        exec_task = asyncio.ensure_future(tool.exec(validated, invocation, self._config.capabilities))
        waiters = {exec_task}
        abort_task = None
        if abort_signal is not None:
            abort_task = asyncio.ensure_future(abort_signal.wait())
            waiters.add(abort_task)

        timeout = max_runtime_ms / 1000 if max_runtime_ms else None
        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            exec_task.cancel()
            raise
        finally:
            if abort_task is not None:
                abort_task.cancel()

        if exec_task in done:
            if exec_task.cancelled():
                raise AbortError("Tool execution was cancelled")
            return exec_task.result()

        exec_task.cancel()
        await asyncio.gather(exec_task, return_exceptions=True)

        if abort_task is not None and abort_task in done:
            raise AbortError("Tool execution aborted")
        raise _RuntimeBudgetExceeded()

    def _fail(
        self,
        tool_name: str,
        tool_call_id: str,
        span: _SpanState,
        started: float,
        code: ToolErrorCode,
        safe: str,
        event_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ToolErr:
        self._emit(ToolCallResultEvent(
            tool_call_id=tool_call_id,
            result={"error": event_message or safe},
            is_error=True,
        ))

        recoverable = code in (
            ToolErrorCode.UNAVAILABLE,
            ToolErrorCode.POLICY_DENIED,
            ToolErrorCode.VALIDATION,
            ToolErrorCode.INVALID_JSON,
        )
        log = self._logger.warning if recoverable else self._logger.error
        log(f"Tool {tool_name} failed: {code.value} (call {tool_call_id})")

        duration_ms = (time.monotonic() - started) * 1000
        end_metadata = {"durationMs": round(duration_ms, 2), "errorCode": code.value}
        end_metadata.update(metadata or {})
        self._end_span(
            span,
            {"ok": False, "errorCode": code.value},
            "WARNING" if code == ToolErrorCode.POLICY_DENIED else "ERROR",
            end_metadata,
        )

        return ToolErr(error_code=code, safe_message=safe)

    def _emit(self, event: Any) -> None:
        try:
            self._emit_sink(event)
        except Exception as e:
            self._logger.error(f"Event sink failed on {event.type}: {e}")

    @staticmethod
    def _event_args(validated: Any) -> Dict[str, Any]:
        if isinstance(validated, BaseModel):
            return validated.model_dump(mode="json")
        if isinstance(validated, dict):
            return validated
        return {"value": validated}

    def _start_span(self, tool_name: str, tool_call_id: str, raw_args: Any) -> _SpanState:
        state = _SpanState()
        port = self._config.span_port
        if port is None or not self._config.trace_id:
            return state

        span_input = None
        if self._config.span_input is not None:
            try:
                span_input = self._config.span_input(raw_args)
            except Exception:
                state.hook_input_failed = True

        try:
            state.handle = port.start_span(
                self._config.trace_id,
                f"tool:{tool_name}",
                span_input,
                {"toolCallId": tool_call_id, "hookInputFailed": state.hook_input_failed},
            )
        except Exception as e:
            self._logger.debug(f"Span start failed for {tool_name}: {e}")
        return state

    def _end_span(
        self,
        state: _SpanState,
        output: Any,
        level: str,
        metadata: Dict[str, Any],
        hook: Optional[SpanHook] = None,
    ) -> None:
        port = self._config.span_port
        if state.ended or port is None or state.handle is None:
            return
        state.ended = True

        if level == "DEFAULT":
            # Result values reach traces only through the output hook
            metadata["hookOutputFailed"] = False
            if hook is None:
                output = None
            else:
                try:
                    output = hook(output)
                except Exception:
                    output = None
                    metadata["hookOutputFailed"] = True

        try:
            port.end_span(state.handle, output, level, metadata)
        except Exception as e:
            self._logger.debug(f"Span end failed: {e}")
