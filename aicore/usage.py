"""
Usage Facts
-----------
Billing-relevant usage emitted by executors, and the idempotency key the
billing subscriber commits under.

Two schemas, chosen by executor type:
- Strict: inproc/sandbox executors are billing-authoritative, so the
  usage unit ID is mandatory and unknown fields are rejected
- Hints: external executors report best-effort usage, so the unit ID is
  optional and unknown fields are preserved

The MISSING:{run_id}/{call_index} fallback is assigned by the consumer,
never by emitters.
"""

from enum import Enum
from typing import Any, Dict, Mapping, NamedTuple, Optional, Union
import hashlib
import json

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ExecutorType(str, Enum):
    """Kinds of graph executors that report usage."""
    LANGGRAPH_SERVER = "langgraph_server"  # External, hints only
    CLAUDE_SDK = "claude_sdk"              # External, hints only
    INPROC = "inproc"                      # Billing-authoritative
    SANDBOX = "sandbox"                    # Billing-authoritative


BILLING_AUTHORITATIVE_EXECUTORS = frozenset({ExecutorType.INPROC, ExecutorType.SANDBOX})


class UsageFact(BaseModel):
    """Fields common to every usage fact."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    run_id: str = Field(min_length=1)
    attempt: int = Field(ge=0)
    usage_unit_id: Optional[str] = None
    source: str = Field(min_length=1)
    executor_type: ExecutorType
    billing_account_id: str = Field(min_length=1)
    virtual_key_id: str = Field(min_length=1)
    graph_id: str
    provider: Optional[str] = None
    model: Optional[str] = None
    input_tokens: Optional[int] = Field(default=None, ge=0)
    output_tokens: Optional[int] = Field(default=None, ge=0)
    cache_read_tokens: Optional[int] = Field(default=None, ge=0)
    cache_write_tokens: Optional[int] = Field(default=None, ge=0)
    cost_usd: Optional[float] = Field(default=None, ge=0)
    usage_raw: Optional[Dict[str, Any]] = None  # Debug only, never billed on

    @field_validator("graph_id")
    @classmethod
    def _graph_id_namespaced(cls, value: str) -> str:
        provider, sep, name = value.partition(":")
        if not sep or not provider or not name:
            raise ValueError("graphId must be namespaced as providerId:graphName")
        return value

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class UsageFactStrict(UsageFact):
    """Usage from billing-authoritative executors."""

    model_config = ConfigDict(extra="forbid")

    usage_unit_id: str = Field(min_length=1)

    @field_validator("executor_type")
    @classmethod
    def _authoritative_only(cls, value: ExecutorType) -> ExecutorType:
        if value not in BILLING_AUTHORITATIVE_EXECUTORS:
            raise ValueError(f"executorType {value.value} is not billing-authoritative")
        return value


class UsageFactHints(UsageFact):
    """Best-effort usage from external executors."""

    model_config = ConfigDict(extra="allow")

    @field_validator("executor_type")
    @classmethod
    def _external_only(cls, value: ExecutorType) -> ExecutorType:
        if value in BILLING_AUTHORITATIVE_EXECUTORS:
            raise ValueError(f"executorType {value.value} must use the strict schema")
        return value


def is_billing_authoritative(executor_type: Any) -> bool:
    """True when usage from this executor type must validate strictly."""
    try:
        return ExecutorType(executor_type) in BILLING_AUTHORITATIVE_EXECUTORS
    except ValueError:
        return False


def validate_usage_fact(fact: Union[UsageFact, Mapping[str, Any]]) -> UsageFact:
    """
    Validate a usage fact against the schema its executor type requires.

    Raises:
        pydantic.ValidationError: if the fact does not satisfy the schema
    """
    if isinstance(fact, BaseModel):
        data = fact.model_dump(by_alias=True, exclude_none=True)
    else:
        data = dict(fact)

    executor_type = data.get("executorType", data.get("executor_type"))
    if is_billing_authoritative(executor_type):
        return UsageFactStrict.model_validate(data)
    return UsageFactHints.model_validate(data)


class UsageIdempotencyKey(NamedTuple):
    """Ledger key; a redelivered fact maps to the same key."""
    source: str
    run_id: str
    attempt: int
    usage_unit_id: str

    def as_string(self) -> str:
        return f"{self.source}/{self.run_id}/{self.attempt}/{self.usage_unit_id}"


def missing_usage_unit_id(run_id: str, call_index: int) -> str:
    """Deterministic fallback unit ID for facts that arrive without one."""
    return f"MISSING:{run_id}/{call_index}"


def idempotency_key_for(fact: UsageFact, call_index: int) -> UsageIdempotencyKey:
    """
    Build the commit key for a validated fact.

    call_index is the position of the fact among the distinct facts of its
    run and is only used when the fact carries no usage unit ID.
    """
    unit_id = fact.usage_unit_id or missing_usage_unit_id(fact.run_id, call_index)
    return UsageIdempotencyKey(
        source=fact.source,
        run_id=fact.run_id,
        attempt=fact.attempt,
        usage_unit_id=unit_id,
    )


def canonical_fact_json(fact: Union[UsageFact, Mapping[str, Any]]) -> str:
    """Stable JSON for a fact: camelCase keys, sorted, no None values."""
    if isinstance(fact, BaseModel):
        payload = fact.model_dump(by_alias=True, mode="json", exclude_none=True)
    else:
        payload = {k: v for k, v in fact.items() if v is not None}
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def fact_digest(fact: Union[UsageFact, Mapping[str, Any]]) -> str:
    """sha256 of the canonical JSON; equal for a fact and its redelivery."""
    return hashlib.sha256(canonical_fact_json(fact).encode("utf-8")).hexdigest()
