"""
Tool Policy Tests
-----------------
Tests cover:
- Deny by default
- Allowlist short-circuit before effect checks
- require_approval for configured effects
- Loading from config sections and YAML files (fail closed)
"""

from pathlib import Path
import dataclasses
import sys

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from tooling.policy import (
    DENY_ALL_POLICY, ToolBudgets, ToolPolicyContext, create_tool_allowlist_policy,
    load_tool_policy, load_tool_policy_file,
)
from tooling.types import ToolEffect, ToolPolicyDecision


CTX = ToolPolicyContext(run_id="run_1")


class TestDenyAll:
    """Tests for DENY_ALL_POLICY."""

    @pytest.mark.parametrize("effect", list(ToolEffect))
    def test_denies_everything(self, effect):
        assert DENY_ALL_POLICY.decide(CTX, "core__get_current_time", effect) == ToolPolicyDecision.DENY

    def test_is_immutable(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            DENY_ALL_POLICY.allowed_tools = frozenset({"core__get_current_time"})

    def test_has_no_budgets(self):
        assert DENY_ALL_POLICY.budgets == ToolBudgets()
        assert len(DENY_ALL_POLICY.allowed_tools) == 0


class TestAllowlistPolicy:
    """Tests for create_tool_allowlist_policy."""

    def test_allows_listed_tool(self):
        policy = create_tool_allowlist_policy(["core__get_current_time"])
        assert policy.decide(CTX, "core__get_current_time", ToolEffect.READ_ONLY) == ToolPolicyDecision.ALLOW

    def test_denies_unlisted_tool(self):
        policy = create_tool_allowlist_policy(["core__get_current_time"])
        assert policy.decide(CTX, "web__search", ToolEffect.READ_ONLY) == ToolPolicyDecision.DENY

    def test_requires_approval_for_effect(self):
        policy = create_tool_allowlist_policy(
            ["mail__send"],
            require_approval_for_effects=[ToolEffect.EXTERNAL_SIDE_EFFECT],
        )
        decision = policy.decide(CTX, "mail__send", ToolEffect.EXTERNAL_SIDE_EFFECT)
        assert decision == ToolPolicyDecision.REQUIRE_APPROVAL

    def test_allowlist_short_circuits(self):
        """An unlisted tool is denied even when its effect needs approval."""
        policy = create_tool_allowlist_policy(
            [],
            require_approval_for_effects=["external_side_effect"],
        )
        assert policy.decide(CTX, "mail__send", ToolEffect.EXTERNAL_SIDE_EFFECT) == ToolPolicyDecision.DENY

    def test_budgets_carried(self):
        policy = create_tool_allowlist_policy(["a__b"], budgets=ToolBudgets(max_runtime_ms=100))
        assert policy.budgets.max_runtime_ms == 100
        assert policy.budgets.max_result_bytes is None

    def test_rejects_unknown_effect(self):
        with pytest.raises(ValueError):
            create_tool_allowlist_policy(["a__b"], require_approval_for_effects=["teleport"])


class TestLoadPolicy:
    """Tests for config-driven policy loading."""

    def test_missing_section_denies_all(self):
        assert load_tool_policy(None) is DENY_ALL_POLICY
        assert load_tool_policy({}) is DENY_ALL_POLICY

    def test_full_section(self):
        policy = load_tool_policy({
            "allowed_tools": ["core__get_current_time", "mail__send"],
            "require_approval_for_effects": ["EXTERNAL_SIDE_EFFECT"],
            "budgets": {"max_runtime_ms": 5000, "max_result_bytes": "1024"},
        })

        assert policy.allowed_tools == {"core__get_current_time", "mail__send"}
        assert policy.require_approval_for_effects == {ToolEffect.EXTERNAL_SIDE_EFFECT}
        assert policy.budgets == ToolBudgets(max_runtime_ms=5000, max_result_bytes=1024)

    def test_comma_separated_allowlist(self):
        """Environment overrides arrive as strings."""
        policy = load_tool_policy({"allowed_tools": "core__get_current_time, core__get_current_date"})
        assert policy.allowed_tools == {"core__get_current_time", "core__get_current_date"}

    @pytest.mark.parametrize("section", [
        {"allowed_tools": ["a__b"], "require_approval_for_effects": ["teleport"]},
        {"allowed_tools": ["a__b"], "budgets": {"max_runtime_ms": "soon"}},
        {"allowed_tools": ["a__b"], "budgets": {"max_runtime_ms": -5}},
        {"allowed_tools": ["a__b"], "budgets": ["not", "a", "mapping"]},
    ])
    def test_bad_section_fails_closed(self, section):
        assert load_tool_policy(section) is DENY_ALL_POLICY

    def test_load_from_yaml_file(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text(
            "tool_policy:\n"
            "  allowed_tools:\n"
            "    - core__get_current_time\n"
            "  budgets:\n"
            "    max_runtime_ms: 250\n"
        )
        policy = load_tool_policy_file(path)
        assert policy.decide(CTX, "core__get_current_time", ToolEffect.READ_ONLY) == ToolPolicyDecision.ALLOW
        assert policy.budgets.max_runtime_ms == 250

    def test_missing_file_denies_all(self, tmp_path):
        assert load_tool_policy_file(tmp_path / "absent.yaml") is DENY_ALL_POLICY

    def test_non_mapping_file_denies_all(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("- just\n- a list\n")
        assert load_tool_policy_file(path) is DENY_ALL_POLICY

    def test_malformed_yaml_denies_all(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("tool_policy:\n  allowed_tools: [core__get_current_time\n")
        assert load_tool_policy_file(path) is DENY_ALL_POLICY

    def test_unreadable_path_denies_all(self, tmp_path):
        """A directory exists but cannot be opened as a file."""
        assert load_tool_policy_file(tmp_path) is DENY_ALL_POLICY


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
