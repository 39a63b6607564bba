"""
Tool Source & Catalog Tests
---------------------------
Tests cover:
- Duplicate ID rejection
- Precomputed, stable spec listing
- Policy-filtered catalogs and EMPTY_CATALOG
"""

from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from tooling.builtin import BUILTIN_TOOLS
from tooling.contract import to_bound_tool_runtime, to_bound_tool_runtimes
from tooling.policy import DENY_ALL_POLICY, ToolPolicyContext, create_tool_allowlist_policy
from tooling.source import EMPTY_CATALOG, StaticToolSource, ToolCatalog, create_tool_catalog
from tooling.types import ToolEffect
from conftest import make_echo_tool


class TestStaticToolSource:
    """Tests for StaticToolSource."""

    @pytest.fixture
    def source(self):
        return StaticToolSource(to_bound_tool_runtimes(BUILTIN_TOOLS))

    def test_lookup(self, source):
        tool = source.get_bound_tool("core__get_current_time")
        assert tool is not None
        assert tool.id == "core__get_current_time"
        assert source.has_tool_id("core__get_current_date")
        assert "core__get_current_date" in source
        assert len(source) == 2

    def test_unknown_tool(self, source):
        assert source.get_bound_tool("core__launch_missiles") is None
        assert not source.has_tool_id("core__launch_missiles")

    def test_duplicate_ids_rejected(self):
        tools = [to_bound_tool_runtime(make_echo_tool()), to_bound_tool_runtime(make_echo_tool())]
        with pytest.raises(ValueError, match="test__echo"):
            StaticToolSource(tools)

    def test_specs_precomputed(self, source):
        first = source.list_tool_specs()
        assert first is source.list_tool_specs()
        assert [spec.name for spec in first] == ["core__get_current_time", "core__get_current_date"]

    def test_empty_source(self):
        source = StaticToolSource([])
        assert source.list_tool_specs() == ()
        assert source.get_bound_tool("core__get_current_time") is None


class TestToolCatalog:
    """Tests for policy-filtered catalogs."""

    @pytest.fixture
    def specs(self):
        return [
            to_bound_tool_runtime(make_echo_tool("test__read")).spec,
            to_bound_tool_runtime(make_echo_tool("test__write", effect=ToolEffect.STATE_CHANGE)).spec,
            to_bound_tool_runtime(make_echo_tool("test__send", effect=ToolEffect.EXTERNAL_SIDE_EFFECT)).spec,
        ]

    def test_deny_all_gives_empty_catalog(self, specs):
        assert create_tool_catalog(specs, DENY_ALL_POLICY) is EMPTY_CATALOG

    def test_default_policy_is_deny_all(self, specs):
        assert create_tool_catalog(specs) is EMPTY_CATALOG

    def test_only_allowed_tools_visible(self, specs):
        policy = create_tool_allowlist_policy(["test__read", "test__write"])
        catalog = create_tool_catalog(specs, policy)
        assert catalog.names() == ["test__read", "test__write"]
        assert "test__send" not in catalog

    def test_approval_tools_hidden(self, specs):
        policy = create_tool_allowlist_policy(
            ["test__read", "test__send"],
            require_approval_for_effects=[ToolEffect.EXTERNAL_SIDE_EFFECT],
        )
        assert create_tool_catalog(specs, policy).names() == ["test__read"]

    def test_context_passed_to_policy(self, specs):
        seen = []

        class RecordingPolicy:
            def decide(self, ctx, tool_id, effect):
                seen.append(ctx.run_id)
                return "deny"

        create_tool_catalog(specs, RecordingPolicy())
        create_tool_catalog(specs, RecordingPolicy(), ToolPolicyContext(run_id="run_9"))
        assert set(seen) == {"catalog_bootstrap", "run_9"}

    def test_duplicate_specs_rejected(self, specs):
        with pytest.raises(ValueError, match="test__read"):
            ToolCatalog([specs[0], specs[0]])

    def test_openai_function_export(self, specs):
        catalog = create_tool_catalog(specs, create_tool_allowlist_policy(["test__read"]))
        functions = catalog.to_openai_functions()
        assert functions[0]["function"]["name"] == "test__read"
        assert functions[0]["function"]["parameters"]["required"] == ["value"]

    def test_empty_catalog(self):
        assert len(EMPTY_CATALOG) == 0
        assert EMPTY_CATALOG.get("anything") is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
