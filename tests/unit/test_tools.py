"""Unit tests for the tool contract layer."""
from __future__ import annotations

import json

import pytest

from action_executor import ActionExecutor
from conftest import SEARCH_PAGE, FakeBrowser
from page_inspector import PageInspector
from tools import ClickArgs, FillArgs, ToolContract, ToolName


def make_contract(browser) -> ToolContract:
    inspector = PageInspector(browser, snapshot_settle_ms=0, page_text_settle_ms=0)
    executor = ActionExecutor(
        browser,
        inspector,
        navigation_settle_ms=0,
        click_wait_ms=0,
        submit_wait_ms=0,
        type_wait_ms=0,
        scroll_settle_ms=0,
        max_wait_ms=10,
    )
    return ToolContract(executor, inspector)


async def started(browser: FakeBrowser) -> ToolContract:
    await browser.start()
    return make_contract(browser)


class TestSchemas:
    """Tests for the model-facing tool definitions."""

    def test_closed_tool_set(self, mock_browser):
        contract = make_contract(mock_browser)
        assert contract.names == [
            "snapshot",
            "navigate",
            "click",
            "fill",
            "getPageText",
            "scroll",
            "executeJS",
            "waitFor",
            "done",
        ]
        assert set(contract.specs) == set(ToolName)

    def test_openai_tools_shape(self, mock_browser):
        tools = make_contract(mock_browser).openai_tools()
        assert len(tools) == 9
        for tool in tools:
            assert tool["type"] == "function"
            assert tool["function"]["description"]
            assert tool["function"]["parameters"]["type"] == "object"

    def test_camel_case_argument_names(self, mock_browser):
        tools = {t["function"]["name"]: t["function"] for t in make_contract(mock_browser).openai_tools()}

        click = tools["click"]["parameters"]
        assert set(click["properties"]) == {"ref", "waitMs"}
        assert click["required"] == ["ref"]
        assert click["properties"]["waitMs"]["type"] == "integer"

        fill = tools["fill"]["parameters"]
        assert set(fill["properties"]) == {"ref", "text", "pressEnter"}
        assert sorted(fill["required"]) == ["ref", "text"]

        scroll = tools["scroll"]["parameters"]
        assert scroll["properties"]["direction"]["enum"] == ["up", "down"]

        assert tools["snapshot"]["parameters"]["properties"] == {}
        assert "required" not in tools["snapshot"]["parameters"]

    def test_descriptions_state_constraints(self, mock_browser):
        tools = {t["function"]["name"]: t["function"] for t in make_contract(mock_browser).openai_tools()}
        assert "FIRST" in tools["snapshot"]["description"]
        assert "Never invent refs" in tools["click"]["description"]
        assert "MUST" in tools["done"]["description"]

    def test_args_accept_field_and_alias_names(self):
        assert FillArgs.model_validate({"ref": "e1", "text": "x", "pressEnter": True}).press_enter is True
        assert FillArgs.model_validate({"ref": "e1", "text": "x", "press_enter": True}).press_enter is True
        assert ClickArgs.model_validate({"ref": "e1"}).wait_ms is None


class TestDispatch:
    """Tests for boundary validation and routing."""

    @pytest.mark.asyncio
    async def test_navigate_then_snapshot(self, fake_browser: FakeBrowser):
        contract = await started(fake_browser)

        nav = await contract.dispatch("navigate", json.dumps({"url": SEARCH_PAGE}), step=1, call_id="c1")
        snap = await contract.dispatch("snapshot", "{}", step=1, call_id="c2")

        assert nav.result["success"] is True
        assert nav.arguments == {"url": SEARCH_PAGE}
        assert nav.step == 1
        assert nav.call_id == "c1"
        assert snap.result["count"] == 3

    @pytest.mark.asyncio
    async def test_click_uses_camel_case_arguments(self, fake_browser: FakeBrowser):
        contract = await started(fake_browser)
        await contract.dispatch("navigate", {"url": SEARCH_PAGE}, 1, "c1")
        await contract.dispatch("snapshot", "", 1, "c2")

        record = await contract.dispatch("click", '{"ref": "e2", "waitMs": 0}', 1, "c3")

        assert record.result["success"] is True
        assert record.arguments == {"ref": "e2", "waitMs": 0}

    @pytest.mark.asyncio
    async def test_unknown_tool(self, mock_browser):
        record = await make_contract(mock_browser).dispatch("hover", "{}", 2, "c9")
        assert record.is_error
        assert record.result["error"].startswith("Unknown tool: hover")
        assert "snapshot" in record.result["error"]

    @pytest.mark.asyncio
    async def test_malformed_json(self, mock_browser):
        record = await make_contract(mock_browser).dispatch("navigate", "{url: nope", 1, "c1")
        assert record.is_error
        assert "Malformed JSON arguments for navigate" in record.result["error"]

    @pytest.mark.asyncio
    async def test_non_object_arguments(self, mock_browser):
        record = await make_contract(mock_browser).dispatch("navigate", '["https://x.com"]', 1, "c1")
        assert record.result["error"] == "Arguments for navigate must be a JSON object"

    @pytest.mark.asyncio
    async def test_schema_violation(self, mock_browser):
        contract = make_contract(mock_browser)

        missing = await contract.dispatch("fill", '{"ref": "e1"}', 1, "c1")
        bad_enum = await contract.dispatch("scroll", '{"direction": "left"}', 1, "c2")

        assert missing.result["error"].startswith("Invalid arguments for fill")
        assert "text" in missing.result["error"]
        assert bad_enum.result["error"].startswith("Invalid arguments for scroll")
        mock_browser.evaluate.assert_not_called()

    @pytest.mark.asyncio
    async def test_stale_ref_error_reaches_model(self, fake_browser: FakeBrowser):
        contract = await started(fake_browser)

        record = await contract.dispatch("click", {"ref": "e7"}, 3, "c1")

        assert record.result == {"error": "Element not found: e7. Call snapshot() again to get fresh refs."}

    @pytest.mark.asyncio
    async def test_done_has_no_side_effect(self, mock_browser):
        record = await make_contract(mock_browser).dispatch("done", '{"summary": "Found it"}', 4, "c1")

        assert record.is_done
        assert record.result == {"done": True, "summary": "Found it"}
        mock_browser.evaluate.assert_not_called()
        mock_browser.goto.assert_not_called()

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_error(self, mock_browser):
        contract = make_contract(mock_browser)
        mock_browser.evaluate.side_effect = RuntimeError("page crashed")

        record = await contract.dispatch("getPageText", "{}", 1, "c1")

        assert record.result == {"error": "getPageText failed: page crashed"}
