"""
Tests for the primary/fallback location workflow
"""
import asyncio

import pytest

from integration.tool_registry import ToolRegistry
from patterns.fallback import (
    GENERAL_TOOL,
    PRECISE_TOOL,
    extract_city,
    location_tools,
    run_fallback,
)
from workflow.event_store import EventStore
from workflow.executor import WorkflowExecutor


class TestFallbackScenario:
    """Test the precise lookup and its general-area fallback"""

    @pytest.mark.asyncio
    async def test_precise_lookup_succeeds(self):
        """Test a known address is answered from the precise result"""
        result = await run_fallback("123 Fake St, Los Angeles")
        state = result.state

        assert result.completed
        assert result.path == ["primary_handler", "response_agent"]
        assert state["preciseLocationResult"] == (
            "Precise Coordinates: 34.0522 N, 118.2437 W. Building ID: A40."
        )
        assert state["primaryLocationFailed"] is False
        assert state.get("generalAreaResult") is None
        assert state["finalResponseMessage"] == (
            'Successfully found precise location information based on your query '
            '"123 Fake St, Los Angeles". '
            'Result: Precise Coordinates: 34.0522 N, 118.2437 W. Building ID: A40.'
        )

    @pytest.mark.asyncio
    async def test_vague_query_falls_back(self):
        """Test a failed precise lookup routes through the fallback"""
        result = await run_fallback("Vague Area near Los Angeles")
        state = result.state

        assert result.completed
        assert result.path == ["primary_handler", "fallback_handler", "response_agent"]
        assert state["primaryLocationFailed"] is True
        assert state.get("preciseLocationResult") is None
        assert state["generalAreaResult"] == (
            "General Area Info for Los Angeles: Climate is moderate, nearest airport is LAX."
        )
        assert state["finalResponseMessage"] == (
            'Could not find the precise address, but I found general information for the area. '
            'Query: "Vague Area near Los Angeles". '
            'General Info: General Area Info for Los Angeles: Climate is moderate, nearest airport is LAX.'
        )

    @pytest.mark.asyncio
    async def test_both_lookups_fail(self):
        """Test the apology message when neither lookup produces a result"""
        def precise(address):
            raise LookupError("unknown address")

        def general(city):
            raise ConnectionError("area service offline")

        tools = ToolRegistry()
        tools.register_handler(PRECISE_TOOL, "precise", precise)
        tools.register_handler(GENERAL_TOOL, "general", general)

        result = await run_fallback("Nowhere, Atlantis", tools=tools)

        assert result.completed
        assert result.state["primaryLocationFailed"] is True
        assert "area service offline" in result.state["error"]
        assert result.state["finalResponseMessage"].startswith("I apologize")

    @pytest.mark.asyncio
    async def test_slow_primary_lookup_times_out(self):
        """Test a timed-out precise lookup takes the fallback branch"""
        async def slow_precise(address):
            await asyncio.sleep(5)
            return "too late"

        tools = ToolRegistry()
        tools.register_handler(PRECISE_TOOL, "precise", slow_precise)
        tools.register_handler(GENERAL_TOOL, "general", lambda city: f"Info for {city}")

        result = await run_fallback("1 Main St, Springfield", tools=tools, timeout_seconds=0.01)

        assert result.path == ["primary_handler", "fallback_handler", "response_agent"]
        assert result.state["generalAreaResult"] == "Info for Springfield"

    @pytest.mark.asyncio
    async def test_route_events_recorded(self):
        """Test the fallback branch is visible in the event log"""
        store = EventStore()

        result = await run_fallback(
            "Vague Area near Los Angeles", executor=WorkflowExecutor(event_store=store)
        )

        routes = await store.get_route_events(result.run_id)
        assert [e.target for e in routes][:2] == ["fallback_handler", "response_agent"]

    @pytest.mark.asyncio
    async def test_location_tools_validate_arguments(self):
        """Test the simulated lookups reject missing arguments"""
        tools = location_tools()

        failed = await tools.execute(GENERAL_TOOL, {})

        assert not failed.success
        assert "Invalid arguments" in failed.error


class TestExtractCity:
    """Test the city heuristic"""

    def test_text_after_last_comma(self):
        """Test the last comma-separated part is the city"""
        assert extract_city("123 Fake St, Los Angeles") == "Los Angeles"
        assert extract_city("Apt 4, 9 Elm Rd, Boston") == "Boston"

    def test_text_after_near_or_in(self):
        """Test 'near' and 'in' mark the city without a comma"""
        assert extract_city("Vague Area near Los Angeles") == "Los Angeles"
        assert extract_city("Somewhere in Chicago") == "Chicago"

    def test_whole_query_otherwise(self):
        """Test the query itself is used as a last resort"""
        assert extract_city("  Paris ") == "Paris"
