"""
Primary / fallback location lookup

    primary_handler --(primaryLocationFailed)--> fallback_handler -> response_agent -> END
                    \\-------------(default)----------------------> response_agent

The primary handler tries a precise address lookup. Its failure is written
to ``primaryLocationFailed`` rather than raised, so the conditional edge can
send the run through the general-area fallback before the response is built.
"""
import asyncio
import logging
import re
from typing import Optional

from integration.base import IntegrationError
from integration.tool_registry import ToolRegistry, ToolSchema
from patterns.common import default_executor
from workflow.edges import END
from workflow.executor import RunResult, WorkflowExecutor
from workflow.graph import WorkflowGraph
from workflow.node import call_with_timeout
from workflow.state import StateField, StateSchema

logger = logging.getLogger(__name__)

PRECISE_TOOL = "get_precise_location_info"
GENERAL_TOOL = "get_general_area_info"

LOCATION_STATE = StateSchema("location", [
    StateField("query", str, required=True, description="Original user query"),
    StateField("preciseLocationResult", str, description="Result of the precise lookup"),
    StateField("primaryLocationFailed", bool, default=False),
    StateField("generalAreaResult", str, description="Result of the general-area lookup"),
    StateField("finalResponseMessage", str, default=""),
    StateField("error", str),
])


def get_precise_location_info(address: str) -> str:
    """Simulated precise lookup: only a known address resolves"""
    if "123 Fake St" in address:
        return "Precise Coordinates: 34.0522 N, 118.2437 W. Building ID: A40."
    raise LookupError("Precise lookup failed: Address not specific enough or invalid.")


def get_general_area_info(city: str) -> str:
    """Simulated general-area lookup"""
    return f"General Area Info for {city}: Climate is moderate, nearest airport is LAX."


def location_tools() -> ToolRegistry:
    """Registry with the two simulated lookups"""
    tools = ToolRegistry()
    tools.register_handler(
        PRECISE_TOOL,
        "Look up precise coordinates for a street address",
        get_precise_location_info,
        schema=ToolSchema(
            parameters={"address": {"type": "string"}},
            required_params=["address"],
            returns={"type": "string"},
        ),
    )
    tools.register_handler(
        GENERAL_TOOL,
        "Look up general information about a city",
        get_general_area_info,
        schema=ToolSchema(
            parameters={"city": {"type": "string"}},
            required_params=["city"],
            returns={"type": "string"},
        ),
    )
    return tools


def extract_city(query: str) -> str:
    """Best-effort city extraction

    Text after the last comma; without a comma, text after the last
    " near " or " in "; otherwise the whole query.
    """
    query = query.strip()
    if "," in query:
        return query.rsplit(",", 1)[1].strip()
    matches = list(re.finditer(r"\s(?:near|in)\s", query, re.IGNORECASE))
    if matches:
        return query[matches[-1].end():].strip()
    return query


def build_response(state) -> str:
    query = state["query"]
    if state.get("preciseLocationResult"):
        return (
            f"Successfully found precise location information based on your query \"{query}\". "
            f"Result: {state['preciseLocationResult']}"
        )
    if state.get("generalAreaResult"):
        return (
            f"Could not find the precise address, but I found general information for the area. "
            f"Query: \"{query}\". General Info: {state['generalAreaResult']}"
        )
    return (
        "I apologize, but I was unable to retrieve either precise or general location "
        "information based on your query. Please try a different query."
    )


def build_fallback_graph(
    tools: Optional[ToolRegistry] = None,
    timeout_seconds: Optional[float] = None
) -> WorkflowGraph:
    """Location workflow with a conditional fallback branch"""
    tools = tools or location_tools()

    async def primary_handler(state):
        try:
            result = await call_with_timeout(
                tools.call(PRECISE_TOOL, {"address": state["query"]}), timeout_seconds
            )
        except (IntegrationError, asyncio.TimeoutError) as e:
            logger.warning(f"Primary handler failed: {e}")
            return {"primaryLocationFailed": True, "error": str(e) or repr(e)}
        return {"preciseLocationResult": result, "primaryLocationFailed": False}

    async def fallback_handler(state):
        city = extract_city(state["query"])
        logger.info(f"Fallback triggered. Extracted city: {city}")
        try:
            result = await call_with_timeout(
                tools.call(GENERAL_TOOL, {"city": city}), timeout_seconds
            )
        except (IntegrationError, asyncio.TimeoutError) as e:
            logger.warning(f"Fallback handler failed: {e}")
            return {"error": str(e) or repr(e)}
        return {"generalAreaResult": result}

    def response_agent(state):
        return {"finalResponseMessage": build_response(state)}

    graph = WorkflowGraph(
        "fallback",
        schema=LOCATION_STATE,
        description="Precise location lookup with a general-area fallback"
    )
    graph.add_node(
        "primary_handler", primary_handler,
        reads={"query"}, writes={"preciseLocationResult", "primaryLocationFailed", "error"},
        description="Try the precise lookup"
    )
    graph.add_node(
        "fallback_handler", fallback_handler,
        reads={"query", "primaryLocationFailed"}, writes={"generalAreaResult", "error"},
        description="Look up the general area of the extracted city"
    )
    graph.add_node(
        "response_agent", response_agent,
        reads={"query", "preciseLocationResult", "generalAreaResult"},
        writes={"finalResponseMessage"},
        description="Build the user-facing message"
    )

    graph.set_entry_point("primary_handler")
    graph.add_conditional_edges(
        "primary_handler",
        [(lambda s: s["primaryLocationFailed"], "fallback_handler")],
        default="response_agent"
    )
    graph.add_edge("fallback_handler", "response_agent")
    graph.add_edge("response_agent", END)
    return graph.check()


async def run_fallback(
    query: str,
    tools: Optional[ToolRegistry] = None,
    executor: Optional[WorkflowExecutor] = None,
    timeout_seconds: Optional[float] = None
) -> RunResult:
    graph = build_fallback_graph(tools, timeout_seconds=timeout_seconds)
    return await default_executor(executor).run(graph, {"query": query})
