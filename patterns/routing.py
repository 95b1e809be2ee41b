"""
Intent routing

A coordinator asks the reasoning service for a one-word decision and a
conditional edge hands the request to the matching handler:

    coordinator -> booker | info | unclear (default) -> END
"""
import asyncio
import logging
from typing import Optional

from integration.base import IntegrationError
from integration.llm_adapter import LLMAdapter
from integration.prompts import PromptLibrary
from patterns.common import default_executor, normalize_label
from workflow.edges import END
from workflow.executor import RunResult, WorkflowExecutor
from workflow.graph import WorkflowGraph
from workflow.node import Node, call_with_timeout
from workflow.state import StateField, StateSchema

logger = logging.getLogger(__name__)

BOOKER = "booker"
INFO = "info"
UNCLEAR = "unclear"

ROUTING_PROMPTS = {
    "routing.coordinator": (
        "Analyze the user's request and determine which specialist handler should process it.\n"
        " - If the request is related to booking flights or hotels, output 'booker'.\n"
        " - For all other general information questions, output 'info'.\n"
        " - If the request is unclear or doesn't fit either category, output 'unclear'.\n"
        "ONLY output one word: 'booker', 'info', or 'unclear'."
    ),
}

ROUTING_STATE = StateSchema("routing", [
    StateField("request", str, required=True),
    StateField("decision", str, description="Coordinator label, normalized"),
    StateField("output", str),
    StateField("routerFailed", bool, default=False),
    StateField("error", str),
])


def booking_handler(request: str) -> str:
    return f"Booking Handler processed request: '{request}'. Result: Simulated booking action."


def info_handler(request: str) -> str:
    return f"Info Handler processed request: '{request}'. Result: Simulated information retrieval."


def unclear_handler(request: str) -> str:
    return f"Coordinator could not delegate request: '{request}'. Please clarify."


def _handler_node(name: str, handler) -> Node:
    def run(state):
        logger.info(f"Delegating to {name} handler")
        return {"output": handler(state["request"])}

    return Node(name=name, func=run, reads={"request"}, writes={"output"})


def build_routing_graph(
    llm: LLMAdapter,
    prompts: Optional[PromptLibrary] = None,
    timeout_seconds: Optional[float] = None
) -> WorkflowGraph:
    """Coordinator plus three handlers; ``unclear`` is the default branch"""
    prompts = (prompts or PromptLibrary()).with_defaults(ROUTING_PROMPTS)

    async def coordinator(state):
        messages = [
            {"role": "system", "content": prompts.render("routing.coordinator")},
            {"role": "user", "content": state["request"]},
        ]
        try:
            raw = await call_with_timeout(llm.invoke(messages), timeout_seconds)
        except (IntegrationError, asyncio.TimeoutError) as e:
            logger.warning(f"Coordinator failed, request will be treated as unclear: {e!r}")
            return {"routerFailed": True, "error": repr(e)}
        decision = normalize_label(raw)
        logger.info(f"Coordinator decision: {decision}")
        return {"decision": decision}

    graph = WorkflowGraph(
        "routing",
        schema=ROUTING_STATE,
        description="Classify a request and delegate it to a specialist handler"
    )
    graph.add_node(
        "coordinator", coordinator,
        reads={"request"}, writes={"decision", "routerFailed", "error"},
        description="Classify the request"
    )
    graph.add_node(_handler_node(BOOKER, booking_handler))
    graph.add_node(_handler_node(INFO, info_handler))
    graph.add_node(_handler_node(UNCLEAR, unclear_handler))

    graph.set_entry_point("coordinator")
    graph.add_router(
        "coordinator",
        lambda s: s.get("decision"),
        {BOOKER: BOOKER, INFO: INFO},
        default=UNCLEAR
    )
    for handler in (BOOKER, INFO, UNCLEAR):
        graph.add_edge(handler, END)
    return graph.check()


async def run_routing(
    llm: LLMAdapter,
    request: str,
    executor: Optional[WorkflowExecutor] = None,
    **kwargs
) -> RunResult:
    graph = build_routing_graph(llm, **kwargs)
    return await default_executor(executor).run(graph, {"request": request})
