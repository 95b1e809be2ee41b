"""
Prompt chaining: extract specifications, then reshape them as JSON

    extract -> transform -> parse -> END
       \\---------\\--(failed)--> END
"""
import asyncio
import logging
from typing import Optional

from integration.base import IntegrationError
from integration.llm_adapter import LLMAdapter
from integration.prompts import PromptLibrary
from patterns.common import default_executor, parse_json_object
from workflow.edges import END
from workflow.executor import RunResult, WorkflowExecutor
from workflow.graph import WorkflowGraph
from workflow.node import call_with_timeout
from workflow.state import StateField, StateSchema

logger = logging.getLogger(__name__)

CHAINING_PROMPTS = {
    "chaining.extract": "Extract the technical specifications from the following text:\n\n{text_input}",
    "chaining.transform": (
        "Transform the following specifications into a JSON object with 'cpu', 'memory', "
        "and 'storage' as keys:\n\n{specifications}"
    ),
}

CHAINING_STATE = StateSchema("chaining", [
    StateField("text", str, required=True),
    StateField("specifications", str),
    StateField("jsonText", str),
    StateField("specs", dict),
    StateField("failed", bool, default=False),
    StateField("parseFailed", bool, default=False),
    StateField("error", str),
])


def build_chaining_graph(
    llm: LLMAdapter,
    prompts: Optional[PromptLibrary] = None,
    timeout_seconds: Optional[float] = None
) -> WorkflowGraph:
    prompts = (prompts or PromptLibrary()).with_defaults(CHAINING_PROMPTS)

    async def ask(prompt: str):
        return await call_with_timeout(llm.invoke(prompt), timeout_seconds)

    async def extract(state):
        try:
            text = await ask(prompts.render("chaining.extract", text_input=state["text"]))
        except (IntegrationError, asyncio.TimeoutError) as e:
            logger.warning(f"Extraction failed: {e!r}")
            return {"failed": True, "error": f"extract: {e!r}"}
        return {"specifications": text.strip()}

    async def transform(state):
        try:
            text = await ask(prompts.render("chaining.transform", specifications=state["specifications"]))
        except (IntegrationError, asyncio.TimeoutError) as e:
            logger.warning(f"Transformation failed: {e!r}")
            return {"failed": True, "error": f"transform: {e!r}"}
        return {"jsonText": text.strip()}

    def parse(state):
        try:
            return {"specs": parse_json_object(state["jsonText"])}
        except ValueError as e:
            logger.warning(f"Model output is not a JSON object: {e}")
            return {"parseFailed": True, "error": str(e)}

    graph = WorkflowGraph(
        "chaining",
        schema=CHAINING_STATE,
        description="Extract specifications and convert them to JSON"
    )
    graph.add_node("extract", extract, reads={"text"}, writes={"specifications", "failed", "error"})
    graph.add_node("transform", transform, reads={"specifications"}, writes={"jsonText", "failed", "error"})
    graph.add_node("parse", parse, reads={"jsonText"}, writes={"specs", "parseFailed", "error"})

    graph.set_entry_point("extract")
    graph.add_conditional_edges("extract", [(lambda s: s["failed"], END)], default="transform")
    graph.add_conditional_edges("transform", [(lambda s: s["failed"], END)], default="parse")
    graph.add_edge("parse", END)
    return graph.check()


async def run_chaining(
    llm: LLMAdapter,
    text: str,
    executor: Optional[WorkflowExecutor] = None,
    **kwargs
) -> RunResult:
    graph = build_chaining_graph(llm, **kwargs)
    return await default_executor(executor).run(graph, {"text": text})
