"""
Parallel fan-out and synthesis

    analyze(summarize | generate_questions | extract_key_terms) -> synthesize -> END

The three analysis nodes run concurrently against the same state and each
owns its own output field (and its own error field), so their updates
merge without conflict before synthesis.
"""
import asyncio
import logging
from typing import Optional

from integration.base import IntegrationError
from integration.llm_adapter import LLMAdapter
from integration.prompts import PromptLibrary
from patterns.common import default_executor
from workflow.edges import END
from workflow.executor import RunResult, WorkflowExecutor
from workflow.graph import WorkflowGraph
from workflow.node import Node, call_with_timeout
from workflow.state import StateField, StateSchema

logger = logging.getLogger(__name__)

PARALLEL_PROMPTS = {
    "parallel.summarize": "Summarize the following topic concisely:\n\n{topic}",
    "parallel.questions": "Generate three interesting questions about the following topic:\n\n{topic}",
    "parallel.terms": "Identify 5-10 key terms from the following topic, separated by commas:\n\n{topic}",
    "parallel.synthesis": (
        "Based on the following information:\n"
        "Summary: {summary}\n"
        "Related Questions: {questions}\n"
        "Key Terms: {key_terms}\n\n"
        "Synthesize a comprehensive answer about the topic: {topic}"
    ),
}

# output field -> prompt name
ANALYSES = {
    "summary": "parallel.summarize",
    "questions": "parallel.questions",
    "keyTerms": "parallel.terms",
}

PARALLEL_STATE = StateSchema("parallel", [
    StateField("topic", str, required=True),
    StateField("summary", str),
    StateField("questions", str),
    StateField("keyTerms", str),
    StateField("summaryError", str),
    StateField("questionsError", str),
    StateField("keyTermsError", str),
    StateField("response", str),
    StateField("synthesisFailed", bool, default=False),
])


def _analysis_node(
    name: str,
    output_field: str,
    prompt_name: str,
    llm: LLMAdapter,
    prompts: PromptLibrary,
    timeout_seconds: Optional[float]
) -> Node:
    error_field = f"{output_field}Error"

    async def analyze(state):
        prompt = prompts.render(prompt_name, topic=state["topic"])
        try:
            text = await call_with_timeout(llm.invoke(prompt), timeout_seconds)
        except (IntegrationError, asyncio.TimeoutError) as e:
            logger.warning(f"{name} failed: {e!r}")
            return {error_field: repr(e)}
        return {output_field: text.strip()}

    return Node(name=name, func=analyze, reads={"topic"}, writes={output_field, error_field})


def build_parallel_graph(
    llm: LLMAdapter,
    prompts: Optional[PromptLibrary] = None,
    timeout_seconds: Optional[float] = None
) -> WorkflowGraph:
    prompts = (prompts or PromptLibrary()).with_defaults(PARALLEL_PROMPTS)

    async def synthesize(state):
        prompt = prompts.render(
            "parallel.synthesis",
            topic=state["topic"],
            summary=state.get("summary") or "(unavailable)",
            questions=state.get("questions") or "(unavailable)",
            key_terms=state.get("keyTerms") or "(unavailable)",
        )
        try:
            text = await call_with_timeout(llm.invoke(prompt), timeout_seconds)
        except (IntegrationError, asyncio.TimeoutError) as e:
            logger.warning(f"Synthesis failed: {e!r}")
            return {"synthesisFailed": True}
        return {"response": text.strip()}

    graph = WorkflowGraph(
        "parallel",
        schema=PARALLEL_STATE,
        description="Concurrent topic analysis followed by synthesis"
    )
    names = {"summary": "summarize", "questions": "generate_questions", "keyTerms": "extract_key_terms"}
    for output_field, prompt_name in ANALYSES.items():
        graph.add_node(_analysis_node(
            names[output_field], output_field, prompt_name, llm, prompts, timeout_seconds
        ))
    graph.add_parallel("analyze", list(names.values()))
    graph.add_node(
        "synthesize", synthesize,
        reads={"topic", "summary", "questions", "keyTerms"},
        writes={"response", "synthesisFailed"},
        description="Combine the analyses into one answer"
    )

    graph.set_entry_point("analyze")
    graph.add_edge("analyze", "synthesize")
    graph.add_edge("synthesize", END)
    return graph.check()


async def run_parallel(
    llm: LLMAdapter,
    topic: str,
    executor: Optional[WorkflowExecutor] = None,
    **kwargs
) -> RunResult:
    graph = build_parallel_graph(llm, **kwargs)
    return await default_executor(executor).run(graph, {"topic": topic})
