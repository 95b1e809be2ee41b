"""
Retrieval-augmented generation

    retrieve -> generate -> END

Retrieved chunks are joined with blank lines into the prompt context. A
retrieval failure is recorded in ``retrievalFailed`` and generation then
answers without context, saying so.
"""
import asyncio
import logging
from typing import Optional

from integration.base import IntegrationError
from integration.llm_adapter import LLMAdapter
from integration.prompts import PromptLibrary
from integration.retriever import InMemoryVectorRetriever
from patterns.common import default_executor
from workflow.edges import END
from workflow.executor import RunResult, WorkflowExecutor
from workflow.graph import WorkflowGraph
from workflow.node import call_with_timeout
from workflow.state import StateField, StateSchema

logger = logging.getLogger(__name__)

RAG_PROMPTS = {
    "rag.answer": (
        "You are an assistant for question-answering tasks. Use the following pieces of "
        "retrieved context to answer the question. If you don't know the answer, just say "
        "that you don't know. Use three sentences maximum and keep the answer concise.\n\n"
        "Question: {question}\n"
        "Context: {context}\n"
        "Answer:"
    ),
    "rag.no_context": "(no context could be retrieved)",
}

RAG_STATE = StateSchema("rag", [
    StateField("question", str, required=True),
    StateField("documents", list, default_factory=list),
    StateField("generation", str, default=""),
    StateField("retrievalFailed", bool, default=False),
    StateField("generationFailed", bool, default=False),
    StateField("error", str),
])


def build_rag_graph(
    llm: LLMAdapter,
    retriever: InMemoryVectorRetriever,
    top_k: int = 4,
    prompts: Optional[PromptLibrary] = None,
    timeout_seconds: Optional[float] = None
) -> WorkflowGraph:
    prompts = (prompts or PromptLibrary()).with_defaults(RAG_PROMPTS)

    def retrieve(state):
        try:
            documents = list(retriever.search(state["question"], top_k=top_k))
        except IntegrationError as e:
            logger.warning(f"Retrieval failed: {e}")
            return {"retrievalFailed": True, "error": str(e)}
        logger.info(f"Retrieved {len(documents)} documents")
        return {"documents": documents}

    async def generate(state):
        if state["retrievalFailed"] or not state["documents"]:
            context = prompts.render("rag.no_context")
        else:
            context = "\n\n".join(doc.content for doc in state["documents"])
        prompt = prompts.render("rag.answer", question=state["question"], context=context)
        try:
            text = await call_with_timeout(llm.invoke(prompt), timeout_seconds)
        except (IntegrationError, asyncio.TimeoutError) as e:
            logger.warning(f"Generation failed: {e!r}")
            return {"generationFailed": True, "error": repr(e)}
        return {"generation": text.strip()}

    graph = WorkflowGraph(
        "rag",
        schema=RAG_STATE,
        description="Retrieve context, then answer from it"
    )
    graph.add_node(
        "retrieve", retrieve,
        reads={"question"}, writes={"documents", "retrievalFailed", "error"}
    )
    graph.add_node(
        "generate", generate,
        reads={"question", "documents", "retrievalFailed"},
        writes={"generation", "generationFailed", "error"}
    )
    graph.set_entry_point("retrieve")
    graph.add_edge("retrieve", "generate")
    graph.add_edge("generate", END)
    return graph.check()


async def run_rag(
    llm: LLMAdapter,
    retriever: InMemoryVectorRetriever,
    question: str,
    executor: Optional[WorkflowExecutor] = None,
    **kwargs
) -> RunResult:
    graph = build_rag_graph(llm, retriever, **kwargs)
    return await default_executor(executor).run(graph, {"question": question})
