"""
Conversation memory

Long transcripts are shortened by an explicit node in the graph:

    summarize_history -> reply -> END

Once a transcript passes ``trigger_tokens`` (estimated at four characters
per token) the older messages are replaced by one system message holding a
summary from the reasoning service. The last ``keep_messages`` stay
verbatim. The same node can be placed in other graphs, e.g. between
``call_tool`` and ``decide`` in the tool agent.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

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

SUMMARIZE = "summarize_history"
CHARS_PER_TOKEN = 4

MEMORY_PROMPTS = {
    "memory.system": "You are a helpful assistant.",
    "memory.summarize": (
        "Summarize the conversation below for your own future reference. Keep names, "
        "facts the user shared, decisions and open requests. Reply with the summary only.\n\n"
        "{transcript}"
    ),
    "memory.summary_message": "Summary of the earlier conversation: {summary}",
    "memory.unavailable": "I'm sorry, I'm unable to answer right now. Please try again later.",
}

SUMMARY_FIELDS = [
    StateField("historySummary", str, description="Summary that replaced the older messages"),
    StateField("summaryFailed", bool, default=False),
]

CONVERSATION_STATE = StateSchema("conversation", [
    StateField("messages", list, default_factory=list, description="Transcript, oldest first"),
    StateField("response", str),
    StateField("failed", bool, default=False),
    StateField("error", str),
] + SUMMARY_FIELDS)

Message = Dict[str, Any]


def estimate_tokens(messages: Sequence[Message]) -> int:
    """Rough token count of a transcript"""
    chars = sum(len(str(m.get("content", ""))) for m in messages)
    return (chars + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN


def split_history(messages: Sequence[Message], keep_messages: int) -> Tuple[List[Message], List[Message]]:
    """Older messages to summarize, and the most recent ones kept verbatim"""
    if keep_messages <= 0:
        return list(messages), []
    return list(messages[:-keep_messages]), list(messages[-keep_messages:])


def format_transcript(messages: Sequence[Message]) -> str:
    return "\n".join(f"{m.get('role', 'user')}: {m.get('content', '')}" for m in messages)


def history_summarizer(
    llm: LLMAdapter,
    field: str = "messages",
    trigger_tokens: int = 400,
    keep_messages: int = 2,
    prompts: Optional[PromptLibrary] = None,
    timeout_seconds: Optional[float] = None,
    name: str = SUMMARIZE
) -> Node:
    """
    Node that summarizes ``state[field]`` once it grows past ``trigger_tokens``.

    Below the threshold the node writes nothing. A failed summary leaves the
    transcript untouched and sets ``summaryFailed``, so the graph it sits in
    needs the SUMMARY_FIELDS and an ``error`` field.
    """
    if trigger_tokens < 1:
        raise ValueError("trigger_tokens must be at least 1")
    if keep_messages < 0:
        raise ValueError("keep_messages cannot be negative")
    prompts = (prompts or PromptLibrary()).with_defaults(MEMORY_PROMPTS)

    async def summarize(state):
        messages = list(state[field])
        tokens = estimate_tokens(messages)
        if tokens <= trigger_tokens:
            return {}

        older, recent = split_history(messages, keep_messages)
        if not older:
            return {}

        prompt = prompts.render("memory.summarize", transcript=format_transcript(older))
        try:
            summary = await call_with_timeout(llm.invoke(prompt), timeout_seconds)
        except (IntegrationError, asyncio.TimeoutError) as e:
            logger.warning(f"History summary failed, keeping {len(messages)} messages: {e!r}")
            return {"summaryFailed": True, "error": repr(e)}

        summary = summary.strip()
        logger.info(
            f"Summarized {len(older)} messages (~{tokens} tokens), kept the last {len(recent)}"
        )
        note = {"role": "system", "content": prompts.render("memory.summary_message", summary=summary)}
        return {field: [note] + recent, "historySummary": summary, "summaryFailed": False}

    return Node(
        name=name,
        func=summarize,
        reads={field},
        writes={field, "historySummary", "summaryFailed", "error"},
        description="Summarize older messages once the transcript is too long"
    )


def build_conversation_graph(
    llm: LLMAdapter,
    trigger_tokens: int = 400,
    keep_messages: int = 2,
    prompts: Optional[PromptLibrary] = None,
    timeout_seconds: Optional[float] = None
) -> WorkflowGraph:
    """One chat turn: shorten the transcript if needed, then reply"""
    prompts = (prompts or PromptLibrary()).with_defaults(MEMORY_PROMPTS)

    async def reply(state):
        messages = [{"role": "system", "content": prompts.render("memory.system")}]
        messages.extend(state["messages"])
        try:
            text = await call_with_timeout(llm.invoke(messages), timeout_seconds)
        except (IntegrationError, asyncio.TimeoutError) as e:
            logger.warning(f"Reply failed: {e!r}")
            return {"failed": True, "error": repr(e), "response": prompts.render("memory.unavailable")}
        return {
            "messages": state["messages"] + [{"role": "assistant", "content": text}],
            "response": text,
        }

    graph = WorkflowGraph(
        "conversation",
        schema=CONVERSATION_STATE,
        description="Chat turn with summarized history"
    )
    graph.add_node(history_summarizer(
        llm,
        trigger_tokens=trigger_tokens,
        keep_messages=keep_messages,
        prompts=prompts,
        timeout_seconds=timeout_seconds
    ))
    graph.add_node(
        "reply", reply,
        reads={"messages"}, writes={"messages", "response", "failed", "error"},
        description="Answer the latest user message"
    )
    graph.set_entry_point(SUMMARIZE)
    graph.add_edge(SUMMARIZE, "reply")
    graph.add_edge("reply", END)
    return graph.check()


class Conversation:
    """Multi-turn chat whose transcript is carried between runs in memory

    Example:
        chat = Conversation(llm, trigger_tokens=400, keep_messages=2)
        await chat.send("hi, my name is Alex")
        result = await chat.send("what's my name?")
        print(result.state["response"])
    """

    def __init__(self, llm: LLMAdapter, executor: Optional[WorkflowExecutor] = None, **kwargs):
        self.graph = build_conversation_graph(llm, **kwargs)
        self.executor = default_executor(executor)
        self.messages: List[Message] = []
        self.summary: Optional[str] = None

    async def send(self, text: str) -> RunResult:
        result = await self.executor.run(
            self.graph, {"messages": self.messages + [{"role": "user", "content": text}]}
        )
        if result.completed:
            self.messages = list(result.state["messages"])
            self.summary = result.state.get("historySummary") or self.summary
        return result


async def run_conversation(
    llm: LLMAdapter,
    turns: Sequence[str],
    executor: Optional[WorkflowExecutor] = None,
    **kwargs
) -> RunResult:
    """Send each turn in order and return the last run"""
    if not turns:
        raise ValueError("At least one turn is required")
    chat = Conversation(llm, executor=executor, **kwargs)
    result = None
    for text in turns:
        result = await chat.send(text)
    return result
