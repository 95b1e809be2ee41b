"""
Tests for history summarization and the conversation workflow
"""
import pytest

from integration.base import ServiceError
from integration.llm_adapter import ScriptedLLM
from integration.tool_registry import ToolRegistry
from patterns.memory import (
    Conversation,
    build_conversation_graph,
    estimate_tokens,
    history_summarizer,
    run_conversation,
    split_history,
)
from patterns.tool_agent import build_tool_agent_graph
from workflow.executor import WorkflowExecutor
from workflow.state import StateContainer


def message(role, content):
    return {"role": role, "content": content}


LONG_TRANSCRIPT = [
    message("user", "hi, my name is Alex"),
    message("assistant", "Hello Alex! " + "x" * 200),
    message("user", "write a short poem about cats"),
    message("assistant", "Cats " * 60),
    message("user", "what's my name?"),
]


class TestHistoryHelpers:
    """Test token estimation and the keep split"""

    def test_estimate_tokens(self):
        """Test four characters count as one token, rounded up"""
        assert estimate_tokens([]) == 0
        assert estimate_tokens([message("user", "abcd")]) == 1
        assert estimate_tokens([message("user", "abcde"), message("assistant", "abc")]) == 2

    def test_split_history(self):
        """Test the last messages are kept in order"""
        older, recent = split_history(LONG_TRANSCRIPT, 2)

        assert older == LONG_TRANSCRIPT[:3]
        assert recent == LONG_TRANSCRIPT[3:]
        assert split_history(LONG_TRANSCRIPT, 0) == (LONG_TRANSCRIPT, [])

    def test_invalid_settings(self):
        """Test the threshold and keep count are validated"""
        llm = ScriptedLLM([])
        with pytest.raises(ValueError):
            history_summarizer(llm, trigger_tokens=0)
        with pytest.raises(ValueError):
            history_summarizer(llm, keep_messages=-1)


class TestHistorySummarizer:
    """Test the summarize_history node on its own"""

    @pytest.mark.asyncio
    async def test_below_threshold_is_untouched(self):
        """Test a short transcript writes nothing and calls no service"""
        llm = ScriptedLLM(["unused"])
        summarize = history_summarizer(llm, trigger_tokens=400)

        update = await summarize.execute(StateContainer({"messages": LONG_TRANSCRIPT[:1]}))

        assert update == {}
        assert llm.call_count == 0

    @pytest.mark.asyncio
    async def test_summary_replaces_older_messages(self):
        """Test the older messages collapse into one system message"""
        llm = ScriptedLLM(["The user is Alex and asked for a cat poem."])
        summarize = history_summarizer(llm, trigger_tokens=50, keep_messages=2)

        update = await summarize.execute(StateContainer({"messages": LONG_TRANSCRIPT}))

        assert update["historySummary"] == "The user is Alex and asked for a cat poem."
        assert update["messages"] == [
            message("system", "Summary of the earlier conversation: The user is Alex and asked for a cat poem."),
            LONG_TRANSCRIPT[3],
            LONG_TRANSCRIPT[4],
        ]
        prompt = llm.calls[0]["prompt"]
        assert "user: hi, my name is Alex" in prompt
        assert "what's my name?" not in prompt

    @pytest.mark.asyncio
    async def test_nothing_older_than_the_kept_window(self):
        """Test a long transcript shorter than the window is left alone"""
        llm = ScriptedLLM(["unused"])
        summarize = history_summarizer(llm, trigger_tokens=1, keep_messages=10)

        assert await summarize.execute(StateContainer({"messages": LONG_TRANSCRIPT})) == {}
        assert llm.call_count == 0

    @pytest.mark.asyncio
    async def test_service_failure_keeps_transcript(self):
        """Test a failed summary is recorded and the messages stay as they were"""
        summarize = history_summarizer(ScriptedLLM([ServiceError("quota")]), trigger_tokens=50)

        update = await summarize.execute(StateContainer({"messages": LONG_TRANSCRIPT}))

        assert update["summaryFailed"] is True
        assert "quota" in update["error"]
        assert "messages" not in update

    @pytest.mark.asyncio
    async def test_custom_field(self):
        """Test the node can manage a transcript stored under another name"""
        summarize = history_summarizer(ScriptedLLM(["short"]), field="chat", trigger_tokens=50, keep_messages=1)

        update = await summarize.execute(StateContainer({"chat": LONG_TRANSCRIPT}))

        assert summarize.reads == {"chat"}
        assert len(update["chat"]) == 2
        assert update["chat"][-1] == LONG_TRANSCRIPT[-1]


class TestConversation:
    """Test multi-turn chat with summarized history"""

    @pytest.mark.asyncio
    async def test_short_chat_keeps_every_message(self):
        """Test turns accumulate while under the threshold"""
        chat = Conversation(ScriptedLLM(["Hello Alex!", "Your name is Alex."]))

        await chat.send("hi, my name is Alex")
        result = await chat.send("what's my name?")

        assert result.path == ["summarize_history", "reply"]
        assert result.state["response"] == "Your name is Alex."
        assert [m["role"] for m in chat.messages] == ["user", "assistant", "user", "assistant"]
        assert chat.summary is None

    @pytest.mark.asyncio
    async def test_long_chat_is_summarized_before_reply(self):
        """Test the reply sees the summary plus the kept messages"""
        llm = ScriptedLLM([
            "Hello Alex!",
            "Cats " * 100,
            "The user is called Alex.",
            "Your name is Alex.",
        ])

        result = await run_conversation(
            llm,
            ["hi, my name is Alex", "write a poem about cats", "what's my name?"],
            trigger_tokens=100,
            keep_messages=2,
        )

        assert result.completed
        assert result.state["historySummary"] == "The user is called Alex."
        reply_messages = llm.calls[-1]["messages"]
        assert reply_messages[0]["content"] == "You are a helpful assistant."
        assert reply_messages[1] == message("system", "Summary of the earlier conversation: The user is called Alex.")
        assert reply_messages[2] == message("assistant", "Cats " * 100)
        assert reply_messages[3] == message("user", "what's my name?")
        assert len(result.state["messages"]) == 4

    @pytest.mark.asyncio
    async def test_reply_failure_apologizes(self):
        """Test a reasoning failure produces the fallback response"""
        graph = build_conversation_graph(ScriptedLLM([ServiceError("down")]))

        result = await WorkflowExecutor().run(graph, {"messages": [message("user", "hello")]})

        assert result.completed
        assert result.state["failed"] is True
        assert result.state["response"].startswith("I'm sorry")

    @pytest.mark.asyncio
    async def test_no_turns(self):
        """Test a conversation needs at least one turn"""
        with pytest.raises(ValueError):
            await run_conversation(ScriptedLLM([]), [])


class TestToolAgentSummary:
    """Test the summary node placed between tool calls and decisions"""

    @pytest.mark.asyncio
    async def test_summary_runs_after_tool_call(self):
        """Test the next decision sees the summary instead of the old messages"""
        tools = ToolRegistry()
        tools.register_handler("lookup", "Look up a fact", lambda topic: f"{topic} is Paris")
        llm = ScriptedLLM([
            '{"tool": "lookup", "args": {"topic": "capital of France"}}',
            "Asked for the capital of France.",
            '{"answer": "Paris"}',
        ])
        graph = build_tool_agent_graph(
            llm, tools, summarizer=history_summarizer(llm, trigger_tokens=1, keep_messages=1)
        )

        result = await WorkflowExecutor().run(graph, {"query": "What is the capital of France?"})

        assert result.path == ["decide", "call_tool", "summarize_history", "decide", "respond"]
        assert result.state["response"] == "Paris"
        assert result.state["historySummary"] == "Asked for the capital of France."
        second_decision = llm.calls[2]["messages"]
        assert second_decision[-2] == message(
            "system", "Summary of the earlier conversation: Asked for the capital of France."
        )
        assert second_decision[-1]["content"].startswith("Tool lookup returned:")
