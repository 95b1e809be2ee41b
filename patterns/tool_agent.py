"""
Tool-calling agent

    decide --(pending tool call)--> call_tool --> decide
       \\--(answer, failure or call budget spent)--> respond -> END
    call_tool --(tool failed)--> respond

The reasoning service answers with a JSON decision: either
``{"tool": name, "args": {...}}`` or ``{"answer": text}``. Tool results
are appended to the transcript and the service decides again, up to
``max_tool_calls`` invocations.
"""
import asyncio
import json
import logging
from typing import Dict, List, Optional

from integration.base import IntegrationError, ToolError
from integration.llm_adapter import LLMAdapter
from integration.prompts import PromptLibrary
from integration.tool_registry import ToolRegistry, ToolSchema
from patterns.common import default_executor, parse_json_object
from patterns.memory import SUMMARY_FIELDS
from workflow.edges import END
from workflow.executor import RunResult, WorkflowExecutor
from workflow.graph import WorkflowGraph
from workflow.node import Node, call_with_timeout
from workflow.state import StateField, StateSchema

logger = logging.getLogger(__name__)

TOOL_AGENT_PROMPTS = {
    "tool_agent.system": (
        "You are a helpful assistant with access to the following tools:\n"
        "{tools}\n\n"
        "To use a tool, reply with only a JSON object of the form "
        "{{\"tool\": \"<tool name>\", \"args\": {{<arguments>}}}}.\n"
        "When you can answer the user, reply with only a JSON object of the form "
        "{{\"answer\": \"<your answer>\"}}."
    ),
    "tool_agent.tool_result": "Tool {tool} returned: {result}",
    "tool_agent.failed": "I'm sorry, I couldn't complete your request because the {tool} tool failed.",
    "tool_agent.unavailable": "I'm sorry, I'm unable to answer right now. Please try again later.",
    "tool_agent.exhausted": "I'm sorry, I couldn't find an answer to your request.",
}

TOOL_AGENT_FIELDS = [
    StateField("query", str, required=True),
    StateField("messages", list, default_factory=list, description="Transcript after the system prompt"),
    StateField("pendingTool", dict, description="Tool call chosen by the last decision"),
    StateField("toolCalls", int, default=0),
    StateField("toolResults", list, default_factory=list),
    StateField("answer", str),
    StateField("response", str),
    StateField("toolFailed", bool, default=False),
    StateField("failed", bool, default=False),
    StateField("error", str),
] + SUMMARY_FIELDS

SIMULATED_RESULTS = {
    "weather in london": "The weather in London is currently cloudy with a temperature of 15°C.",
    "capital of france": "The capital of France is Paris.",
    "population of earth": "The estimated population of Earth is around 8 billion people.",
    "tallest mountain": "Mount Everest is the tallest mountain above sea level.",
}


def search_information(query: str) -> str:
    """Simulated factual search"""
    return SIMULATED_RESULTS.get(
        query.lower(),
        f"Simulated search result for '{query}': No specific information found, "
        f"but the topic seems interesting."
    )


def search_tools() -> ToolRegistry:
    tools = ToolRegistry()
    tools.register_handler(
        "search_information",
        "Provides factual information on a given topic. Use this tool to find answers to "
        "questions like 'What is the capital of France?' or 'What is the weather in London?'.",
        search_information,
        schema=ToolSchema(
            parameters={"query": {"type": "string"}},
            required_params=["query"],
            returns={"type": "string"},
        ),
    )
    return tools


def _format_result(result) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


def build_tool_agent_graph(
    llm: LLMAdapter,
    tools: Optional[ToolRegistry] = None,
    name: str = "tool_agent",
    system_messages: Optional[List[str]] = None,
    max_tool_calls: int = 3,
    prompts: Optional[PromptLibrary] = None,
    timeout_seconds: Optional[float] = None,
    extra_fields: Optional[List[StateField]] = None,
    summarizer: Optional[Node] = None
) -> WorkflowGraph:
    """
    Args:
        system_messages: Extra system messages placed before the tool
            instructions (e.g. a persona or personalization note)
        extra_fields: Additional state fields the caller seeds
        summarizer: Optional history node (see patterns.memory) run after
            each successful tool call, before the next decision
    """
    tools = tools or search_tools()
    prompts = (prompts or PromptLibrary()).with_defaults(TOOL_AGENT_PROMPTS)

    def transcript(state) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": text} for text in system_messages or []]
        messages.append({
            "role": "system",
            "content": prompts.render("tool_agent.system", tools=tools.describe_tools()),
        })
        messages.append({"role": "user", "content": state["query"]})
        return messages + list(state["messages"])

    async def decide(state):
        try:
            raw = await call_with_timeout(llm.invoke(transcript(state)), timeout_seconds)
        except (IntegrationError, asyncio.TimeoutError) as e:
            logger.warning(f"Reasoning service failed: {e!r}")
            return {"failed": True, "error": repr(e)}

        messages = state["messages"] + [{"role": "assistant", "content": raw}]
        try:
            decision = parse_json_object(raw)
        except ValueError:
            # Plain prose is taken as the final answer
            return {"messages": messages, "answer": raw.strip(), "pendingTool": None}

        if decision.get("tool"):
            call = {"tool": str(decision["tool"]), "args": decision.get("args") or {}}
            logger.info(f"Agent chose tool {call['tool']}")
            return {"messages": messages, "pendingTool": call}
        return {
            "messages": messages,
            "answer": str(decision.get("answer", raw)).strip(),
            "pendingTool": None,
        }

    async def call_tool(state):
        call = state["pendingTool"]
        try:
            if not isinstance(call["args"], dict):
                raise ToolError(f"Arguments for {call['tool']} must be an object", tool_name=call["tool"])
            result = await call_with_timeout(tools.call(call["tool"], call["args"]), timeout_seconds)
        except (IntegrationError, asyncio.TimeoutError) as e:
            logger.warning(f"Tool {call['tool']} failed: {e!r}")
            return {
                "toolFailed": True,
                "error": str(e) or repr(e),
                "toolCalls": state["toolCalls"] + 1,
            }

        note = prompts.render("tool_agent.tool_result", tool=call["tool"], result=_format_result(result))
        return {
            "messages": state["messages"] + [{"role": "user", "content": note}],
            "toolResults": state["toolResults"] + [{"tool": call["tool"], "args": call["args"], "result": result}],
            "toolCalls": state["toolCalls"] + 1,
            "pendingTool": None,
        }

    def respond(state):
        if state.get("answer"):
            return {"response": state["answer"]}
        if state["toolFailed"]:
            return {"response": prompts.render("tool_agent.failed", tool=state["pendingTool"]["tool"])}
        if state["failed"]:
            return {"response": prompts.render("tool_agent.unavailable")}
        return {"response": prompts.render("tool_agent.exhausted")}

    schema = StateSchema(name, TOOL_AGENT_FIELDS + list(extra_fields or []))
    graph = WorkflowGraph(
        name,
        schema=schema,
        description="Reasoning service choosing and calling tools",
        allow_cycles=True
    )
    graph.add_node(
        "decide", decide,
        reads={"query", "messages"},
        writes={"messages", "pendingTool", "answer", "failed", "error"},
        description="Choose a tool or answer"
    )
    graph.add_node(
        "call_tool", call_tool,
        reads={"pendingTool", "messages", "toolResults", "toolCalls"},
        writes={"messages", "toolResults", "toolCalls", "pendingTool", "toolFailed", "error"},
        description="Invoke the chosen tool"
    )
    graph.add_node(
        "respond", respond,
        reads={"answer", "toolFailed", "failed", "pendingTool"},
        writes={"response"},
        description="Produce the final response"
    )

    after_tool = "decide"
    if summarizer is not None:
        graph.add_node(summarizer)
        graph.add_edge(summarizer.name, "decide")
        after_tool = summarizer.name

    graph.set_entry_point("decide")
    graph.add_conditional_edges(
        "decide",
        [
            (lambda s: s["failed"], "respond"),
            (lambda s: s.get("pendingTool") is not None and s["toolCalls"] < max_tool_calls, "call_tool"),
        ],
        default="respond"
    )
    graph.add_conditional_edges(
        "call_tool",
        [(lambda s: s["toolFailed"], "respond")],
        default=after_tool
    )
    graph.add_edge("respond", END)
    return graph.check()


async def run_tool_agent(
    llm: LLMAdapter,
    query: str,
    tools: Optional[ToolRegistry] = None,
    executor: Optional[WorkflowExecutor] = None,
    **kwargs
) -> RunResult:
    graph = build_tool_agent_graph(llm, tools, **kwargs)
    return await default_executor(executor).run(graph, {"query": query})
