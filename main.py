"""Command-line runner for the bundled workflows

    python main.py fallback "Vague Area near Los Angeles"
    python main.py routing "Book me a flight to London."
    python main.py reflection --provider openai

Without an API key (or with ``llm.provider: scripted``) a scripted
reasoning service replays canned responses so every workflow runs offline.
"""
import argparse
import asyncio
import json
import logging
import re
import sys

from integration.llm_adapter import LLMAdapter, ScriptedLLM, create_llm_adapter
from integration.prompts import PromptLibrary
from integration.retriever import InMemoryVectorRetriever, split_text
from patterns import (
    CustomerInfo,
    run_chaining,
    run_fallback,
    run_conversation,
    run_goal_setting,
    run_parallel,
    run_rag,
    run_reflection,
    run_routing,
    run_support_agent,
    run_tool_agent,
)
from utils.config import ConfigError, EngineConfig, load_config
from utils.logging import setup_logging
from utils.metrics import setup_metrics
from utils.tracing import setup_tracing
from workflow.event_store import EventStore
from workflow.executor import WorkflowExecutor

logger = logging.getLogger(__name__)

PATTERNS = [
    "chaining", "routing", "parallel", "reflection", "tool_agent",
    "goal_setting", "fallback", "rag", "support_agent", "memory",
]

DEFAULT_INPUTS = {
    "chaining": "The new laptop model features a 3.5 GHz octa-core processor, 16GB of RAM, and a 1TB NVMe SSD.",
    "routing": "Book me a flight to London.",
    "parallel": "The history of space exploration",
    "reflection": "",
    "tool_agent": "What is the capital of France?",
    "goal_setting": "Write code to find BinaryGap of a given positive integer",
    "fallback": "123 Fake St, Los Angeles",
    "rag": "What does the engine do when a node fails?",
    "support_agent": "My new Gamma Gaming Mouse suddenly stopped connecting to my PC. I can't figure out why.",
    "memory": (
        "hi, my name is Alex | write a short poem about cats | now do the same but for dogs"
        " | write a blog about AI in 300 words | what's my name?"
    ),
}

SAMPLE_DOCUMENT = """\
The workflow engine threads one shared state through a graph of nodes. Each node
returns a partial update that the executor merges into a new state.

When a collaborator such as the reasoning service or a tool fails, the node records
the failure in a state field. Conditional edges then route the run to a fallback
node, so the workflow recovers instead of crashing.

Only contract violations abort a run. The caller then receives the name of the
failing node and the reason."""


def _last_user_message(payload) -> str:
    if "messages" in payload:
        return payload["messages"][-1]["content"]
    return payload.get("prompt", "")


def _demo_router(payload) -> str:
    request = _last_user_message(payload).lower()
    if "book" in request or "hotel" in request or "flight" in request:
        return "booker"
    if request.rstrip().endswith("?"):
        return "info"
    return "unclear"


def _demo_tool_caller(choose_tool):
    def respond(payload):
        last = _last_user_message(payload)
        if last.startswith("Tool "):
            return json.dumps({"answer": last.split(" returned: ", 1)[-1]})
        tool, args = choose_tool(last)
        return json.dumps({"tool": tool, "args": args})
    return respond


def _search_choice(query):
    topic = query.rstrip("?").lower()
    for prefix in ("what is the ", "what's the ", "what is "):
        if topic.startswith(prefix):
            topic = topic[len(prefix):]
    return "search_information", {"query": topic.replace(" like", "")}


def _support_choice(message):
    if "human" in message.lower() or "supervisor" in message.lower():
        return "EscalateToHuman", {"issue_type": "Defective product", "reason": message}
    return "TroubleshootIssue", {"issue_description": message}


def _demo_memory(payload) -> str:
    if "messages" not in payload:
        # Summary request
        found = re.search(r"my name is (\w+)", payload.get("prompt", ""), re.IGNORECASE)
        who = found.group(1) if found else "unknown"
        return f"The user is called {who} and asked for short poems and a blog post."

    request = _last_user_message(payload).lower()
    if "my name" in request and request.rstrip().endswith("?"):
        history = " ".join(m["content"] for m in payload["messages"])
        found = re.search(r"(?:my name is|is called) (\w+)", history, re.IGNORECASE)
        return f"Your name is {found.group(1)}." if found else "I don't know your name yet."
    if "blog" in request:
        return " ".join(["Artificial intelligence is changing how software is written and shipped."] * 20)
    if "poem" in request or "same" in request:
        subject = "dogs" if "dog" in request else "cats"
        return " ".join([f"Soft paws and bright eyes, {subject} keep us company through the night."] * 8)
    return "Hello! How can I help you today?"


def _demo_rag_answer(payload) -> str:
    prompt = payload.get("prompt", "")
    context = prompt.split("Context:", 1)[-1].split("\n\n")[0].strip()
    return f"According to the documents: {context}"


SCRIPTS = {
    "chaining": [
        "CPU: 3.5 GHz octa-core processor, Memory: 16GB of RAM, Storage: 1TB NVMe SSD",
        '{"cpu": "3.5 GHz octa-core processor", "memory": "16GB of RAM", "storage": "1TB NVMe SSD"}',
    ],
    "routing": [_demo_router],
    "parallel": [
        "A concise summary of space exploration.",
        "1. What was the Space Race? 2. Who was the first person in space? 3. What is the future of space exploration?",
        "NASA, Sputnik, Apollo, Space Race, ISS",
        "A synthesized answer about the history of space exploration, combining the summary, questions, and key terms.",
    ],
    "reflection": [
        'def calculate_factorial(n):\n    """Calculates the factorial of a non-negative integer."""\n'
        "    if n == 0:\n        return 1\n    return n * calculate_factorial(n - 1)",
        "- The code does not handle negative input. It will lead to infinite recursion. "
        "A ValueError should be raised.\n- The docstring is a bit brief.",
        'def calculate_factorial(n):\n    """Calculates n! for a non-negative integer n.\n\n'
        '    Raises:\n        ValueError: If n is negative.\n    """\n'
        '    if n < 0:\n        raise ValueError("Input must be a non-negative integer.")\n'
        "    if n == 0:\n        return 1\n    return n * calculate_factorial(n - 1)",
        "CODE_IS_PERFECT",
    ],
    "tool_agent": [_demo_tool_caller(_search_choice)],
    "goal_setting": [
        "```python\ndef binary_gap(n):\n    return max((len(g) for g in bin(n)[2:].strip('0').split('1')), default=0)\n```",
        "The code is correct, simple and handles inputs without a gap.",
        "true",
    ],
    "rag": [_demo_rag_answer],
    "support_agent": [_demo_tool_caller(_support_choice)],
    "memory": [_demo_memory],
}


def build_llm(config: EngineConfig, pattern: str) -> LLMAdapter:
    settings = config.llm
    if settings.provider == "scripted" or not settings.api_key:
        if settings.provider != "scripted":
            logger.warning(f"No API key for provider '{settings.provider}', using scripted responses")
        return ScriptedLLM(SCRIPTS.get(pattern, ["(no response)"]), cycle=True)

    kwargs = {
        "api_key": settings.api_key,
        "temperature": settings.temperature,
        "timeout": settings.timeout,
    }
    if settings.model:
        kwargs["model"] = settings.model
    if settings.endpoint:
        kwargs["endpoint"] = settings.endpoint
    llm = create_llm_adapter(settings.provider, **kwargs)
    llm.config.max_retries = settings.max_retries
    llm.config.retry_delay = settings.retry_delay
    return llm


async def run_pattern(pattern: str, text: str, config: EngineConfig, executor: WorkflowExecutor):
    prompts = PromptLibrary.from_yaml(config.prompts_path) if config.prompts_path else None
    timeout = config.executor.node_timeout

    if pattern == "fallback":
        return await run_fallback(text, executor=executor, timeout_seconds=timeout)

    llm = build_llm(config, pattern)
    async with llm:
        common = {"prompts": prompts, "timeout_seconds": timeout}
        if pattern == "chaining":
            return await run_chaining(llm, text, executor=executor, **common)
        if pattern == "routing":
            return await run_routing(llm, text, executor=executor, **common)
        if pattern == "parallel":
            return await run_parallel(llm, text, executor=executor, **common)
        if pattern == "reflection":
            return await run_reflection(llm, task=text or None, executor=executor, **common)
        if pattern == "tool_agent":
            return await run_tool_agent(llm, text, executor=executor, **common)
        if pattern == "goal_setting":
            goals = "Simple to understand, Functionally correct, Handles edge cases"
            return await run_goal_setting(llm, text, goals, executor=executor, **common)
        if pattern == "rag":
            retriever = InMemoryVectorRetriever()
            retriever.add_texts(split_text(SAMPLE_DOCUMENT, chunk_size=300, overlap=30), {"source": "sample"})
            return await run_rag(llm, retriever, text, executor=executor, **common)
        if pattern == "support_agent":
            customer = CustomerInfo(
                name="Alex Johnson",
                tier="Premium",
                recent_purchases=["Zeta Headset Pro", "Gamma Gaming Mouse"],
                support_history=(
                    "Had an issue with Zeta Headset (Ticket TICKET-8822) 2 months ago, "
                    "which was resolved by a firmware update."
                ),
            )
            return await run_support_agent(llm, customer, text, executor=executor, **common)
        if pattern == "memory":
            turns = [turn.strip() for turn in text.split("|") if turn.strip()]
            return await run_conversation(llm, turns, executor=executor, **common)
    raise ValueError(f"Unknown pattern: {pattern}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Run a bundled agent workflow")
    parser.add_argument("pattern", choices=PATTERNS)
    parser.add_argument("input", nargs="?", default=None, help="Workflow input (query, topic, request...; memory takes turns separated by |)")
    parser.add_argument("--config", type=str, default=None, help="YAML config file (default: config.yaml if present)")
    parser.add_argument("--provider", type=str, default=None, choices=["scripted", "openai", "anthropic"])
    parser.add_argument("--events", action="store_true", help="Print the run's event log")
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    if args.provider:
        config.llm.provider = args.provider

    setup_logging(config.monitoring)
    setup_tracing(config.monitoring)
    setup_metrics(config.monitoring)

    event_store = EventStore()
    executor = WorkflowExecutor.from_settings(config.executor, event_store=event_store)
    text = args.input if args.input is not None else DEFAULT_INPUTS[args.pattern]

    async def execute():
        result = await run_pattern(args.pattern, text, config, executor)
        events = await event_store.get_events(run_id=result.run_id) if args.events else []
        return result, events

    result, events = asyncio.run(execute())

    output = result.to_dict()
    if args.events:
        output["events"] = [e.to_dict() for e in events]
    print(json.dumps(output, indent=2, default=str))
    return 0 if result.completed else 1


if __name__ == '__main__':
    sys.exit(main())
