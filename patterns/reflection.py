"""
Reflection: generate code, have a reviewer critique it, refine

Built on RefinementLoop. The producer sees the whole conversation so far
(task, its earlier drafts, each critique); the reviewer sees only the task
and the current draft. The loop stops once the review contains
``CODE_IS_PERFECT`` or after ``max_iterations`` drafts.
"""
import logging
from typing import Dict, List, Optional

from integration.llm_adapter import LLMAdapter
from integration.prompts import PromptLibrary
from workflow.executor import RunResult, WorkflowExecutor
from workflow.refinement import RefinementLoop

logger = logging.getLogger(__name__)

PERFECT_MARKER = "CODE_IS_PERFECT"

REFLECTION_PROMPTS = {
    "reflection.task": (
        "Your task is to create a Python function named `calculate_factorial`.\n"
        "This function should do the following:\n"
        "1. Accept a single integer `n` as input.\n"
        "2. Calculate its factorial (n!).\n"
        "3. Include a clear docstring explaining what the function does.\n"
        "4. Handle edge cases: The factorial of 0 is 1.\n"
        "5. Handle invalid input: Raise a ValueError if the input is a negative number."
    ),
    "reflection.refine": "Please refine the code using the critiques provided.",
    "reflection.reviewer": (
        "You are a senior software engineer and an expert in Python.\n"
        "Your role is to perform a meticulous code review.\n"
        "Critically evaluate the provided Python code based on the original task requirements.\n"
        "Look for bugs, style issues, missing edge cases, and areas for improvement.\n"
        f"If the code is perfect and meets all requirements, respond with the single phrase '{PERFECT_MARKER}'.\n"
        "Otherwise, provide a bulleted list of your critiques."
    ),
    "reflection.review_request": "Original Task:\n{task}\n\nCode to Review:\n{code}",
    "reflection.critique": "Critique of the previous code:\n{critique}",
}


def build_producer_messages(state, prompts: PromptLibrary) -> List[Dict[str, str]]:
    """Replay the loop history as a chat transcript"""
    messages = [{"role": "user", "content": state["task"]}]
    for entry in state["history"]:
        if entry["role"] == "producer":
            messages.append({"role": "assistant", "content": entry["content"]})
        else:
            messages.append({
                "role": "user",
                "content": prompts.render("reflection.critique", critique=entry["content"]),
            })
    if state["iteration"] > 0:
        messages.append({"role": "user", "content": prompts.render("reflection.refine")})
    return messages


def build_reflection_loop(
    task_llm: LLMAdapter,
    reviewer_llm: Optional[LLMAdapter] = None,
    max_iterations: int = 3,
    prompts: Optional[PromptLibrary] = None,
    timeout_seconds: Optional[float] = None,
    executor: Optional[WorkflowExecutor] = None
) -> RefinementLoop:
    prompts = (prompts or PromptLibrary()).with_defaults(REFLECTION_PROMPTS)
    reviewer_llm = reviewer_llm or task_llm

    async def produce(state):
        return (await task_llm.invoke(build_producer_messages(state, prompts))).strip()

    async def review(state):
        return await reviewer_llm.invoke([
            {"role": "system", "content": prompts.render("reflection.reviewer")},
            {"role": "user", "content": prompts.render(
                "reflection.review_request", task=state["task"], code=state["artifact"]
            )},
        ])

    return RefinementLoop(
        producer=produce,
        critic=review,
        max_iterations=max_iterations,
        is_satisfied=lambda text: PERFECT_MARKER in text,
        name="reflection",
        timeout_seconds=timeout_seconds,
        executor=executor,
    )


async def run_reflection(
    task_llm: LLMAdapter,
    task: Optional[str] = None,
    reviewer_llm: Optional[LLMAdapter] = None,
    **kwargs
) -> RunResult:
    """Run the loop; ``task`` defaults to the factorial exercise"""
    prompts = (kwargs.get("prompts") or PromptLibrary()).with_defaults(REFLECTION_PROMPTS)
    loop = build_reflection_loop(task_llm, reviewer_llm, **kwargs)
    return await loop.run(task or prompts.render("reflection.task"))
