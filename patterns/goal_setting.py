"""
Goal-driven code generation

The task is a use case plus a list of quality goals. Each iteration the
producer writes code from a prompt assembled out of the use case, the
goals, the previous draft and the last feedback; the critic reviews the
code against the goals and then asks a yes/no question (answered
``true`` / ``false``) about whether every goal is met.
"""
import logging
from typing import List, Optional, Sequence, Union

from integration.llm_adapter import LLMAdapter
from integration.prompts import PromptLibrary
from patterns.common import clean_code_block
from workflow.executor import RunResult, WorkflowExecutor
from workflow.refinement import Critique, RefinementLoop
from workflow.state import StateField

logger = logging.getLogger(__name__)

GOAL_PROMPTS = {
    "goals.generate": (
        "You are an AI coding agent. Your job is to write Python code based on the following use case:\n\n"
        "Use Case: {use_case}\n\n"
        "Your goals are:\n{goals}"
    ),
    "goals.refine": (
        "Previously generated code:\n{previous_code}\n\n"
        "Refine the code to better meet the goals."
    ),
    "goals.feedback": "Feedback on previous version:\n{feedback}",
    "goals.end": "Please return only the revised Python code. Do not include comments or explanations outside the code.",
    "goals.review": (
        "You are a Python code reviewer. A code snippet is shown below. Based on the following goals:\n\n"
        "{goals}\n\n"
        "Please critique this code and identify if the goals are met. Mention if improvements are needed "
        "for clarity, simplicity, correctness, edge case handling, or test coverage.\n\n"
        "Code:\n{code}"
    ),
    "goals.met": (
        "You are an AI reviewer.\n\n"
        "Here are the goals:\n{goals}\n\n"
        "Here is the feedback on the code:\n\"\"\"\n{feedback}\n\"\"\"\n\n"
        "Based on the feedback above, have the goals been met?\n\n"
        "Respond with only one word: True or False."
    ),
}

GOAL_FIELDS = [
    StateField("goals", list, required=True, description="Quality goals the code must meet"),
]


def parse_goals(goals: Union[str, Sequence[str]]) -> List[str]:
    """Accept a comma separated string or a sequence of goals"""
    if isinstance(goals, str):
        goals = goals.split(",")
    return [g.strip() for g in goals if g.strip()]


def format_goals(goals: Sequence[str]) -> str:
    return "\n".join(f"- {g}" for g in goals)


def build_generation_prompt(
    prompts: PromptLibrary,
    use_case: str,
    goals: Sequence[str],
    previous_code: str = "",
    feedback: str = ""
) -> str:
    parts = [prompts.render("goals.generate", use_case=use_case, goals=format_goals(goals))]
    if previous_code:
        parts.append(prompts.render("goals.refine", previous_code=previous_code))
    if feedback:
        parts.append(prompts.render("goals.feedback", feedback=feedback))
    parts.append(prompts.render("goals.end"))
    return "\n".join(parts)


def add_comment_header(code: str, use_case: str) -> str:
    comment = f"# This Python program implements the following use case:\n# {use_case.strip()}\n"
    return f"{comment}\n{code}"


def build_goal_loop(
    llm: LLMAdapter,
    max_iterations: int = 5,
    prompts: Optional[PromptLibrary] = None,
    timeout_seconds: Optional[float] = None,
    executor: Optional[WorkflowExecutor] = None
) -> RefinementLoop:
    prompts = (prompts or PromptLibrary()).with_defaults(GOAL_PROMPTS)

    async def produce(state):
        prompt = build_generation_prompt(
            prompts,
            state["task"],
            state["goals"],
            previous_code=state.get("artifact") or "",
            feedback=state.get("critique") or "",
        )
        return clean_code_block(await llm.invoke(prompt))

    async def review(state):
        goals = format_goals(state["goals"])
        feedback = await llm.invoke(
            prompts.render("goals.review", goals=goals, code=state["artifact"])
        )
        verdict = await llm.invoke(
            prompts.render("goals.met", goals=goals, feedback=feedback)
        )
        met = verdict.strip().strip(".").lower() == "true"
        logger.info(f"Goals met: {met}")
        return Critique(satisfied=met, feedback=feedback)

    return RefinementLoop(
        producer=produce,
        critic=review,
        max_iterations=max_iterations,
        name="goal_setting",
        extra_fields=GOAL_FIELDS,
        timeout_seconds=timeout_seconds,
        executor=executor,
    )


async def run_goal_setting(
    llm: LLMAdapter,
    use_case: str,
    goals: Union[str, Sequence[str]],
    **kwargs
) -> RunResult:
    """Run the loop; the final code is ``add_comment_header(state['artifact'], use_case)``"""
    loop = build_goal_loop(llm, **kwargs)
    return await loop.run(use_case, goals=parse_goals(goals))
