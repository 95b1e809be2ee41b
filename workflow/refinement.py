"""
Refinement Loop - Bounded generate -> critique -> stop-or-continue cycle

The loop is an ordinary two-node graph with one conditional back edge:

    produce -> critique -> END        (satisfied, ceiling reached, or failed)
                        -> produce    (otherwise)

The producer sees the task, the previous artifact and the previous
critique (none on the first iteration) plus the full history. The critic
either signals satisfaction or returns feedback text. History is
append-only: each iteration adds the producer's output and, when the
critic was not satisfied, its feedback.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Union

from integration.base import IntegrationError
from workflow.edges import END
from workflow.executor import RunResult, WorkflowExecutor
from workflow.graph import WorkflowGraph
from workflow.node import Node, call_with_timeout
from workflow.state import StateContainer, StateField, StateSchema

logger = logging.getLogger(__name__)

PRODUCE = "produce"
CRITIQUE = "critique"

LOOP_FIELDS = [
    StateField("task", required=True, description="What the producer is asked to build"),
    StateField("artifact", description="Last produced artifact"),
    StateField("critique", str, description="Last actionable feedback"),
    StateField("satisfied", bool, default=False),
    StateField("iteration", int, default=0),
    StateField("history", list, default_factory=list),
    StateField("failed", bool, default=False),
    StateField("error", str),
]


@dataclass
class Critique:
    """Critic verdict: satisfied, or feedback for the next iteration"""
    satisfied: bool
    feedback: str = ""


Producer = Callable[[StateContainer], Union[Any, Awaitable[Any]]]
Critic = Callable[[StateContainer], Union[Critique, str, Awaitable[Union[Critique, str]]]]


async def _maybe_await(value):
    if asyncio.iscoroutine(value) or isinstance(value, asyncio.Future):
        return await value
    return value


class RefinementLoop:
    """Producer/critic cycle with an explicit iteration ceiling

    Example:
        loop = RefinementLoop(
            producer=write_code,
            critic=review_code,
            max_iterations=3,
            is_satisfied=lambda text: "CODE_IS_PERFECT" in text,
        )
        result = await loop.run("Write a factorial function")
        print(result.state["artifact"])
    """

    def __init__(
        self,
        producer: Producer,
        critic: Critic,
        max_iterations: int = 3,
        is_satisfied: Optional[Callable[[str], bool]] = None,
        name: str = "refinement",
        extra_fields: Optional[List[StateField]] = None,
        timeout_seconds: Optional[float] = None,
        executor: Optional[WorkflowExecutor] = None
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.producer = producer
        self.critic = critic
        self.max_iterations = max_iterations
        self.is_satisfied = is_satisfied or (lambda text: not text.strip())
        self.timeout_seconds = timeout_seconds
        self.schema = StateSchema(name, LOOP_FIELDS + list(extra_fields or []))
        # Two steps per iteration
        self.max_steps = 2 * max_iterations
        self.executor = executor or WorkflowExecutor(max_steps=self.max_steps)
        self.graph = self._build_graph(name)

    def _build_graph(self, name: str) -> WorkflowGraph:
        graph = WorkflowGraph(
            name,
            schema=self.schema,
            description="generate -> critique -> stop-or-continue",
            allow_cycles=True
        )
        extra_reads = set(self.schema.field_names) - {f.name for f in LOOP_FIELDS}

        graph.add_node(Node(
            name=PRODUCE,
            func=self._produce,
            reads=frozenset({"task", "artifact", "critique", "history", "iteration"} | extra_reads),
            writes=frozenset({"artifact", "iteration", "history", "failed", "error"}),
            description="Generate or refine the artifact"
        ))
        graph.add_node(Node(
            name=CRITIQUE,
            func=self._critique,
            reads=frozenset({"task", "artifact", "history", "iteration"} | extra_reads),
            writes=frozenset({"critique", "satisfied", "history", "failed", "error"}),
            description="Evaluate the artifact"
        ))
        graph.set_entry_point(PRODUCE)
        graph.add_conditional_edges(
            PRODUCE,
            [(lambda s: s["failed"], END)],
            default=CRITIQUE
        )
        graph.add_conditional_edges(
            CRITIQUE,
            [
                (lambda s: s["failed"], END),
                (lambda s: s["satisfied"], END),
                (lambda s: s["iteration"] >= self.max_iterations, END),
            ],
            default=PRODUCE
        )
        return graph

    async def _produce(self, state: StateContainer):
        iteration = state["iteration"] + 1
        logger.info(f"Refinement iteration {iteration}/{self.max_iterations}: producing")
        try:
            artifact = await call_with_timeout(
                _maybe_await(self.producer(state)), self.timeout_seconds
            )
        except (IntegrationError, asyncio.TimeoutError) as e:
            logger.warning(f"Producer failed on iteration {iteration}: {e!r}")
            return {"failed": True, "error": f"producer: {e!r}", "iteration": iteration}

        entry = {"role": "producer", "iteration": iteration, "content": artifact}
        return {
            "artifact": artifact,
            "iteration": iteration,
            "history": state["history"] + [entry],
        }

    async def _critique(self, state: StateContainer):
        iteration = state["iteration"]
        try:
            verdict = await call_with_timeout(
                _maybe_await(self.critic(state)), self.timeout_seconds
            )
        except (IntegrationError, asyncio.TimeoutError) as e:
            logger.warning(f"Critic failed on iteration {iteration}: {e!r}")
            return {"failed": True, "error": f"critic: {e!r}"}

        if not isinstance(verdict, Critique):
            text = str(verdict)
            verdict = Critique(satisfied=self.is_satisfied(text), feedback=text)

        if verdict.satisfied:
            logger.info(f"Critic satisfied on iteration {iteration}")
            return {"satisfied": True}

        entry = {"role": "critic", "iteration": iteration, "content": verdict.feedback}
        return {
            "satisfied": False,
            "critique": verdict.feedback,
            "history": state["history"] + [entry],
        }

    async def run(self, task: Any, cancel_event: Optional[asyncio.Event] = None, **fields) -> RunResult:
        """Run the loop for ``task``; extra keyword fields seed extra_fields"""
        initial = dict(fields)
        initial["task"] = task
        # An injected executor may have a lower ceiling than the loop needs
        max_steps = max(self.executor.max_steps, self.max_steps)
        return await self.executor.run(
            self.graph, initial, cancel_event=cancel_event, max_steps=max_steps
        )
