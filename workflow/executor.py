"""Workflow Executor - Drives a graph run as a state machine

    READY -> RUNNING(node, state) -> TERMINAL(state) | ABORTED(reason) | CANCELLED

From RUNNING(n, s): execute n against s, merge its partial update into s',
ask the router for the successor n'; END means TERMINAL(s'), anything else
means RUNNING(n', s').

Only contract failures abort a run: a node raising an exception it should
have turned into a state field, a predicate raising, an unknown successor,
an undeclared write, or the step ceiling being hit. There are no retries
at this layer; a retry policy is wired into the graph as a conditional
edge looping back.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from utils import metrics
from utils.tracing import WorkflowTracer
from workflow.edges import END
from workflow.errors import RoutingError, StateContractError, WorkflowAborted, WorkflowError
from workflow.event_store import Event, EventStore, EventType
from workflow.graph import ParallelGroup, WorkflowGraph
from workflow.node import Node
from workflow.state import StateContainer, merge_partials


class RunStatus(Enum):
    """Lifecycle of a single run"""
    READY = "ready"
    RUNNING = "running"
    TERMINAL = "terminal"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


@dataclass
class StepRecord:
    """One executed transition"""
    step: int
    node: str
    update: Dict[str, Any]
    next_node: Optional[str]
    latency_ms: float
    members: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'step': self.step,
            'node': self.node,
            'update': self.update,
            'next_node': self.next_node,
            'latency_ms': self.latency_ms,
            'members': list(self.members)
        }


@dataclass
class RunResult:
    """Outcome of a run: a final state or a structured abort"""
    run_id: str
    workflow: str
    status: RunStatus
    state: StateContainer
    steps: List[StepRecord]
    started_at: datetime
    finished_at: Optional[datetime] = None
    abort_reason: Optional[str] = None
    failed_node: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status == RunStatus.TERMINAL

    @property
    def path(self) -> List[str]:
        """Names of the executed steps, in order"""
        return [s.node for s in self.steps]

    @property
    def duration_seconds(self) -> float:
        if not self.finished_at:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def raise_for_status(self) -> "RunResult":
        """Raise WorkflowAborted if the run aborted"""
        if self.status == RunStatus.ABORTED:
            raise WorkflowAborted(
                self.abort_reason or "unknown",
                node=self.failed_node,
                run_id=self.run_id,
                state=self.state
            )
        return self

    def to_dict(self) -> Dict:
        return {
            'run_id': self.run_id,
            'workflow': self.workflow,
            'status': self.status.value,
            'state': self.state.to_dict(),
            'steps': [s.to_dict() for s in self.steps],
            'abort_reason': self.abort_reason,
            'failed_node': self.failed_node,
            'duration_seconds': self.duration_seconds
        }


class WorkflowExecutor:
    """Executes workflow graphs, one node at a time"""

    def __init__(
        self,
        event_store: Optional[EventStore] = None,
        max_steps: int = 100,
        strict: bool = True
    ):
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self.event_store = event_store
        self.max_steps = max_steps
        self.strict = strict
        self.active_runs: Dict[str, RunStatus] = {}
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings, event_store: Optional[EventStore] = None) -> "WorkflowExecutor":
        """Build an executor from ExecutorSettings"""
        return cls(
            event_store=event_store,
            max_steps=settings.max_steps,
            strict=settings.strict_writes
        )

    async def invoke(
        self,
        workflow: WorkflowGraph,
        initial_state: Union[Mapping[str, Any], StateContainer, None] = None,
        cancel_event: Optional[asyncio.Event] = None,
        max_steps: Optional[int] = None
    ) -> StateContainer:
        """Run and return the final state, raising WorkflowAborted on abort"""
        result = await self.run(workflow, initial_state, cancel_event=cancel_event, max_steps=max_steps)
        result.raise_for_status()
        return result.state

    async def run(
        self,
        workflow: WorkflowGraph,
        initial_state: Union[Mapping[str, Any], StateContainer, None] = None,
        cancel_event: Optional[asyncio.Event] = None,
        run_id: Optional[str] = None,
        max_steps: Optional[int] = None
    ) -> RunResult:
        """Execute a workflow from its entry point to END

        Args:
            workflow: Graph to run (validated first; GraphValidationError
                is raised before anything executes)
            initial_state: Caller-supplied fields (schema defaults fill the rest)
            cancel_event: When set, the run stops before the next node
            run_id: Optional identifier, generated when omitted
            max_steps: Step ceiling for this run only (defaults to the
                executor's max_steps)

        Returns:
            RunResult with TERMINAL, ABORTED or CANCELLED status
        """
        workflow.check()
        run_id = run_id or str(uuid.uuid4())
        log_extra = {'workflow': workflow.name, 'run_id': run_id}

        result = RunResult(
            run_id=run_id,
            workflow=workflow.name,
            status=RunStatus.READY,
            state=StateContainer(),
            steps=[],
            started_at=datetime.utcnow()
        )

        try:
            result.state = self._initial_state(workflow, initial_state)
        except StateContractError as e:
            await self._abort(result, None, str(e), log_extra)
            metrics.workflow_runs.labels(workflow=workflow.name, status=result.status.value).inc()
            return result

        self.active_runs[run_id] = RunStatus.RUNNING
        result.status = RunStatus.RUNNING
        self.logger.info(f"Starting workflow '{workflow.name}' run {run_id}", extra=log_extra)
        await self._emit(EventType.RUN_STARTED, result, metadata={'entry_point': workflow.entry_point})

        try:
            with WorkflowTracer(workflow.workflow_id, workflow.name, run_id) as tracer:
                await self._run_loop(
                    workflow, result, tracer, cancel_event, log_extra, max_steps or self.max_steps
                )
                tracer.finish(result.status.value, result.abort_reason)
        finally:
            self.active_runs.pop(run_id, None)

        metrics.workflow_runs.labels(workflow=workflow.name, status=result.status.value).inc()
        return result

    async def _run_loop(
        self,
        workflow: WorkflowGraph,
        result: RunResult,
        tracer: WorkflowTracer,
        cancel_event: Optional[asyncio.Event],
        log_extra: Dict[str, str],
        max_steps: int
    ):
        current = workflow.entry_point
        step = 0

        while current != END:
            if cancel_event is not None and cancel_event.is_set():
                result.status = RunStatus.CANCELLED
                result.finished_at = datetime.utcnow()
                self.logger.info(
                    f"Run {result.run_id} cancelled before node '{current}'", extra=log_extra
                )
                await self._emit(EventType.RUN_CANCELLED, result, node=current)
                return

            if step >= max_steps:
                await self._abort(
                    result, current, f"Step limit of {max_steps} exceeded", log_extra
                )
                return

            step += 1
            await self._emit(EventType.NODE_STARTED, result, node=current, step=step)
            start_time = time.time()

            try:
                with tracer.step(current, step):
                    update = await self._execute_step(workflow, current, result.state)
                    result.state = result.state.with_merge(update)
                    next_node = workflow.router.resolve(current, result.state)
                    if next_node != END and workflow.get_step(next_node) is None:
                        raise RoutingError(
                            f"Node '{current}' routed to unknown node '{next_node}'",
                            node=current
                        )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                metrics.node_executions.labels(
                    workflow=workflow.name, node=current, outcome="error"
                ).inc()
                # Parallel member failures name the member, not the group
                failed_node = e.node if isinstance(e, WorkflowError) and e.node else current
                await self._abort(
                    result, failed_node, f"{type(e).__name__}: {e}", log_extra, exc_info=True
                )
                return

            latency_ms = (time.time() - start_time) * 1000
            metrics.node_executions.labels(workflow=workflow.name, node=current, outcome="ok").inc()
            metrics.node_duration.labels(workflow=workflow.name, node=current).observe(latency_ms / 1000)

            step_entry = workflow.get_step(current)
            result.steps.append(StepRecord(
                step=step,
                node=current,
                update=update,
                next_node=next_node,
                latency_ms=latency_ms,
                members=list(step_entry.members) if isinstance(step_entry, ParallelGroup) else []
            ))
            self.logger.debug(
                f"Node '{current}' updated {sorted(update)} -> {next_node}",
                extra={**log_extra, 'node': current, 'step': step}
            )
            await self._emit(
                EventType.NODE_COMPLETED, result, node=current, step=step,
                latency_ms=latency_ms, metadata={'fields': sorted(update)}
            )
            await self._emit(EventType.ROUTED, result, node=current, target=next_node, step=step)
            current = next_node

        result.status = RunStatus.TERMINAL
        result.finished_at = datetime.utcnow()
        self.logger.info(
            f"Workflow '{result.workflow}' run {result.run_id} completed in {step} steps",
            extra=log_extra
        )
        await self._emit(EventType.RUN_COMPLETED, result, step=step)

    async def _execute_step(
        self,
        workflow: WorkflowGraph,
        name: str,
        state: StateContainer
    ) -> Dict[str, Any]:
        """Execute a node or a parallel group and return the combined update"""
        entry = workflow.get_step(name)

        if isinstance(entry, ParallelGroup):
            return await self._execute_group(workflow, entry, state)

        return await self._execute_node(entry, state)

    async def _execute_node(self, node: Node, state: StateContainer) -> Dict[str, Any]:
        start_time = time.time()
        node.execution_count += 1
        try:
            update = await node.execute(state)
        finally:
            node.total_latency_ms += (time.time() - start_time) * 1000

        if self.strict:
            node.check_writes(update)
        return update

    async def _execute_group(
        self,
        workflow: WorkflowGraph,
        group: ParallelGroup,
        state: StateContainer
    ) -> Dict[str, Any]:
        """Run all members against the same state, then join"""
        group.execution_count += 1
        members = [workflow.nodes[m] for m in group.members]

        # Join barrier: every member finishes before anything is merged
        results = await asyncio.gather(
            *(self._execute_node(member, state) for member in members),
            return_exceptions=True
        )

        for member, outcome in zip(members, results):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                raise WorkflowError(
                    f"Parallel member '{member.name}' failed: {type(outcome).__name__}: {outcome}",
                    node=member.name
                ) from outcome

        return merge_partials(results)

    def _initial_state(
        self,
        workflow: WorkflowGraph,
        initial_state: Union[Mapping[str, Any], StateContainer, None]
    ) -> StateContainer:
        if isinstance(initial_state, StateContainer):
            if workflow.schema is not None and initial_state.schema is None:
                return workflow.schema.create(initial_state.to_dict())
            return initial_state
        if workflow.schema is not None:
            return workflow.schema.create(initial_state or {})
        return StateContainer(initial_state or {})

    async def _abort(
        self,
        result: RunResult,
        node: Optional[str],
        reason: str,
        log_extra: Dict[str, str],
        exc_info: bool = False
    ) -> RunResult:
        result.status = RunStatus.ABORTED
        result.abort_reason = reason
        result.failed_node = node
        result.finished_at = datetime.utcnow()
        self.logger.error(
            f"Run {result.run_id} aborted at node '{node}': {reason}",
            extra={**log_extra, 'node': node},
            exc_info=exc_info
        )
        await self._emit(EventType.RUN_ABORTED, result, node=node, metadata={'reason': reason})
        return result

    async def _emit(self, event_type: EventType, result: RunResult, **kwargs):
        if not self.event_store:
            return
        await self.event_store.add_event(Event(
            event_type=event_type,
            run_id=result.run_id,
            workflow=result.workflow,
            **kwargs
        ))
