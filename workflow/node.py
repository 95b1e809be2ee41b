"""
Workflow Nodes - Named units of work

A node is a function of the current state that returns a partial update.
It may be a plain function or a coroutine function; the executor always
awaits ``Node.execute``. Each node declares which fields it reads and
which it writes so the graph can check ownership at construction time.

Nodes that call an external collaborator are expected to catch its
failure (and its timeout) and write a failure field instead of raising.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, Mapping, Optional

from workflow.errors import StateContractError
from workflow.state import StateContainer

logger = logging.getLogger(__name__)

NodeFunc = Callable[[StateContainer], Any]


@dataclass
class Node:
    """A named state transformation"""
    name: str
    func: NodeFunc
    reads: FrozenSet[str] = field(default_factory=frozenset)
    writes: FrozenSet[str] = field(default_factory=frozenset)
    description: str = ""
    # Execution tracking
    execution_count: int = 0
    total_latency_ms: float = 0.0

    def __post_init__(self):
        if not self.name:
            raise ValueError("Node name must not be empty")
        self.reads = frozenset(self.reads)
        self.writes = frozenset(self.writes)

    @property
    def avg_latency_ms(self) -> float:
        if self.execution_count == 0:
            return 0.0
        return self.total_latency_ms / self.execution_count

    async def execute(self, state: StateContainer) -> Dict[str, Any]:
        """Run the node against ``state`` and return its partial update"""
        result = self.func(state)
        if inspect.isawaitable(result):
            result = await result

        if result is None:
            return {}
        if not isinstance(result, Mapping):
            raise StateContractError(
                f"Node '{self.name}' returned {type(result).__name__}, expected a mapping",
                node=self.name
            )
        return dict(result)

    def check_writes(self, update: Mapping[str, Any]):
        """Raise if the update touches fields the node did not declare"""
        undeclared = set(update) - self.writes
        if undeclared:
            raise StateContractError(
                f"Node '{self.name}' wrote undeclared fields: {sorted(undeclared)}",
                node=self.name,
                details={'undeclared': sorted(undeclared), 'writes': sorted(self.writes)}
            )


def node(
    name: Optional[str] = None,
    reads: Iterable[str] = (),
    writes: Iterable[str] = (),
    description: str = ""
) -> Callable[[NodeFunc], Node]:
    """Decorator that turns a function into a Node

    Example:
        @node(reads={"query"}, writes={"preciseLocationResult", "primaryLocationFailed"})
        async def primary_handler(state):
            ...
    """
    def decorator(func: NodeFunc) -> Node:
        return Node(
            name=name or func.__name__,
            func=func,
            reads=frozenset(reads),
            writes=frozenset(writes),
            description=description or (inspect.getdoc(func) or "").split("\n")[0]
        )
    return decorator


async def call_with_timeout(awaitable: Awaitable, timeout: Optional[float]) -> Any:
    """Await a collaborator call, bounded by ``timeout`` seconds

    Raises ``asyncio.TimeoutError`` when the bound is hit; nodes treat that
    the same as a collaborator failure.
    """
    if timeout is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=timeout)
