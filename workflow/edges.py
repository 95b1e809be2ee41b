"""
Edge Routing - Deciding which node runs next

Two resolution strategies:
- Fixed: a constant successor (possibly the END marker)
- Conditional: an ordered list of (predicate, target) branches evaluated
  against the current state, first match wins, with a mandatory default

Predicates must be pure functions of the state so a routing decision can
be replayed from a state snapshot.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from workflow.errors import GraphValidationError, RoutingError
from workflow.state import StateContainer

logger = logging.getLogger(__name__)

START = "__start__"
END = "__end__"

Predicate = Callable[[StateContainer], bool]


class EdgeType(Enum):
    """Types of edges between nodes"""
    FIXED = "fixed"              # A -> B (always)
    CONDITIONAL = "conditional"  # A -> first matching branch, else default


@dataclass
class Branch:
    """One guarded arm of a conditional edge"""
    predicate: Predicate
    target: str
    label: str = ""


@dataclass
class FixedEdge:
    """An edge that always leads to the same node"""
    source: str
    target: str
    traversal_count: int = 0

    @property
    def edge_type(self) -> EdgeType:
        return EdgeType.FIXED

    @property
    def targets(self) -> List[str]:
        return [self.target]

    def resolve(self, state: StateContainer) -> str:
        return self.target


@dataclass
class ConditionalEdge:
    """Guarded if-chain: first predicate that holds selects the target"""
    source: str
    branches: List[Branch]
    default: str
    traversal_counts: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        if not self.default:
            raise GraphValidationError(
                f"Conditional edge from '{self.source}' needs a default branch"
            )

    @property
    def edge_type(self) -> EdgeType:
        return EdgeType.CONDITIONAL

    @property
    def targets(self) -> List[str]:
        targets = [b.target for b in self.branches]
        if self.default not in targets:
            targets.append(self.default)
        return targets

    def resolve(self, state: StateContainer) -> str:
        for branch in self.branches:
            if branch.predicate(state):
                return branch.target
        return self.default

    @classmethod
    def from_pairs(
        cls,
        source: str,
        branches: List[Tuple[Predicate, str]],
        default: str
    ) -> "ConditionalEdge":
        return cls(
            source=source,
            branches=[Branch(predicate=p, target=t) for p, t in branches],
            default=default
        )

    @classmethod
    def from_mapping(
        cls,
        source: str,
        selector: Callable[[StateContainer], Any],
        mapping: Mapping[Any, str],
        default: str
    ) -> "ConditionalEdge":
        """Build branches from a selector whose result is looked up in ``mapping``

        Branch order follows the mapping's insertion order.
        """
        branches = []
        for key, target in mapping.items():
            branches.append(Branch(
                predicate=lambda state, _key=key: selector(state) == _key,
                target=target,
                label=str(key)
            ))
        return cls(source=source, branches=branches, default=default)


class EdgeRouter:
    """Resolves the successor of a completed node"""

    def __init__(self):
        self.edges: Dict[str, Any] = {}

    def add(self, edge):
        if edge.source in self.edges:
            raise GraphValidationError(
                f"Node '{edge.source}' already has an outgoing edge"
            )
        self.edges[edge.source] = edge

    def get(self, source: str):
        return self.edges.get(source)

    def successors(self, source: str) -> List[str]:
        edge = self.edges.get(source)
        return edge.targets if edge else []

    def resolve(self, source: str, state: StateContainer) -> str:
        """Return the name of the next node (or END)

        Raises:
            RoutingError: the node has no outgoing edge
        """
        edge = self.edges.get(source)
        if edge is None:
            raise RoutingError(f"No outgoing edge from node '{source}'", node=source)

        target = edge.resolve(state)
        if isinstance(edge, FixedEdge):
            edge.traversal_count += 1
        else:
            edge.traversal_counts[target] = edge.traversal_counts.get(target, 0) + 1

        logger.debug(f"Routed {source} -> {target}")
        return target
