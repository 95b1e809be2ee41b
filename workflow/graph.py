"""State-Graph Workflow Definition

This module defines the graph an executor runs: named nodes, the edges
between them, an entry point and the END marker.

Key Features:
- Fixed and conditional (first-match, with default) edges
- Parallel groups: sibling nodes awaited together behind a join barrier
- Construction-time validation of wiring, field ownership and cycles
- Fluent builder for linear and branching workflows
"""
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from workflow.edges import (
    END,
    START,
    ConditionalEdge,
    EdgeRouter,
    FixedEdge,
    Predicate,
)
from workflow.errors import GraphValidationError
from workflow.node import Node, NodeFunc
from workflow.state import StateSchema


@dataclass
class ParallelGroup:
    """Sibling nodes run concurrently against the same input state"""
    name: str
    members: List[str]
    execution_count: int = 0


class WorkflowGraph:
    """Directed graph of nodes threaded by a shared state

    Example:
        graph = WorkflowGraph("fallback", schema=LOCATION_STATE)
        graph.add_node(primary_handler)
        graph.add_node(fallback_handler)
        graph.set_entry_point("primary_handler")
        graph.add_edge("primary_handler", "fallback_handler")
        graph.add_edge("fallback_handler", END)
    """

    def __init__(
        self,
        name: str,
        schema: Optional[StateSchema] = None,
        description: str = "",
        allow_cycles: bool = False
    ):
        self.workflow_id = str(uuid.uuid4())
        self.name = name
        self.schema = schema
        self.description = description
        self.allow_cycles = allow_cycles
        self.nodes: Dict[str, Node] = {}
        self.groups: Dict[str, ParallelGroup] = {}
        self.router = EdgeRouter()
        self.entry_point: Optional[str] = None
        self.logger = logging.getLogger(__name__)

    # ==================== Construction ====================

    def add_node(
        self,
        node_or_name: Union[Node, str],
        func: Optional[NodeFunc] = None,
        reads: Iterable[str] = (),
        writes: Iterable[str] = (),
        description: str = ""
    ) -> Node:
        """Register a node (a Node instance, or a name plus a function)"""
        if isinstance(node_or_name, Node):
            node = node_or_name
        else:
            if func is None:
                raise GraphValidationError(f"Node '{node_or_name}' needs a function")
            node = Node(
                name=node_or_name,
                func=func,
                reads=frozenset(reads),
                writes=frozenset(writes),
                description=description
            )

        if node.name in (START, END):
            raise GraphValidationError(f"'{node.name}' is a reserved node name")
        if node.name in self.nodes or node.name in self.groups:
            raise GraphValidationError(f"Duplicate node name '{node.name}'")

        self.nodes[node.name] = node
        return node

    def add_edge(self, source: str, target: str) -> FixedEdge:
        """Add a fixed edge; ``source`` may be START to set the entry point"""
        if source == START:
            self.set_entry_point(target)
            return FixedEdge(source=START, target=target)
        edge = FixedEdge(source=source, target=target)
        self.router.add(edge)
        return edge

    def add_conditional_edges(
        self,
        source: str,
        branches: List[Tuple[Predicate, str]],
        default: str
    ) -> ConditionalEdge:
        """Add an ordered predicate chain leaving ``source``"""
        edge = ConditionalEdge.from_pairs(source, branches, default)
        self.router.add(edge)
        return edge

    def add_router(
        self,
        source: str,
        selector: Callable,
        mapping: Mapping[Any, str],
        default: str
    ) -> ConditionalEdge:
        """Add a conditional edge driven by a selector value"""
        edge = ConditionalEdge.from_mapping(source, selector, mapping, default)
        self.router.add(edge)
        return edge

    def add_parallel(self, name: str, members: List[str]) -> ParallelGroup:
        """Register a parallel group over already-added nodes

        The group acts as a single step: all members are awaited
        concurrently, then their outputs are merged before routing on.
        """
        if name in self.nodes or name in self.groups or name in (START, END):
            raise GraphValidationError(f"Duplicate node name '{name}'")
        if len(members) < 2:
            raise GraphValidationError(f"Parallel group '{name}' needs at least two members")
        group = ParallelGroup(name=name, members=list(members))
        self.groups[name] = group
        return group

    def set_entry_point(self, node_name: str):
        """Set the first node to run"""
        self.entry_point = node_name

    def set_finish_point(self, node_name: str):
        """Route ``node_name`` to END"""
        self.add_edge(node_name, END)

    def get_step(self, name: str) -> Union[Node, ParallelGroup, None]:
        return self.nodes.get(name) or self.groups.get(name)

    # ==================== Validation ====================

    def validate(self) -> List[str]:
        """Validate the workflow graph

        Returns list of validation errors (empty if valid)
        """
        errors = []
        steps = set(self.nodes) | set(self.groups)
        members = {m for g in self.groups.values() for m in g.members}

        if not self.entry_point:
            errors.append("Workflow has no entry point")
        elif self.entry_point not in steps:
            errors.append(f"Entry point '{self.entry_point}' is not a node")
        elif self.entry_point in members:
            errors.append(f"Entry point '{self.entry_point}' is a parallel group member")

        for step in steps:
            if step in members:
                if self.router.get(step):
                    errors.append(
                        f"Parallel member '{step}' must not have its own outgoing edge"
                    )
                continue
            if not self.router.get(step):
                errors.append(f"Node {step} has no outgoing edges")

        for source, edge in self.router.edges.items():
            if source not in steps:
                errors.append(f"Edge originates from non-existent node '{source}'")
            for target in edge.targets:
                if target != END and target not in steps:
                    errors.append(f"Edge from '{source}' targets non-existent node '{target}'")
                elif target in members:
                    errors.append(
                        f"Edge from '{source}' targets parallel member '{target}'"
                    )

        errors.extend(self._validate_groups())
        errors.extend(self._validate_fields())

        if not self.allow_cycles and self._has_cycle():
            errors.append("Workflow contains cycles (not a valid DAG)")

        return errors

    def check(self) -> "WorkflowGraph":
        """Raise GraphValidationError if the graph is invalid"""
        errors = self.validate()
        if errors:
            raise GraphValidationError(
                f"Workflow '{self.name}' is invalid: {'; '.join(errors)}",
                errors=errors
            )
        unreachable = set(self.nodes) - self._reachable()
        if unreachable:
            self.logger.warning(f"Workflow '{self.name}' has unreachable nodes: {sorted(unreachable)}")
        return self

    def _validate_groups(self) -> List[str]:
        errors = []
        seen: Dict[str, str] = {}
        for group in self.groups.values():
            owners: Dict[str, str] = {}
            for member in group.members:
                if member not in self.nodes:
                    errors.append(f"Parallel group '{group.name}' references unknown node '{member}'")
                    continue
                if member in seen:
                    errors.append(
                        f"Node '{member}' belongs to both '{seen[member]}' and '{group.name}'"
                    )
                seen[member] = group.name
                for written in self.nodes[member].writes:
                    if written in owners:
                        errors.append(
                            f"Parallel group '{group.name}': '{owners[written]}' and "
                            f"'{member}' both write '{written}'"
                        )
                    owners[written] = member
        return errors

    def _validate_fields(self) -> List[str]:
        """Check declared reads/writes against the state schema"""
        if self.schema is None:
            return []
        errors = []
        for node in self.nodes.values():
            for name in sorted(node.reads | node.writes):
                if name not in self.schema:
                    errors.append(
                        f"Node '{node.name}' declares field '{name}' "
                        f"not in state '{self.schema.name}'"
                    )
        return errors

    def _adjacency(self) -> Dict[str, List[str]]:
        adjacency: Dict[str, List[str]] = defaultdict(list)
        for source, edge in self.router.edges.items():
            adjacency[source].extend(t for t in edge.targets if t != END)
        return adjacency

    def _reachable(self) -> Set[str]:
        reachable: Set[str] = set()
        if not self.entry_point:
            return reachable
        adjacency = self._adjacency()
        stack = [self.entry_point]
        while stack:
            current = stack.pop()
            if current in reachable:
                continue
            reachable.add(current)
            group = self.groups.get(current)
            if group:
                reachable.update(group.members)
            stack.extend(adjacency.get(current, []))
        return reachable

    def _has_cycle(self) -> bool:
        """Check if graph has cycles using DFS"""
        adjacency = self._adjacency()
        visited = set()
        rec_stack = set()

        def dfs(node: str) -> bool:
            visited.add(node)
            rec_stack.add(node)

            for target in adjacency.get(node, []):
                if target not in visited:
                    if dfs(target):
                        return True
                elif target in rec_stack:
                    return True

            rec_stack.remove(node)
            return False

        for node in list(adjacency):
            if node not in visited:
                if dfs(node):
                    return True

        return False

    def to_dict(self) -> Dict:
        """Serialize workflow structure to dictionary"""
        edges = []
        for edge in self.router.edges.values():
            entry = {
                'source': edge.source,
                'type': edge.edge_type.value,
                'targets': edge.targets,
            }
            if isinstance(edge, ConditionalEdge):
                entry['default'] = edge.default
            edges.append(entry)

        return {
            'workflow_id': self.workflow_id,
            'name': self.name,
            'description': self.description,
            'entry_point': self.entry_point,
            'nodes': [
                {
                    'name': n.name,
                    'reads': sorted(n.reads),
                    'writes': sorted(n.writes),
                    'description': n.description
                }
                for n in self.nodes.values()
            ],
            'parallel_groups': [
                {'name': g.name, 'members': list(g.members)}
                for g in self.groups.values()
            ],
            'edges': edges
        }


class WorkflowBuilder:
    """Fluent builder for constructing workflows"""

    def __init__(
        self,
        name: str,
        schema: Optional[StateSchema] = None,
        description: str = ""
    ):
        self.workflow = WorkflowGraph(name=name, schema=schema, description=description)
        self._last_node: Optional[str] = None
        self._pending_ends: List[str] = []

    def then(self, node: Node) -> "WorkflowBuilder":
        """Add a node chained after the previous one by a fixed edge"""
        self.workflow.add_node(node)

        if self._last_node:
            self.workflow.add_edge(self._last_node, node.name)
        else:
            self.workflow.set_entry_point(node.name)

        self._last_node = node.name
        return self

    def parallel(self, name: str, nodes: List[Node]) -> "WorkflowBuilder":
        """Add a parallel group chained after the previous step"""
        for member in nodes:
            self.workflow.add_node(member)
        self.workflow.add_parallel(name, [n.name for n in nodes])

        if self._last_node:
            self.workflow.add_edge(self._last_node, name)
        else:
            self.workflow.set_entry_point(name)

        self._last_node = name
        return self

    def branch(
        self,
        routes: List[Tuple[Predicate, Node]],
        default: Node
    ) -> "WorkflowBuilder":
        """Add a conditional split after the previous step

        Every branch node (and the default) is routed to END unless wired
        later with ``connect``.
        """
        if not self._last_node:
            raise GraphValidationError("branch() needs a preceding step")

        pairs = []
        for predicate, target in routes:
            self.workflow.add_node(target)
            pairs.append((predicate, target.name))
        if default.name not in self.workflow.nodes:
            self.workflow.add_node(default)

        self.workflow.add_conditional_edges(self._last_node, pairs, default.name)
        self._pending_ends.extend([t.name for _, t in routes] + [default.name])
        self._last_node = None  # Branch breaks the chain
        return self

    def connect(self, source: str, target: str) -> "WorkflowBuilder":
        """Manually connect two nodes"""
        self.workflow.add_edge(source, target)
        return self

    def build(self) -> WorkflowGraph:
        """Build, validate and return the workflow"""
        if self._last_node:
            self.workflow.set_finish_point(self._last_node)
        for name in self._pending_ends:
            if not self.workflow.router.get(name):
                self.workflow.set_finish_point(name)
        return self.workflow.check()
