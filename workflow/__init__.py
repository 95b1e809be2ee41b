"""Workflow module: state-graph execution engine"""
from .edges import END, START, Branch, ConditionalEdge, EdgeRouter, EdgeType, FixedEdge
from .errors import (
    GraphValidationError,
    RoutingError,
    StateContractError,
    WorkflowAborted,
    WorkflowError,
)
from .event_store import Event, EventStore, EventType
from .executor import RunResult, RunStatus, StepRecord, WorkflowExecutor
from .graph import ParallelGroup, WorkflowBuilder, WorkflowGraph
from .node import Node, call_with_timeout, node
from .refinement import Critique, RefinementLoop
from .state import StateContainer, StateField, StateSchema, merge_partials

__all__ = [
    'END',
    'START',
    'Branch',
    'ConditionalEdge',
    'EdgeRouter',
    'EdgeType',
    'FixedEdge',
    'GraphValidationError',
    'RoutingError',
    'StateContractError',
    'WorkflowAborted',
    'WorkflowError',
    'Event',
    'EventStore',
    'EventType',
    'RunResult',
    'RunStatus',
    'StepRecord',
    'WorkflowExecutor',
    'ParallelGroup',
    'WorkflowBuilder',
    'WorkflowGraph',
    'Node',
    'call_with_timeout',
    'node',
    'Critique',
    'RefinementLoop',
    'StateContainer',
    'StateField',
    'StateSchema',
    'merge_partials',
]
