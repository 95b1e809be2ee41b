"""
Workflow Errors - Contract failures raised by the engine

Workflow-level failures (a lookup that found nothing, a tool that timed
out) are never raised: nodes write them into state and conditional edges
route on them. The classes below cover the other kind, programming and
contract mistakes, which abort a run.
"""
from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """Base exception for engine errors"""

    def __init__(
        self,
        message: str,
        node: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.node = node
        self.details = details or {}


class GraphValidationError(WorkflowError):
    """Graph wiring is inconsistent (raised at construction time)"""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or [message]


class StateContractError(WorkflowError):
    """State does not match the declared schema"""


class RoutingError(WorkflowError):
    """No outgoing resolution exists for a node"""


class WorkflowAborted(WorkflowError):
    """A run stopped on a contract failure

    Carries the failing node's name and the reason so callers can tell an
    abort apart from a run that completed with failure fields set.
    """

    def __init__(
        self,
        reason: str,
        node: Optional[str] = None,
        run_id: Optional[str] = None,
        state: Any = None
    ):
        message = f"Run aborted at node '{node}': {reason}" if node else f"Run aborted: {reason}"
        super().__init__(message, node=node)
        self.reason = reason
        self.run_id = run_id
        self.state = state
