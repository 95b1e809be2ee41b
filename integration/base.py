"""
Base Integration - Abstract base classes for external collaborators

Collaborators (reasoning service, tools, retrievers) are injected into the
nodes that use them. Their failures surface as ``IntegrationError``
subclasses, which nodes catch and turn into state fields.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from utils import metrics

logger = logging.getLogger(__name__)


class IntegrationError(Exception):
    """Base exception for collaborator errors"""

    def __init__(
        self,
        message: str,
        integration_name: str = None,
        error_code: str = None,
        retryable: bool = False,
        details: Dict[str, Any] = None
    ):
        super().__init__(message)
        self.integration_name = integration_name
        self.error_code = error_code
        self.retryable = retryable
        self.details = details or {}


class ServiceError(IntegrationError):
    """Reasoning service failed (network, quota, model error)"""


class ToolError(IntegrationError):
    """Tool invocation failed (invalid arguments or execution failure)"""

    def __init__(self, message: str, tool_name: str = None, **kwargs):
        super().__init__(message, integration_name=tool_name, **kwargs)
        self.tool_name = tool_name


@dataclass
class IntegrationConfig:
    """Connection and retry settings for one collaborator"""
    name: str
    endpoint: str = ""
    timeout: int = 30
    api_key: Optional[str] = None

    # Retries happen here; the executor never re-runs a node
    max_retries: int = 3
    retry_delay: float = 1.0
    retry_multiplier: float = 2.0


@dataclass
class IntegrationResult:
    """Outcome of one collaborator call"""
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    latency_ms: float = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any, latency_ms: float = 0, **metadata) -> 'IntegrationResult':
        return cls(success=True, data=data, latency_ms=latency_ms, metadata=metadata)

    @classmethod
    def fail(
        cls,
        error: str,
        error_code: str = None,
        latency_ms: float = 0,
        **metadata
    ) -> 'IntegrationResult':
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            latency_ms=latency_ms,
            metadata=metadata
        )


class BaseIntegration(ABC):
    """
    Lazily initialised collaborator usable as an async context manager.

    Every call through ``execute`` is counted in the
    ``workflow_integration_calls_total`` metric by action and outcome.
    Subclasses implement ``_do_execute`` and optionally the
    initialise/shutdown hooks.
    """

    def __init__(self, config: IntegrationConfig):
        self.config = config
        self.logger = logging.getLogger(f"{__name__}.{config.name}")
        self._initialized = False

    @property
    def name(self) -> str:
        return self.config.name

    async def initialize(self):
        if self._initialized:
            return

        self.logger.info(f"Initializing integration: {self.name}")
        try:
            await self._do_initialize()
        except Exception as e:
            self.logger.error(f"Failed to initialize {self.name}: {e}")
            raise ServiceError(
                f"Initialization failed: {e}",
                integration_name=self.name,
                retryable=True
            ) from e
        self._initialized = True

    async def shutdown(self):
        if not self._initialized:
            return

        self.logger.info(f"Shutting down integration: {self.name}")
        await self._do_shutdown()
        self._initialized = False

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()

    async def _do_initialize(self):
        """Open sessions or clients (optional override)"""

    async def _do_shutdown(self):
        """Release what _do_initialize opened (optional override)"""

    async def execute(
        self,
        action: str,
        payload: Dict[str, Any] = None,
        **kwargs
    ) -> IntegrationResult:
        """
        Run one action against the collaborator.

        ``IntegrationError`` from the subclass propagates unchanged; any
        other exception is reported as a failed result.
        """
        if not self._initialized:
            await self.initialize()

        start_time = time.time()
        try:
            data = await self._do_execute(action, payload or {}, **kwargs)
        except IntegrationError:
            self._record(action, "error", start_time)
            raise
        except Exception as e:
            latency_ms = self._record(action, "error", start_time)
            self.logger.error(f"{self.name} {action} failed: {e}")
            return IntegrationResult.fail(error=str(e), latency_ms=latency_ms, action=action)

        latency_ms = self._record(action, "ok", start_time)
        return IntegrationResult.ok(data=data, latency_ms=latency_ms, action=action)

    def _record(self, action: str, outcome: str, start_time: float) -> float:
        elapsed = time.time() - start_time
        metrics.integration_calls.labels(integration=self.name, action=action, outcome=outcome).inc()
        metrics.integration_duration.labels(integration=self.name, action=action).observe(elapsed)
        return elapsed * 1000

    @abstractmethod
    async def _do_execute(
        self,
        action: str,
        payload: Dict[str, Any],
        **kwargs
    ) -> Any:
        """Perform the collaborator-specific call"""
