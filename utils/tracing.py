"""OpenTelemetry tracing for workflow runs

Each run gets a ``workflow:<name>`` root span and every executed node a
``node:<name>`` child span carrying the run id and step number. Without
``setup_tracing`` the OpenTelemetry API falls back to its no-op tracer, so
the executor can always open spans.
"""
import logging
import os
from contextlib import contextmanager
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode

logger = logging.getLogger(__name__)


class WorkflowSpanAttributes:
    """Standard span attributes for workflow tracing"""
    WORKFLOW_ID = "workflow.id"
    WORKFLOW_NAME = "workflow.name"
    RUN_ID = "workflow.run_id"
    STATUS = "workflow.status"
    NODE_NAME = "workflow.node"
    STEP = "workflow.step"
    NEXT_NODE = "workflow.next_node"
    LATENCY_MS = "workflow.latency.ms"


def setup_tracing(settings, service_name: str = "workflow-engine") -> trace.Tracer:
    """Setup OpenTelemetry tracing

    Args:
        settings: MonitoringSettings with tracing_enabled / tracing_endpoint

    Returns:
        Configured tracer instance
    """
    otlp_endpoint = os.getenv('OTEL_EXPORTER_OTLP_ENDPOINT', settings.tracing_endpoint)

    resource = Resource.create({
        "service.name": os.getenv('SERVICE_NAME', service_name),
        "deployment.environment": os.getenv('ENVIRONMENT', 'development'),
    })
    provider = TracerProvider(resource=resource)

    if settings.tracing_enabled and otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
        logger.info(f"Tracing enabled with OTLP endpoint: {otlp_endpoint}")
    else:
        logger.info("Tracing disabled or no endpoint configured")

    trace.set_tracer_provider(provider)
    return trace.get_tracer(__name__)


def get_tracer(name: str = __name__) -> trace.Tracer:
    """Get a tracer instance"""
    return trace.get_tracer(name)


class WorkflowTracer:
    """Span bookkeeping for a single run"""

    def __init__(self, workflow_id: str, workflow_name: str, run_id: str):
        self.workflow_id = workflow_id
        self.workflow_name = workflow_name
        self.run_id = run_id
        self.tracer = get_tracer()
        self.root_span = None
        self._root_context = None

    def __enter__(self):
        """Start workflow span"""
        self.root_span = self.tracer.start_span(
            f"workflow:{self.workflow_name}",
            attributes={
                WorkflowSpanAttributes.WORKFLOW_ID: self.workflow_id,
                WorkflowSpanAttributes.WORKFLOW_NAME: self.workflow_name,
                WorkflowSpanAttributes.RUN_ID: self.run_id,
            }
        )
        self._root_context = trace.set_span_in_context(self.root_span)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """End workflow span"""
        if self.root_span:
            if exc_type:
                self.root_span.set_status(Status(StatusCode.ERROR, str(exc_val)))
                self.root_span.record_exception(exc_val)
            self.root_span.end()

    @contextmanager
    def step(self, node_name: str, step: int, **attributes):
        """Create a child span for one node execution"""
        span_attributes: Dict[str, Any] = {
            WorkflowSpanAttributes.RUN_ID: self.run_id,
            WorkflowSpanAttributes.NODE_NAME: node_name,
            WorkflowSpanAttributes.STEP: step,
        }
        span_attributes.update(attributes)

        with self.tracer.start_as_current_span(
            f"node:{node_name}",
            context=self._root_context,
            attributes=span_attributes
        ) as span:
            # Exceptions are recorded on the span by start_as_current_span
            yield span

    def finish(self, status: str, error: Optional[str] = None):
        """Record the final run status on the root span"""
        if not self.root_span:
            return
        self.root_span.set_attribute(WorkflowSpanAttributes.STATUS, status)
        if error:
            self.root_span.set_status(Status(StatusCode.ERROR, error))
        else:
            self.root_span.set_status(Status(StatusCode.OK))
