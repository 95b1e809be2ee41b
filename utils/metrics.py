"""Prometheus metrics for workflow runs"""
import logging

from prometheus_client import Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)

workflow_runs = Counter(
    'workflow_runs_total',
    'Workflow runs by final status',
    ['workflow', 'status']
)
node_executions = Counter(
    'workflow_node_executions_total',
    'Node executions by outcome',
    ['workflow', 'node', 'outcome']
)
node_duration = Histogram(
    'workflow_node_duration_seconds',
    'Node execution duration',
    ['workflow', 'node']
)
integration_calls = Counter(
    'workflow_integration_calls_total',
    'Collaborator calls by action and outcome',
    ['integration', 'action', 'outcome']
)
integration_duration = Histogram(
    'workflow_integration_duration_seconds',
    'Collaborator call duration',
    ['integration', 'action']
)


def setup_metrics(settings) -> bool:
    """Start the Prometheus HTTP exporter when enabled"""
    if not settings.metrics_enabled:
        return False
    start_http_server(settings.metrics_port)
    logger.info(f"Metrics exporter listening on port {settings.metrics_port}")
    return True
