"""
Workflow Engine Utilities

This module provides the ambient stack shared by the engine:
- Configuration loading and validation
- Structured logging
- Tracing and metrics
"""

from utils.config import (
    ConfigError,
    EngineConfig,
    ExecutorSettings,
    LLMSettings,
    MonitoringSettings,
    load_config,
)
from utils.validators import (
    ConfigValidator,
    PayloadValidator,
    ValidationIssue,
    ValidationResult,
    ValidationSeverity,
    validate_config,
)
from utils.logging import setup_logging
from utils.metrics import setup_metrics
from utils.tracing import setup_tracing

__all__ = [
    # Configuration
    "ConfigError",
    "EngineConfig",
    "ExecutorSettings",
    "LLMSettings",
    "MonitoringSettings",
    "load_config",
    # Validation
    "ConfigValidator",
    "PayloadValidator",
    "ValidationIssue",
    "ValidationResult",
    "ValidationSeverity",
    "validate_config",
    # Observability
    "setup_logging",
    "setup_metrics",
    "setup_tracing",
]
