"""
Engine configuration

Settings come from a YAML file (see config.yaml) with environment
overrides on top. The merged document is validated before it is turned
into settings objects.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import yaml

from utils.validators import ConfigValidator, ValidationResult

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"


class ConfigError(Exception):
    """Configuration could not be loaded or is invalid"""

    def __init__(self, message: str, result: Optional[ValidationResult] = None):
        super().__init__(message)
        self.result = result


@dataclass
class LLMSettings:
    """Reasoning service selection"""
    provider: str = "scripted"
    model: Optional[str] = None
    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    temperature: float = 0.0
    max_tokens: int = 4096
    timeout: float = 60
    max_retries: int = 3
    retry_delay: float = 1.0


@dataclass
class ExecutorSettings:
    """Executor limits"""
    max_steps: int = 100
    strict_writes: bool = True
    node_timeout: Optional[float] = None


@dataclass
class MonitoringSettings:
    """Logging, tracing and metrics"""
    log_level: str = "INFO"
    log_format: str = "json"
    tracing_enabled: bool = False
    tracing_endpoint: Optional[str] = None
    metrics_enabled: bool = False
    metrics_port: int = 9100


@dataclass
class EngineConfig:
    """Complete engine configuration"""
    llm: LLMSettings = field(default_factory=LLMSettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)
    prompts_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Build settings from a validated config document"""
        llm = data.get('llm') or {}
        executor = data.get('executor') or {}
        log = data.get('logging') or {}
        monitoring = data.get('monitoring') or {}
        tracing = monitoring.get('tracing') or {}
        metrics = monitoring.get('metrics') or {}

        provider = llm.get('provider', 'scripted')
        api_key = llm.get('apiKey')
        if api_key is None and provider == 'openai':
            api_key = os.getenv('OPENAI_API_KEY')
        elif api_key is None and provider == 'anthropic':
            api_key = os.getenv('ANTHROPIC_API_KEY')

        return cls(
            llm=LLMSettings(
                provider=provider,
                model=llm.get('model'),
                endpoint=llm.get('endpoint'),
                api_key=api_key,
                temperature=llm.get('temperature', 0.0),
                max_tokens=llm.get('maxTokens', 4096),
                timeout=llm.get('timeout', 60),
                max_retries=llm.get('maxRetries', 3),
                retry_delay=llm.get('retryDelay', 1.0),
            ),
            executor=ExecutorSettings(
                max_steps=executor.get('maxSteps', 100),
                strict_writes=executor.get('strictWrites', True),
                node_timeout=executor.get('nodeTimeout'),
            ),
            monitoring=MonitoringSettings(
                log_level=log.get('level', 'INFO'),
                log_format=log.get('format', 'json'),
                tracing_enabled=tracing.get('enabled', False),
                tracing_endpoint=tracing.get('endpoint'),
                metrics_enabled=metrics.get('enabled', False),
                metrics_port=metrics.get('port', 9100),
            ),
            prompts_path=(data.get('prompts') or {}).get('path'),
        )


def apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay environment variables onto a raw config document"""
    merged = {key: dict(value) if isinstance(value, dict) else value for key, value in data.items()}

    provider = os.getenv('LLM_PROVIDER')
    if provider:
        merged.setdefault('llm', {})['provider'] = provider

    model = os.getenv('LLM_MODEL')
    if model:
        merged.setdefault('llm', {})['model'] = model

    level = os.getenv('LOG_LEVEL')
    if level:
        merged.setdefault('logging', {})['level'] = level.upper()

    max_steps = os.getenv('WORKFLOW_MAX_STEPS')
    if max_steps:
        try:
            merged.setdefault('executor', {})['maxSteps'] = int(max_steps)
        except ValueError as e:
            raise ConfigError(f"WORKFLOW_MAX_STEPS must be an integer, got '{max_steps}'") from e

    return merged


def load_config(path: Optional[str] = None, validate: bool = True) -> EngineConfig:
    """
    Load engine configuration.

    Args:
        path: YAML file; when None, ``config.yaml`` is used if present,
            otherwise defaults apply
        validate: Run ConfigValidator over the merged document

    Raises:
        ConfigError: file missing, unparsable or invalid
    """
    data: Dict[str, Any] = {}
    config_path = path or DEFAULT_CONFIG_PATH

    if os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
        logger.info(f"Loaded config from {config_path}")
    elif path:
        raise ConfigError(f"Config file not found: {path}")

    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping, got {type(data).__name__}")

    data = apply_env_overrides(data)

    if validate:
        result = ConfigValidator().validate(data)
        for issue in result.warnings:
            logger.warning(f"Config: {issue}")
        if not result.valid:
            details = "; ".join(str(i) for i in result.errors)
            raise ConfigError(f"Invalid configuration: {details}", result=result)

    return EngineConfig.from_dict(data)
