"""
Schema Validators

Validation for the engine configuration file and for tool argument and
result payloads. Issues are collected rather than raised so callers can
report everything that is wrong at once.
"""
import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


class ValidationSeverity(Enum):
    """Validation issue severity"""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class ValidationIssue:
    """Represents a validation issue"""
    path: str
    message: str
    severity: ValidationSeverity
    value: Any = None
    suggestion: Optional[str] = None

    def __str__(self):
        return f"{self.severity.value.upper()} [{self.path}] {self.message}"


@dataclass
class ValidationResult:
    """Result of validation"""
    valid: bool
    issues: List[ValidationIssue]

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.ERROR]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.WARNING]

    def __str__(self):
        if self.valid:
            return f"Valid ({len(self.warnings)} warnings)"
        return f"Invalid ({len(self.errors)} errors, {len(self.warnings)} warnings)"


def _result(issues: List[ValidationIssue]) -> ValidationResult:
    has_errors = any(i.severity == ValidationSeverity.ERROR for i in issues)
    return ValidationResult(valid=not has_errors, issues=issues)


# ==================== Config Schema Definition ====================

LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']

CONFIG_SCHEMA = {
    'llm': {
        'required': False,
        'type': dict,
        'schema': {
            'provider': {'required': False, 'type': str, 'values': ['scripted', 'openai', 'anthropic']},
            'model': {'required': False, 'type': str},
            'endpoint': {'required': False, 'type': str},
            'temperature': {'required': False, 'type': (int, float), 'min': 0},
            'maxTokens': {'required': False, 'type': int, 'min': 1},
            'timeout': {'required': False, 'type': (int, float), 'min': 0},
            'maxRetries': {'required': False, 'type': int, 'min': 1},
            'retryDelay': {'required': False, 'type': (int, float), 'min': 0},
        }
    },
    'executor': {
        'required': False,
        'type': dict,
        'schema': {
            'maxSteps': {'required': False, 'type': int, 'min': 1},
            'strictWrites': {'required': False, 'type': bool},
            'nodeTimeout': {'required': False, 'type': (int, float), 'min': 0},
        }
    },
    'logging': {
        'required': False,
        'type': dict,
        'schema': {
            'level': {'required': False, 'type': str, 'values': LOG_LEVELS},
            'format': {'required': False, 'type': str, 'values': ['json', 'text']},
        }
    },
    'monitoring': {
        'required': False,
        'type': dict,
        'schema': {
            'tracing': {
                'required': False,
                'type': dict,
                'schema': {
                    'enabled': {'required': False, 'type': bool},
                    'endpoint': {'required': False, 'type': str},
                }
            },
            'metrics': {
                'required': False,
                'type': dict,
                'schema': {
                    'enabled': {'required': False, 'type': bool},
                    'port': {'required': False, 'type': int, 'min': 1, 'max': 65535},
                }
            },
        }
    },
    'prompts': {
        'required': False,
        'type': dict,
        'schema': {
            'path': {'required': False, 'type': str},
        }
    },
}


def _type_name(expected) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


# ==================== Config Validator ====================

class ConfigValidator:
    """
    Validates engine configuration against CONFIG_SCHEMA.

    Ensures fields have the right types and allowed values, and flags
    settings that are legal but probably not what was meant.
    """

    def __init__(self, strict_mode: bool = False, schema: Dict[str, Any] = None):
        """
        Initialize validator.

        Args:
            strict_mode: If True, unknown fields are flagged as warnings
            schema: Schema to validate against (defaults to CONFIG_SCHEMA)
        """
        self.strict_mode = strict_mode
        self.schema = schema or CONFIG_SCHEMA

    def validate_file(self, config_path: str) -> ValidationResult:
        """Validate a config file"""
        if not os.path.exists(config_path):
            return _result([ValidationIssue(
                path="file",
                message=f"Config file not found: {config_path}",
                severity=ValidationSeverity.ERROR
            )])

        try:
            with open(config_path, 'r') as f:
                config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            return _result([ValidationIssue(
                path="file",
                message=f"Invalid YAML: {e}",
                severity=ValidationSeverity.ERROR
            )])

        return self.validate(config)

    def validate(self, config: Dict[str, Any]) -> ValidationResult:
        """Validate config dictionary"""
        issues = []

        if not isinstance(config, dict):
            issues.append(ValidationIssue(
                path="",
                message=f"Config must be a mapping, got {type(config).__name__}",
                severity=ValidationSeverity.ERROR
            ))
            return _result(issues)

        self._validate_schema(config, self.schema, "", issues)
        self._validate_semantics(config, issues)

        return _result(issues)

    def _validate_schema(
        self,
        data: Dict[str, Any],
        schema: Dict[str, Any],
        path: str,
        issues: List[ValidationIssue]
    ):
        """Recursively validate data against schema"""
        for field, spec in schema.items():
            field_path = f"{path}.{field}" if path else field

            if field not in data:
                if spec.get('required'):
                    issues.append(ValidationIssue(
                        path=field_path,
                        message=f"Required field '{field}' is missing",
                        severity=ValidationSeverity.ERROR,
                        suggestion=f"Add '{field}' to the config"
                    ))
                continue

            value = data[field]

            expected_type = spec.get('type')
            # bool is an int subclass; a flag is never a number here
            wrong_bool = isinstance(value, bool) and expected_type is not bool
            if expected_type and (wrong_bool or not isinstance(value, expected_type)):
                issues.append(ValidationIssue(
                    path=field_path,
                    message=f"Expected {_type_name(expected_type)}, got {type(value).__name__}",
                    severity=ValidationSeverity.ERROR,
                    value=value
                ))
                continue

            allowed_values = spec.get('values')
            if allowed_values and value not in allowed_values:
                issues.append(ValidationIssue(
                    path=field_path,
                    message=f"Invalid value '{value}'. Allowed: {allowed_values}",
                    severity=ValidationSeverity.ERROR,
                    value=value,
                    suggestion=f"Use one of: {', '.join(allowed_values)}"
                ))

            if 'min' in spec and value < spec['min']:
                issues.append(ValidationIssue(
                    path=field_path,
                    message=f"Value {value} is below the minimum of {spec['min']}",
                    severity=ValidationSeverity.ERROR,
                    value=value
                ))
            if 'max' in spec and value > spec['max']:
                issues.append(ValidationIssue(
                    path=field_path,
                    message=f"Value {value} is above the maximum of {spec['max']}",
                    severity=ValidationSeverity.ERROR,
                    value=value
                ))

            pattern = spec.get('pattern')
            if pattern and isinstance(value, str) and not re.match(pattern, value):
                issues.append(ValidationIssue(
                    path=field_path,
                    message=f"Value '{value}' does not match pattern {pattern}",
                    severity=ValidationSeverity.WARNING,
                    value=value
                ))

            nested_schema = spec.get('schema')
            if nested_schema and isinstance(value, dict):
                self._validate_schema(value, nested_schema, field_path, issues)

        if self.strict_mode:
            for field in set(data) - set(schema):
                issues.append(ValidationIssue(
                    path=f"{path}.{field}" if path else field,
                    message=f"Unknown field '{field}'",
                    severity=ValidationSeverity.WARNING
                ))

    def _validate_semantics(self, config: Dict[str, Any], issues: List[ValidationIssue]):
        """Perform semantic validations beyond schema"""
        llm = config.get('llm') or {}
        provider = llm.get('provider')
        if provider in ('openai', 'anthropic') and not llm.get('model'):
            issues.append(ValidationIssue(
                path="llm.model",
                message=f"No model configured for provider '{provider}'",
                severity=ValidationSeverity.WARNING,
                suggestion="Set llm.model or LLM_MODEL; the adapter default is used"
            ))

        tracing = (config.get('monitoring') or {}).get('tracing') or {}
        if tracing.get('enabled') and not tracing.get('endpoint'):
            issues.append(ValidationIssue(
                path="monitoring.tracing.endpoint",
                message="Tracing enabled but no endpoint specified",
                severity=ValidationSeverity.WARNING,
                suggestion="Set monitoring.tracing.endpoint or OTEL_EXPORTER_OTLP_ENDPOINT"
            ))


# ==================== Payload Validators ====================

JSON_TYPES = {
    'string': str,
    'integer': int,
    'number': (int, float),
    'boolean': bool,
    'array': list,
    'object': dict,
}


class PayloadValidator:
    """
    Validates tool arguments and results against JSON-schema-like schemas.

    Supported keywords: type, required, properties, enum and
    additionalProperties (False rejects unknown fields).
    """

    def __init__(self, schemas: Dict[str, Dict] = None):
        self.schemas = schemas or {}

    def register_schema(self, name: str, schema: Dict[str, Any]):
        """Register a JSON schema"""
        self.schemas[name] = schema

    def has_schema(self, name: str) -> bool:
        return name in self.schemas

    def validate(self, data: Any, schema_name: str) -> ValidationResult:
        """
        Validate data against a registered schema.

        Args:
            data: Data to validate
            schema_name: Name of schema to validate against

        Returns:
            ValidationResult
        """
        if schema_name not in self.schemas:
            return _result([ValidationIssue(
                path="schema",
                message=f"Schema '{schema_name}' not found",
                severity=ValidationSeverity.ERROR
            )])

        issues = []
        self._validate_value(data, self.schemas[schema_name], "$", issues)
        return _result(issues)

    def _validate_value(self, value: Any, schema: Dict[str, Any], path: str, issues: List[ValidationIssue]):
        expected_type = schema.get('type')
        if expected_type in JSON_TYPES:
            python_type = JSON_TYPES[expected_type]
            wrong_bool = isinstance(value, bool) and expected_type in ('integer', 'number')
            if wrong_bool or not isinstance(value, python_type):
                issues.append(ValidationIssue(
                    path=path,
                    message=f"Expected {expected_type}, got {type(value).__name__}",
                    severity=ValidationSeverity.ERROR,
                    value=value
                ))
                return

        allowed = schema.get('enum')
        if allowed is not None and value not in allowed:
            issues.append(ValidationIssue(
                path=path,
                message=f"Invalid value {value!r}. Allowed: {allowed}",
                severity=ValidationSeverity.ERROR,
                value=value
            ))

        if not isinstance(value, dict):
            return

        for field in schema.get('required', []):
            if field not in value:
                issues.append(ValidationIssue(
                    path=f"{path}.{field}",
                    message=f"Required field '{field}' is missing",
                    severity=ValidationSeverity.ERROR
                ))

        properties = schema.get('properties', {})
        for field, prop_schema in properties.items():
            if field in value:
                self._validate_value(value[field], prop_schema, f"{path}.{field}", issues)

        if schema.get('additionalProperties') is False:
            for field in set(value) - set(properties):
                issues.append(ValidationIssue(
                    path=f"{path}.{field}",
                    message=f"Unexpected field '{field}'",
                    severity=ValidationSeverity.ERROR
                ))


# ==================== Utility Functions ====================

def validate_config(config_path: str, strict: bool = False) -> ValidationResult:
    """
    Convenience function to validate a config file.

    Args:
        config_path: Path to config.yaml
        strict: Flag unknown fields

    Returns:
        ValidationResult
    """
    return ConfigValidator(strict_mode=strict).validate_file(config_path)
