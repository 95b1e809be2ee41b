"""
Tests for configuration loading and validation
"""
import pytest
import yaml

from utils.config import (
    ConfigError,
    EngineConfig,
    apply_env_overrides,
    load_config,
)
from utils.validators import (
    ConfigValidator,
    PayloadValidator,
    ValidationSeverity,
    validate_config,
)

VALID_CONFIG = {
    'llm': {
        'provider': 'openai',
        'model': 'gpt-4o-mini',
        'temperature': 0.2,
        'maxRetries': 4,
    },
    'executor': {
        'maxSteps': 25,
        'strictWrites': True,
        'nodeTimeout': 30,
    },
    'logging': {'level': 'DEBUG', 'format': 'text'},
    'monitoring': {
        'tracing': {'enabled': True, 'endpoint': 'localhost:4317'},
        'metrics': {'enabled': False, 'port': 9100},
    },
}


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ('LLM_PROVIDER', 'LLM_MODEL', 'LOG_LEVEL', 'WORKFLOW_MAX_STEPS', 'OPENAI_API_KEY'):
        monkeypatch.delenv(name, raising=False)


def write_config(tmp_path, data):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(data))
    return str(path)


class TestConfigValidator:
    """Test config validation"""

    def test_valid_config(self):
        """Test validation of a valid config"""
        result = ConfigValidator().validate(VALID_CONFIG)

        assert result.valid
        assert len(result.errors) == 0

    def test_empty_config_is_valid(self):
        """Test every section is optional"""
        assert ConfigValidator().validate({}).valid

    def test_invalid_provider(self):
        """Test validation fails for an unknown provider"""
        result = ConfigValidator().validate({'llm': {'provider': 'cohere'}})

        assert not result.valid
        assert result.errors[0].path == 'llm.provider'

    def test_type_mismatch(self):
        """Test a string where a number is expected"""
        result = ConfigValidator().validate({'executor': {'maxSteps': 'ten'}})

        assert not result.valid
        assert 'Expected int' in result.errors[0].message

    def test_bool_is_not_a_number(self):
        """Test a flag is rejected for a numeric field"""
        result = ConfigValidator().validate({'executor': {'nodeTimeout': True}})

        assert not result.valid

    def test_bounds(self):
        """Test minimum and maximum values"""
        result = ConfigValidator().validate({
            'executor': {'maxSteps': 0},
            'monitoring': {'metrics': {'port': 70000}},
        })

        paths = sorted(issue.path for issue in result.errors)
        assert paths == ['executor.maxSteps', 'monitoring.metrics.port']

    def test_invalid_log_level(self):
        """Test log levels are restricted"""
        result = ConfigValidator().validate({'logging': {'level': 'VERBOSE'}})

        assert not result.valid

    def test_unknown_fields_in_strict_mode(self):
        """Test unknown fields are warnings only in strict mode"""
        config = {'llm': {'provider': 'scripted', 'flavour': 'vanilla'}}

        assert ConfigValidator().validate(config).issues == []
        strict = ConfigValidator(strict_mode=True).validate(config)
        assert strict.valid
        assert strict.warnings[0].path == 'llm.flavour'

    def test_semantic_warnings(self):
        """Test a provider without a model and tracing without an endpoint"""
        result = ConfigValidator().validate({
            'llm': {'provider': 'anthropic'},
            'monitoring': {'tracing': {'enabled': True}},
        })

        assert result.valid
        assert {issue.path for issue in result.warnings} == {
            'llm.model', 'monitoring.tracing.endpoint'
        }
        assert all(i.severity == ValidationSeverity.WARNING for i in result.issues)

    def test_validate_file(self, tmp_path):
        """Test validating a file on disk"""
        assert validate_config(write_config(tmp_path, VALID_CONFIG)).valid
        missing = validate_config(str(tmp_path / "absent.yaml"))
        assert not missing.valid
        assert missing.errors[0].path == 'file'


class TestPayloadValidator:
    """Test JSON-schema-like payload validation"""

    def test_nested_object(self):
        """Test required fields and property types recurse"""
        validator = PayloadValidator()
        validator.register_schema('ticket', {
            'type': 'object',
            'required': ['status'],
            'properties': {
                'status': {'type': 'string', 'enum': ['success', 'error']},
                'details': {
                    'type': 'object',
                    'properties': {'priority': {'type': 'integer'}},
                },
            },
        })

        assert validator.validate({'status': 'success'}, 'ticket').valid
        result = validator.validate({'status': 'pending', 'details': {'priority': 'high'}}, 'ticket')
        assert sorted(i.path for i in result.errors) == ['$.details.priority', '$.status']

    def test_unknown_schema(self):
        """Test validating against an unregistered schema fails"""
        assert not PayloadValidator().validate({}, 'missing').valid


class TestLoadConfig:
    """Test loading engine settings"""

    def test_defaults_without_file(self, tmp_path, monkeypatch):
        """Test defaults apply when no config file exists"""
        monkeypatch.chdir(tmp_path)

        config = load_config()

        assert config.llm.provider == 'scripted'
        assert config.executor.max_steps == 100
        assert config.monitoring.tracing_enabled is False

    def test_load_file(self, tmp_path, monkeypatch):
        """Test YAML keys map onto settings"""
        monkeypatch.setenv('OPENAI_API_KEY', 'sk-env')

        config = load_config(write_config(tmp_path, VALID_CONFIG))

        assert config.llm.provider == 'openai'
        assert config.llm.api_key == 'sk-env'
        assert config.llm.max_retries == 4
        assert config.executor.max_steps == 25
        assert config.executor.node_timeout == 30
        assert config.monitoring.log_format == 'text'
        assert config.monitoring.tracing_endpoint == 'localhost:4317'

    def test_env_overrides(self, tmp_path, monkeypatch):
        """Test environment variables win over the file"""
        monkeypatch.setenv('LLM_PROVIDER', 'anthropic')
        monkeypatch.setenv('WORKFLOW_MAX_STEPS', '12')
        monkeypatch.setenv('LOG_LEVEL', 'warning')

        config = load_config(write_config(tmp_path, VALID_CONFIG))

        assert config.llm.provider == 'anthropic'
        assert config.executor.max_steps == 12
        assert config.monitoring.log_level == 'WARNING'

    def test_overrides_do_not_mutate_input(self):
        """Test the raw document is left untouched"""
        data = {'llm': {'provider': 'scripted'}}

        apply_env_overrides(data)

        assert data == {'llm': {'provider': 'scripted'}}

    def test_bad_env_override(self, monkeypatch):
        """Test a non-numeric step limit is a config error"""
        monkeypatch.setenv('WORKFLOW_MAX_STEPS', 'many')

        with pytest.raises(ConfigError):
            apply_env_overrides({})

    def test_missing_explicit_file(self, tmp_path):
        """Test an explicit path must exist"""
        with pytest.raises(ConfigError):
            load_config(str(tmp_path / "absent.yaml"))

    def test_invalid_yaml(self, tmp_path):
        """Test unparsable YAML is reported"""
        path = tmp_path / "config.yaml"
        path.write_text("llm: [unclosed")

        with pytest.raises(ConfigError):
            load_config(str(path))

    def test_invalid_config(self, tmp_path):
        """Test validation errors are raised with the result attached"""
        path = write_config(tmp_path, {'executor': {'maxSteps': -1}})

        with pytest.raises(ConfigError) as exc_info:
            load_config(path)

        assert exc_info.value.result is not None
        assert not exc_info.value.result.valid

    def test_from_dict_explicit_api_key(self):
        """Test an apiKey in the document is used as is"""
        config = EngineConfig.from_dict({'llm': {'provider': 'openai', 'apiKey': 'sk-file'}})

        assert config.llm.api_key == 'sk-file'
