"""
Tests for the prompt library
"""
import pytest

from integration.prompts import PromptError, PromptLibrary


class TestPromptLibrary:
    """Test template lookup and rendering"""

    def test_render(self):
        """Test placeholders are filled"""
        prompts = PromptLibrary({"greet": "Hello {name}, welcome to {place}."})

        assert prompts.render("greet", name="Alex", place="support") == "Hello Alex, welcome to support."
        assert prompts.placeholders("greet") == {"name", "place"}

    def test_placeholder_names_do_not_clash_with_arguments(self):
        """Test templates may use name and prompt_name as placeholders"""
        prompts = PromptLibrary({"label": "{prompt_name}: {name}"})

        assert prompts.render("label", prompt_name="greeting", name="Alex") == "greeting: Alex"
        assert prompts.placeholders("label") == {"prompt_name", "name"}

    def test_missing_value(self):
        """Test rendering without every value fails with the prompt name"""
        prompts = PromptLibrary({"greet": "Hello {name}"})

        with pytest.raises(PromptError) as exc_info:
            prompts.render("greet")

        assert exc_info.value.prompt_name == "greet"
        assert "'name'" in str(exc_info.value)

    def test_unknown_prompt(self):
        """Test asking for a missing template fails"""
        with pytest.raises(PromptError):
            PromptLibrary().get("nothing")

    def test_malformed_template(self):
        """Test unbalanced braces are rejected when added"""
        with pytest.raises(PromptError):
            PromptLibrary({"bad": "Hello {name"})

    def test_non_string_template(self):
        """Test templates must be strings"""
        with pytest.raises(PromptError):
            PromptLibrary({"bad": 42})

    def test_escaped_braces(self):
        """Test doubled braces render literally"""
        prompts = PromptLibrary({"json": 'Reply with {{"answer": "{hint}"}}'})

        assert prompts.render("json", hint="text") == 'Reply with {"answer": "text"}'

    def test_with_defaults_keeps_overrides(self):
        """Test entries already in the library win over defaults"""
        prompts = PromptLibrary({"a": "custom"}).with_defaults({"a": "default", "b": "other"})

        assert prompts.get("a") == "custom"
        assert prompts.get("b") == "other"
        assert prompts.names() == ["a", "b"]
        assert len(prompts) == 2


class TestPromptFile:
    """Test loading prompts from YAML"""

    def test_from_yaml(self, tmp_path):
        """Test a YAML mapping is loaded"""
        path = tmp_path / "prompts.yaml"
        path.write_text("routing.coordinator: |\n  Classify {request}\n")

        prompts = PromptLibrary.from_yaml(str(path), required=["routing.coordinator"])

        assert "routing.coordinator" in prompts
        assert prompts.render("routing.coordinator", request="hi").strip() == "Classify hi"

    def test_loaded_template_with_name_placeholder(self, tmp_path):
        """Test a user file can greet the customer by name"""
        path = tmp_path / "prompts.yaml"
        path.write_text("support.greeting: 'Hello {name}'\n")

        prompts = PromptLibrary.from_yaml(str(path))

        assert prompts.render("support.greeting", name="Alex") == "Hello Alex"

    def test_missing_required_prompt(self, tmp_path):
        """Test required names must be present"""
        path = tmp_path / "prompts.yaml"
        path.write_text("other: text\n")

        with pytest.raises(PromptError) as exc_info:
            PromptLibrary.from_yaml(str(path), required=["routing.coordinator"])

        assert "routing.coordinator" in str(exc_info.value)

    def test_missing_file(self, tmp_path):
        """Test a missing file is reported"""
        with pytest.raises(PromptError):
            PromptLibrary.from_yaml(str(tmp_path / "absent.yaml"))

    def test_not_a_mapping(self, tmp_path):
        """Test the file must hold a mapping"""
        path = tmp_path / "prompts.yaml"
        path.write_text("- one\n- two\n")

        with pytest.raises(PromptError):
            PromptLibrary.from_yaml(str(path))
