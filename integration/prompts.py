"""
Prompt Library - Named prompt templates

Templates use ``str.format`` placeholders. Patterns ship their own
defaults; a YAML file can override any of them by name:

    routing.coordinator: |
      Classify the request ... {request}
"""
import logging
import os
import string
from typing import Dict, Iterable, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)


class PromptError(Exception):
    """Template missing, malformed or rendered with missing values"""

    def __init__(self, message: str, prompt_name: str = None):
        super().__init__(message)
        self.prompt_name = prompt_name


class PromptLibrary:
    """A set of named templates"""

    def __init__(self, templates: Optional[Mapping[str, str]] = None):
        self._templates: Dict[str, str] = {}
        for name, template in (templates or {}).items():
            self.add(name, template)

    @classmethod
    def from_yaml(cls, path: str, required: Iterable[str] = ()) -> "PromptLibrary":
        """
        Load templates from a YAML mapping of name -> template.

        Raises:
            PromptError: file missing, not a mapping, or lacking a required name
        """
        if not os.path.exists(path):
            raise PromptError(f"Prompt file not found: {path}")
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise PromptError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise PromptError(f"Prompt file {path} must contain a mapping")

        library = cls(data)
        library.require(required)
        logger.info(f"Loaded {len(library)} prompts from {path}")
        return library

    def add(self, name: str, template: str):
        if not isinstance(template, str):
            raise PromptError(f"Prompt '{name}' must be a string", prompt_name=name)
        try:
            list(string.Formatter().parse(template))
        except ValueError as e:
            raise PromptError(f"Prompt '{name}' is malformed: {e}", prompt_name=name) from e
        self._templates[name] = template

    def with_defaults(self, defaults: Mapping[str, str]) -> "PromptLibrary":
        """New library where names missing here are taken from ``defaults``"""
        merged = dict(defaults)
        merged.update(self._templates)
        return PromptLibrary(merged)

    def require(self, names: Iterable[str]):
        missing = [name for name in names if name not in self._templates]
        if missing:
            raise PromptError(f"Missing prompts: {', '.join(missing)}")

    def placeholders(self, prompt_name: str, /) -> set:
        """Field names a template expects"""
        return {
            field for _, field, _, _ in string.Formatter().parse(self.get(prompt_name))
            if field
        }

    def get(self, prompt_name: str, /) -> str:
        try:
            return self._templates[prompt_name]
        except KeyError:
            raise PromptError(f"Unknown prompt '{prompt_name}'", prompt_name=prompt_name) from None

    def render(self, prompt_name: str, /, **values) -> str:
        """Fill a template; every placeholder must be supplied

        The template name is positional-only so ``name`` can be a placeholder.
        """
        template = self.get(prompt_name)
        try:
            return template.format(**values)
        except KeyError as e:
            raise PromptError(
                f"Prompt '{prompt_name}' needs a value for {e.args[0]!r}", prompt_name=prompt_name
            ) from e
        except (IndexError, ValueError) as e:
            raise PromptError(
                f"Prompt '{prompt_name}' could not be rendered: {e}", prompt_name=prompt_name
            ) from e

    def __contains__(self, name: str) -> bool:
        return name in self._templates

    def __len__(self) -> int:
        return len(self._templates)

    def names(self):
        return sorted(self._templates)
