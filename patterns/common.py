"""Helpers shared by the bundled workflows"""
import json
import re
from typing import Any, Dict, Optional

from workflow.executor import WorkflowExecutor

_FENCE = re.compile(r"^```[\w-]*\s*\n(.*?)\n?```\s*$", re.DOTALL)


def clean_code_block(text: str) -> str:
    """Strip a surrounding markdown code fence, if any"""
    lines = text.strip().split("\n")
    if lines and lines[0].strip().startswith("```"):
        lines = lines[1:]
    if lines and lines[-1].strip() == "```":
        lines = lines[:-1]
    return "\n".join(lines).strip()


def parse_json_object(text: str) -> Dict[str, Any]:
    """Parse a JSON object out of model output

    Accepts a bare object, a fenced block, or an object embedded in prose.

    Raises:
        ValueError: no JSON object could be decoded
    """
    candidate = text.strip()
    fenced = _FENCE.match(candidate)
    if fenced:
        candidate = fenced.group(1).strip()

    try:
        value = json.loads(candidate)
    except json.JSONDecodeError:
        start, end = candidate.find("{"), candidate.rfind("}")
        if start == -1 or end <= start:
            raise ValueError(f"No JSON object in: {text[:80]!r}") from None
        try:
            value = json.loads(candidate[start:end + 1])
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON object: {e}") from e

    if not isinstance(value, dict):
        raise ValueError(f"Expected a JSON object, got {type(value).__name__}")
    return value


def normalize_label(text: str) -> str:
    """Reduce a one-word classification to lower case without quotes or punctuation"""
    return text.strip().strip("'\"`.!").strip().lower()


def default_executor(executor: Optional[WorkflowExecutor]) -> WorkflowExecutor:
    return executor or WorkflowExecutor()
