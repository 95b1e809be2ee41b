"""
Workflow State - Immutable, mergeable record threaded through a run

A StateContainer is created once per run from the caller's initial fields
plus schema defaults. Nodes never touch it directly: they return partial
updates and the executor merges them with ``with_merge``, which always
produces a new container.

Merge rule: present keys overwrite, absent keys are untouched, nested
values are replaced wholesale (no deep merge).
"""
import logging
from collections import abc
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from workflow.errors import StateContractError

logger = logging.getLogger(__name__)


class _Missing:
    """Sentinel for fields without a default"""

    def __repr__(self):
        return "MISSING"


MISSING = _Missing()


@dataclass
class StateField:
    """Declaration of a single state field"""
    name: str
    type: Union[type, Tuple[type, ...], None] = None  # None means any value
    default: Any = MISSING
    default_factory: Optional[Callable[[], Any]] = None
    required: bool = False
    description: str = ""

    @property
    def has_default(self) -> bool:
        return self.default is not MISSING or self.default_factory is not None

    def make_default(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        return self.default

    def accepts(self, value: Any) -> bool:
        """Check a value against the declared type (None is allowed for optional fields)"""
        if self.type is None:
            return True
        if value is None:
            return not self.required
        return isinstance(value, self.type)


class StateSchema:
    """Shape contract for one workflow's state

    Example:
        schema = StateSchema("location", [
            StateField("query", str, required=True),
            StateField("primaryLocationFailed", bool, default=False),
        ])
        state = schema.create({"query": "123 Fake St, Los Angeles"})
    """

    def __init__(self, name: str, fields: List[StateField]):
        self.name = name
        self.fields: Dict[str, StateField] = {}
        for state_field in fields:
            if state_field.name in self.fields:
                raise StateContractError(
                    f"Field '{state_field.name}' declared twice in schema '{name}'"
                )
            self.fields[state_field.name] = state_field

    @property
    def field_names(self) -> List[str]:
        return list(self.fields)

    def __contains__(self, name: str) -> bool:
        return name in self.fields

    def create(self, initial: Optional[Mapping[str, Any]] = None) -> "StateContainer":
        """Build the starting container: caller fields plus per-field defaults"""
        initial = dict(initial or {})
        self._check_fields(initial)

        values: Dict[str, Any] = {}
        for name, state_field in self.fields.items():
            if name in initial:
                values[name] = initial[name]
            elif state_field.has_default:
                values[name] = state_field.make_default()
            elif state_field.required:
                raise StateContractError(
                    f"Required field '{name}' missing from initial state of '{self.name}'",
                    details={'field': name}
                )

        return StateContainer(values, schema=self)

    def check_partial(self, partial: Mapping[str, Any]):
        """Validate a partial update against the schema"""
        self._check_fields(partial)

    def _check_fields(self, values: Mapping[str, Any]):
        for name, value in values.items():
            state_field = self.fields.get(name)
            if state_field is None:
                raise StateContractError(
                    f"Unknown field '{name}' for state '{self.name}'",
                    details={'field': name, 'known': self.field_names}
                )
            if not state_field.accepts(value):
                expected = state_field.type
                expected_name = (
                    " | ".join(t.__name__ for t in expected)
                    if isinstance(expected, tuple) else expected.__name__
                )
                raise StateContractError(
                    f"Field '{name}' expects {expected_name}, got {type(value).__name__}",
                    details={'field': name, 'value': value}
                )


class StateContainer(abc.Mapping):
    """Read-only mapping of field name to value

    Supports the ``Mapping`` protocol (``state["query"]``, ``"query" in
    state``, iteration) plus ``get`` and ``with_merge``.
    """

    __slots__ = ("_values", "_schema")

    def __init__(
        self,
        values: Optional[Mapping[str, Any]] = None,
        schema: Optional[StateSchema] = None
    ):
        self._values: Dict[str, Any] = dict(values or {})
        self._schema = schema

    @property
    def schema(self) -> Optional[StateSchema]:
        return self._schema

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self):
        return f"StateContainer({self._values!r})"

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def is_set(self, key: str) -> bool:
        """True when the field is present and not None"""
        return self._values.get(key) is not None

    def with_merge(self, partial: Optional[Mapping[str, Any]]) -> "StateContainer":
        """Return a new container with ``partial`` merged in

        Present keys overwrite, absent keys are untouched. The receiver is
        never modified.
        """
        if not partial:
            return StateContainer(self._values, schema=self._schema)

        if self._schema is not None:
            self._schema.check_partial(partial)

        merged = dict(self._values)
        merged.update(partial)
        return StateContainer(merged, schema=self._schema)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._values)


def merge_partials(partials: List[Mapping[str, Any]]) -> Dict[str, Any]:
    """Combine several partial updates in order, later keys winning"""
    combined: Dict[str, Any] = {}
    for partial in partials:
        if partial:
            combined.update(partial)
    return combined
