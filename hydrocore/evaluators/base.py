"""
Evaluator base class.

An evaluator is a node of the dependency graph that produces one or more
fields ("my keys") from other fields ("dependencies"). Change tracking is
per request: each caller identifies itself with a request string and is
told whether the evaluator's output changed since that caller last asked.

Internally an evaluator keeps a generation counter, bumped on every
recomputation, and the generation each request last saw.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterable, Mapping, Sequence

from hydrocore.errors import ConfigurationError
from hydrocore.params.schema import IOParams


class Evaluator(ABC):
    """Dependency-graph node.

    Attributes:
        my_keys: Fields this evaluator writes (and owns)
        dependencies: Fields it reads
    """

    def __init__(
        self,
        my_keys: Sequence[str],
        dependencies: Iterable[str] = (),
        io: Mapping[str, IOParams] | None = None,
    ):
        if not my_keys:
            raise ConfigurationError(f"{type(self).__name__} must provide at least one key")
        self.my_keys = list(my_keys)
        self.dependencies = set(dependencies)
        overlap = self.dependencies & set(self.my_keys)
        if overlap:
            raise ConfigurationError(f"{type(self).__name__} depends on its own keys {sorted(overlap)}")
        self._io = dict(io or {})
        self._generation = 0
        self._seen: dict[str, int] = {}

    @property
    def generation(self) -> int:
        """Number of times the output has changed."""
        return self._generation

    def provides_key(self, key: str) -> bool:
        """Check whether key is one of my keys."""
        return key in self.my_keys

    def is_dependency(self, state: Any, key: str) -> bool:
        """Whether key is a direct or transitive dependency."""
        if key in self.dependencies:
            return True
        return any(state.get_evaluator(dep).is_dependency(state, key) for dep in self.dependencies)

    @abstractmethod
    def has_field_changed(self, state: Any, request: str) -> bool:
        """Bring my keys up to date; report change since request last asked."""
        ...

    @abstractmethod
    def ensure_compatibility(self, state: Any) -> None:
        """Declare field structure to the state before allocation."""
        ...

    def _report(self, request: str) -> bool:
        changed = self._seen.get(request) != self._generation
        self._seen[request] = self._generation
        return changed

    def _apply_io(self, state: Any) -> None:
        for key in self.my_keys:
            if key in self._io:
                flags = self._io[key]
                field = state.get_field(key)
                field.io.visualize = flags.visualize
                field.io.checkpoint = flags.checkpoint

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.my_keys})"
