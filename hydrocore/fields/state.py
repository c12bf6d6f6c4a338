"""The shared State: registry of meshes, fields, scalars and evaluators.

Lifecycle:
    1. Construction: meshes are registered, PKs and evaluators call
       ``require_field`` / ``set_evaluator`` to declare what they need.
    2. ``setup()``: evaluators negotiate structure, the dependency graph is
       checked for missing nodes and cycles, and every field is allocated.
    3. Run: reads go through evaluators, writes are owner-gated.

Reading a field with ``get_field_data(key)`` brings it up to date first by
asking its evaluator ``has_field_changed``. Passing an owner returns a
writable handle and never triggers evaluation.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Sequence

import numpy as np

from hydrocore.core.mesh import UnstructuredMesh
from hydrocore.errors import ConfigurationError, OwnershipViolation
from hydrocore.fields.base import DEFAULT_DOMAIN, Field, FieldData, FieldTemplate
from hydrocore.fields.graph import topological_order
from hydrocore.logging_config import get_logger

# Request identity used by the read path
READ_REQUEST = "__read__"


@dataclass
class _Entry:
    """Owned scalar or constant vector."""

    owner: str
    value: Any


class State:
    """Shared registry of fields, scalars and evaluators for one time level.

    Attributes:
        name: Label ("next", "inter", ...)
        time: Simulation time of this level [s]
        cycle: Number of committed steps
    """

    def __init__(self, name: str = "next", logger=None):
        """Create an empty state."""
        self.name = name
        self.time = 0.0
        self.cycle = 0
        self.logger = logger or get_logger(f"state.{name}")
        self._meshes: dict[str, UnstructuredMesh] = {}
        self._fields: dict[str, Field] = {}
        self._evaluators: dict[str, Any] = {}
        self._scalars: dict[str, _Entry] = {}
        self._vectors: dict[str, _Entry] = {}
        self._order: list[str] = []
        self._setup_done = False

    # Meshes

    def register_mesh(self, mesh: UnstructuredMesh, domain: str | None = None) -> None:
        """Register a mesh under its domain name."""
        domain = mesh.domain if domain is None else domain
        if domain in self._meshes and self._meshes[domain] is not mesh:
            raise ConfigurationError(f"A different mesh is already registered for '{domain}'")
        self._meshes[domain] = mesh

    def has_mesh(self, domain: str = DEFAULT_DOMAIN) -> bool:
        """Check if a mesh is registered."""
        return domain in self._meshes

    def get_mesh(self, domain: str = DEFAULT_DOMAIN) -> UnstructuredMesh:
        """Look up a mesh by domain."""
        if domain not in self._meshes:
            raise ConfigurationError(
                f"No mesh for domain '{domain}'. Available: {list(self._meshes)}"
            )
        return self._meshes[domain]

    # Fields

    @property
    def is_setup(self) -> bool:
        """Whether setup() has run."""
        return self._setup_done

    @property
    def field_names(self) -> list[str]:
        """Registered field keys."""
        return list(self._fields)

    @property
    def evaluation_order(self) -> list[str]:
        """Evaluator keys, dependencies first (available after setup)."""
        return list(self._order)

    def require_field(
        self,
        name: str,
        owner: str | None = None,
        template: FieldTemplate | None = None,
    ) -> Field:
        """Declare a need for a field, optionally claiming it.

        Args:
            name: Field key
            owner: Writer of the field; None means "needed but not written"
            template: Structural requirement, merged with earlier ones

        Returns:
            The (possibly new) Field

        Raises:
            OwnershipViolation: If a different owner already claimed it
            ConfigurationError: If the template conflicts with earlier ones
        """
        field = self._fields.get(name)
        if field is None:
            field = Field(name)
            self._fields[name] = field
        if owner is not None:
            field.claim(owner)
        if template is not None:
            field.require_template(template)
            if self._setup_done:
                field.allocate()
        return field

    def has_field(self, name: str) -> bool:
        """Check if a field is registered."""
        return name in self._fields

    def get_field(self, name: str) -> Field:
        """Look up a Field record."""
        if name not in self._fields:
            raise KeyError(f"Field '{name}' not found in state '{self.name}'")
        return self._fields[name]

    def get_field_data(self, name: str, owner: str | None = None) -> FieldData:
        """Field data: read-only and up to date, or writable for the owner.

        Raises:
            OwnershipViolation: If owner is given and is not the field's owner
        """
        field = self.get_field(name)
        if owner is not None:
            return field.get_data(owner)
        if self._setup_done and name in self._evaluators:
            self._evaluators[name].has_field_changed(self, READ_REQUEST)
        return field.read_data()

    def set_field_data(self, name: str, owner: str, data: FieldData) -> None:
        """Replace a field's storage by handle, owner only."""
        self.get_field(name).set_data(owner, data)

    def assign_field_data(self, name: str, owner: str, data: FieldData) -> None:
        """Copy values into a field, owner only."""
        self.get_field(name).assign(owner, data)

    # Scalars and constant vectors

    def set_scalar(self, name: str, owner: str, value: float) -> None:
        """Create or update an owned scalar."""
        self._set_entry(self._scalars, name, owner, float(value))

    def get_scalar(self, name: str) -> float:
        """Read a scalar."""
        if name not in self._scalars:
            raise ConfigurationError(f"Scalar '{name}' was never set in state '{self.name}'")
        return self._scalars[name].value

    def has_scalar(self, name: str) -> bool:
        """Check if a scalar is set."""
        return name in self._scalars

    def set_constant_vector(self, name: str, owner: str, values: Sequence[float]) -> None:
        """Create or update an owned constant vector (e.g. gravity)."""
        arr = np.asarray(values, dtype=np.float64).reshape(-1).copy()
        arr.setflags(write=False)
        self._set_entry(self._vectors, name, owner, arr)

    def get_constant_vector(self, name: str) -> np.ndarray:
        """Read a constant vector (read-only array)."""
        if name not in self._vectors:
            raise ConfigurationError(f"Constant vector '{name}' was never set in state '{self.name}'")
        return self._vectors[name].value

    def has_constant_vector(self, name: str) -> bool:
        """Check if a constant vector is set."""
        return name in self._vectors

    def _set_entry(self, table: dict[str, _Entry], name: str, owner: str, value: Any) -> None:
        entry = table.get(name)
        if entry is None:
            table[name] = _Entry(owner, value)
        elif entry.owner != owner:
            raise OwnershipViolation(name, entry.owner, owner)
        else:
            entry.value = value

    # Evaluators

    def set_evaluator(self, evaluator: Any) -> None:
        """Register an evaluator for every key it provides."""
        if self._setup_done:
            raise ConfigurationError("Evaluators must be registered before setup()")
        for key in evaluator.my_keys:
            existing = self._evaluators.get(key)
            if existing is not None and existing is not evaluator:
                raise ConfigurationError(f"Key '{key}' already has an evaluator ({type(existing).__name__})")
        for key in evaluator.my_keys:
            self._evaluators[key] = evaluator

    def has_evaluator(self, key: str) -> bool:
        """Check if a key has an evaluator."""
        return key in self._evaluators

    def get_evaluator(self, key: str) -> Any:
        """Look up the evaluator of a key."""
        if key not in self._evaluators:
            raise ConfigurationError(f"No evaluator registered for '{key}'")
        return self._evaluators[key]

    def has_field_changed(self, key: str, request: str) -> bool:
        """Ask the evaluator of key whether it changed since request last asked."""
        self.require_setup()
        return self.get_evaluator(key).has_field_changed(self, request)

    def unique_evaluators(self) -> list[Any]:
        """Each registered evaluator once, in registration order."""
        seen: dict[int, Any] = {}
        for ev in self._evaluators.values():
            seen.setdefault(id(ev), ev)
        return list(seen.values())

    # Setup

    def require_setup(self) -> None:
        """Raise unless setup() has run."""
        if not self._setup_done:
            raise ConfigurationError(
                f"State '{self.name}' must be set up before fields are evaluated"
            )

    def setup(self) -> None:
        """Negotiate structure, check the dependency graph, allocate.

        Raises:
            ConfigurationError: On a missing dependency, a cycle, or a field
                without structure or owner
        """
        if self._setup_done:
            raise ConfigurationError(f"State '{self.name}' is already set up")

        evaluators = self.unique_evaluators()
        for ev in evaluators:
            ev.ensure_compatibility(self)

        graph = {key: sorted(ev.dependencies) for key, ev in self._evaluators.items()}
        self._order = topological_order(graph)

        for name, field in self._fields.items():
            if field.template is None:
                raise ConfigurationError(f"Field '{name}' was required but never given a structure")
            if field.owner is None:
                raise ConfigurationError(f"Field '{name}' is required but nothing writes it")
            field.allocate()

        self._setup_done = True
        self.logger.debug(
            "State '%s' set up: %d fields, %d evaluators",
            self.name, len(self._fields), len(evaluators),
        )

    # Time levels

    def copy(self, name: str, keys: Iterable[str] | None = None) -> "State":
        """Independent copy of (a subset of) the fields for another time level.

        Meshes are shared; field data are deep-copied; evaluators are not
        carried over, so reads from the copy never trigger evaluation.
        """
        self.require_setup()
        result = State(name, logger=self.logger)
        result._meshes = dict(self._meshes)
        for key in (self._fields if keys is None else keys):
            result._fields[key] = self.get_field(key).clone()
        result._scalars = {k: _Entry(e.owner, e.value) for k, e in self._scalars.items()}
        result._vectors = {k: _Entry(e.owner, e.value) for k, e in self._vectors.items()}
        result.time = self.time
        result.cycle = self.cycle
        result._setup_done = True
        return result

    def assign_from(self, other: "State", keys: Iterable[str] | None = None) -> None:
        """Copy field values and time from another level into this one.

        Level-to-level copies bypass ownership; the per-field owners are
        identical on both levels.
        """
        for key in (self._fields if keys is None else keys):
            target = self.get_field(key)
            source = other.get_field(key)
            target.get_data(target.owner).assign(source.read_data())
            target.initialized = source.initialized
        self.time = other.time
        self.cycle = other.cycle

    # Output

    def visualization_fields(self) -> list[str]:
        """Fields flagged for visualization output."""
        return [name for name, f in self._fields.items() if f.io.visualize]

    def checkpoint_fields(self) -> list[str]:
        """Fields flagged for checkpoint output."""
        return [name for name, f in self._fields.items() if f.io.checkpoint]

    def __contains__(self, name: str) -> bool:
        """Check if a field is registered."""
        return name in self._fields

    def __len__(self) -> int:
        """Number of registered fields."""
        return len(self._fields)
