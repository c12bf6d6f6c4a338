"""Field structure, storage and ownership.

This module provides the building blocks of the shared State:
- ComponentSpec: One named component (entity kind, dofs, subfield names)
- FieldTemplate: The component layout of a field on a mesh
- FieldData: Taichi-backed storage for one field, one ti.field per component
- Field: A named, owned entry in the State wrapping FieldData

Usage:
    template = FieldTemplate.cells(mesh).with_component(
        ComponentSpec("boundary_face", EntityKind.BOUNDARY_FACE)
    )
    field = Field("relative_permeability", owner="relative_permeability")
    field.require_template(template)
    field.allocate()
    data = field.get_data("relative_permeability")
    data.put_scalar(1.0)
"""

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import numpy as np
import taichi as ti

from hydrocore.core.dtypes import DTYPE
from hydrocore.core.mesh import EntityKind, UnstructuredMesh
from hydrocore.errors import ConfigurationError, InitializationError, OwnershipViolation
from hydrocore.kernels.utils import copy_field, fill_field

# Domain whose keys carry no prefix
DEFAULT_DOMAIN = "domain"


def get_key(domain: str, variable: str) -> str:
    """Key of a variable on a domain: "pressure" or "surface-pressure"."""
    if domain == DEFAULT_DOMAIN or not domain:
        return variable
    return f"{domain}-{variable}"


def key_domain(key: str) -> str:
    """Domain a key lives on (inverse of get_key)."""
    if "-" in key:
        return key.split("-", 1)[0]
    return DEFAULT_DOMAIN


@dataclass(frozen=True)
class ComponentSpec:
    """One component of a field.

    Attributes:
        name: Component name ("cell", "face", "boundary_face")
        kind: Mesh entity kind indexing this component
        num_dofs: Values per entity
        subfield_names: Optional name per dof, used for initialization
    """

    name: str
    kind: EntityKind
    num_dofs: int = 1
    subfield_names: tuple[str, ...] = ()

    def __post_init__(self):
        """Validate component specification."""
        if not self.name:
            raise ConfigurationError("Component name cannot be empty")
        if self.num_dofs < 1:
            raise ConfigurationError(
                f"Component '{self.name}' needs at least one dof, got {self.num_dofs}"
            )
        if self.subfield_names and len(self.subfield_names) != self.num_dofs:
            raise ConfigurationError(
                f"Component '{self.name}': {len(self.subfield_names)} subfield names "
                f"for {self.num_dofs} dofs"
            )

    def compatible_with(self, other: "ComponentSpec") -> bool:
        """Same entity kind and dof count."""
        return self.kind == other.kind and self.num_dofs == other.num_dofs


@dataclass(frozen=True)
class FieldTemplate:
    """Component layout of a field on a mesh.

    Requirements from different requesters merge into the union of their
    components; a component requested twice must agree on kind and dofs.
    """

    mesh: UnstructuredMesh
    components: tuple[ComponentSpec, ...] = ()

    @classmethod
    def cells(
        cls,
        mesh: UnstructuredMesh,
        num_dofs: int = 1,
        subfield_names: Sequence[str] = (),
    ) -> "FieldTemplate":
        """Single "cell" component template."""
        return cls(mesh, (ComponentSpec("cell", EntityKind.CELL, num_dofs, tuple(subfield_names)),))

    @classmethod
    def faces(cls, mesh: UnstructuredMesh, num_dofs: int = 1) -> "FieldTemplate":
        """Single "face" component template."""
        return cls(mesh, (ComponentSpec("face", EntityKind.FACE, num_dofs),))

    @property
    def names(self) -> list[str]:
        """Component names in declaration order."""
        return [c.name for c in self.components]

    def has_component(self, name: str) -> bool:
        """Check whether a component is present."""
        return any(c.name == name for c in self.components)

    def component(self, name: str) -> ComponentSpec:
        """Look up a component by name."""
        for c in self.components:
            if c.name == name:
                return c
        raise KeyError(f"Component '{name}' not in template {self.names}")

    def with_component(self, spec: ComponentSpec) -> "FieldTemplate":
        """Template with one more component (merged if already present)."""
        return self.merge(FieldTemplate(self.mesh, (spec,)))

    def with_boundary_faces(self) -> "FieldTemplate":
        """Template with a "boundary_face" component matching the cell dofs."""
        dofs = self.component("cell").num_dofs if self.has_component("cell") else 1
        return self.with_component(ComponentSpec("boundary_face", EntityKind.BOUNDARY_FACE, dofs))

    def merge(self, other: "FieldTemplate") -> "FieldTemplate":
        """Union of two templates.

        Raises:
            ConfigurationError: If meshes differ or a shared component
                disagrees on kind or dofs
        """
        if other.mesh is not self.mesh:
            raise ConfigurationError(
                f"Field requested on mesh '{other.mesh.domain}' and on mesh "
                f"'{self.mesh.domain}'"
            )
        merged = list(self.components)
        for spec in other.components:
            existing = next((c for c in merged if c.name == spec.name), None)
            if existing is None:
                merged.append(spec)
                continue
            if not existing.compatible_with(spec):
                raise ConfigurationError(
                    f"Component '{spec.name}' requested as {spec.kind.value}x{spec.num_dofs} "
                    f"and as {existing.kind.value}x{existing.num_dofs}"
                )
            if spec.subfield_names and not existing.subfield_names:
                merged[merged.index(existing)] = spec
        return FieldTemplate(self.mesh, tuple(merged))

    def compatible_with(self, other: "FieldTemplate") -> bool:
        """Same mesh and component-for-component compatible."""
        if other.mesh is not self.mesh or self.names != other.names:
            return False
        return all(a.compatible_with(b) for a, b in zip(self.components, other.components))


class FieldData:
    """Storage for one field.

    Each component is a ``ti.field(DTYPE, shape=(n_entities, num_dofs))``
    holding owned entities first, then ghosts. Components with zero
    entities are padded to one row; sizes are tracked separately.

    A FieldData is either writable (handed to the owner) or a read-only
    view sharing the same storage.
    """

    def __init__(
        self,
        template: FieldTemplate,
        name: str = "",
        owner: str | None = None,
        _components: dict[str, Any] | None = None,
        writable: bool = True,
    ):
        """Allocate storage for a template (or share existing components)."""
        self._template = template
        self._name = name
        self._owner = owner
        self._writable = writable
        self._sizes = {
            spec.name: template.mesh.num_entities(spec.kind, owned=False)
            for spec in template.components
        }
        self._owned_sizes = {
            spec.name: template.mesh.num_entities(spec.kind, owned=True)
            for spec in template.components
        }
        if _components is None:
            _components = {
                spec.name: ti.field(DTYPE, shape=(max(self._sizes[spec.name], 1), spec.num_dofs))
                for spec in template.components
            }
        self._components = _components

    @property
    def template(self) -> FieldTemplate:
        """Component layout."""
        return self._template

    @property
    def mesh(self) -> UnstructuredMesh:
        """Mesh this data lives on."""
        return self._template.mesh

    @property
    def names(self) -> list[str]:
        """Component names."""
        return self._template.names

    @property
    def writable(self) -> bool:
        """Whether this handle permits mutation."""
        return self._writable

    def has_component(self, name: str) -> bool:
        """Check whether a component is present."""
        return name in self._components

    def num_dofs(self, name: str = "cell") -> int:
        """Values per entity of a component."""
        return self._template.component(name).num_dofs

    def size(self, name: str = "cell", owned: bool = False) -> int:
        """Number of entities of a component."""
        self._check_component(name)
        return self._owned_sizes[name] if owned else self._sizes[name]

    def component(self, name: str = "cell") -> Any:
        """Underlying Taichi field of a component, for kernels that write it.

        Raises:
            OwnershipViolation: On a read-only view
        """
        self._check_writable()
        self._check_component(name)
        return self._components[name]

    def kernel_input(self, name: str = "cell") -> Any:
        """Underlying Taichi field of a component, to pass as a kernel argument.

        Available on read-only views. The field is shared storage: kernels
        given it must only read it.
        """
        self._check_component(name)
        return self._components[name]

    def view(self) -> "FieldData":
        """Read-only handle sharing storage."""
        return FieldData(
            self._template, self._name, self._owner, _components=self._components, writable=False
        )

    def to_numpy(self, name: str = "cell", owned: bool = False) -> np.ndarray:
        """Copy a component to a (n_entities, num_dofs) array."""
        n = self.size(name, owned)
        return self._components[name].to_numpy()[:n].copy()

    def from_numpy(self, name: str, values: np.ndarray) -> None:
        """Overwrite a component.

        Args:
            name: Component name
            values: (n, num_dofs) or (n,) array; n may be the owned count
                (ghost rows are left unchanged) or the owned+ghost count
        """
        self._check_writable()
        self._check_component(name)
        dofs = self.num_dofs(name)
        values = np.asarray(values, dtype=np.float64)
        if values.ndim == 1:
            values = values.reshape(-1, dofs)
        n = values.shape[0]
        if values.shape[1] != dofs or n not in (self._sizes[name], self._owned_sizes[name]):
            raise ConfigurationError(
                f"Cannot write shape {values.shape} into component '{name}' of "
                f"'{self._name}' ({self._sizes[name]} x {dofs})"
            )
        target = self._components[name]
        full = target.to_numpy()
        full[:n] = values
        target.from_numpy(np.ascontiguousarray(full, dtype=np.float64))

    def put_scalar(self, value: float | Sequence[float], name: str | None = None) -> None:
        """Set every entity of one (or every) component to a constant.

        A sequence sets each dof separately.
        """
        self._check_writable()
        names = self.names if name is None else [name]
        for comp in names:
            self._check_component(comp)
            if np.ndim(value) == 0:
                fill_field(self._components[comp], float(value))
            else:
                dofs = self.num_dofs(comp)
                row = np.asarray(value, dtype=np.float64).reshape(dofs)
                self.from_numpy(comp, np.tile(row, (self._sizes[comp], 1)))

    def put_cells(self, name: str, entities: np.ndarray, values: Sequence[float]) -> None:
        """Set a subset of entities of a component (e.g. a region) per dof."""
        self._check_writable()
        arr = self.to_numpy(name)
        arr[np.asarray(entities, dtype=np.int64)] = np.asarray(values, dtype=np.float64)
        self.from_numpy(name, arr)

    def assign(self, other: "FieldData") -> None:
        """Copy values from another FieldData of compatible structure."""
        self._check_writable()
        if not self._template.compatible_with(other.template):
            raise ConfigurationError(
                f"Cannot assign '{other._name}' {other.names} to '{self._name}' {self.names}"
            )
        for comp in self.names:
            copy_field(other._components[comp], self._components[comp])

    def copy(self, name: str | None = None, owner: str | None = None) -> "FieldData":
        """Deep copy into newly allocated writable storage."""
        result = FieldData(
            self._template,
            self._name if name is None else name,
            self._owner if owner is None else owner,
        )
        for comp in self.names:
            copy_field(self._components[comp], result._components[comp])
        return result

    def _check_writable(self) -> None:
        if not self._writable:
            raise OwnershipViolation(self._name, self._owner, None)

    def _check_component(self, name: str) -> None:
        if name not in self._components:
            raise KeyError(f"Field '{self._name}' has no component '{name}'. Available: {self.names}")


@dataclass
class IOFlags:
    """Output participation of a field."""

    visualize: bool = True
    checkpoint: bool = False


class Field:
    """A named, owned entry in the State.

    The owner is fixed once claimed: a field may be required any number of
    times without an owner (read-only consumers), but at most one requester
    may ever claim it. Only the owner may obtain a writable handle, replace
    the data by handle, assign by value or initialize.

    Attributes:
        name: Field key
        owner: Key of the owning evaluator or name of the owning PK
        template: Merged component layout (None until first requested with one)
        data: Storage (None until allocated)
        initialized: Whether every entity has a meaningful value
        io: Visualization and checkpoint flags
    """

    def __init__(self, name: str, owner: str | None = None, template: FieldTemplate | None = None):
        """Create an unallocated field."""
        if not name or any(ch.isspace() for ch in name):
            raise ConfigurationError(f"Field name must be non-empty without whitespace, got '{name}'")
        self.name = name
        self.owner = owner
        self.template = template
        self.data: FieldData | None = None
        self.initialized = False
        self.io = IOFlags()

    def claim(self, owner: str) -> None:
        """Set the owner if unclaimed.

        Raises:
            OwnershipViolation: If already owned by someone else
        """
        if self.owner is None:
            self.owner = owner
        elif self.owner != owner:
            raise OwnershipViolation(self.name, self.owner, owner)

    def require_template(self, template: FieldTemplate) -> None:
        """Merge a structural requirement into the template."""
        if self.data is not None:
            if self.template.merge(template).names != self.template.names:
                raise ConfigurationError(
                    f"Field '{self.name}' is allocated; cannot add components {template.names}"
                )
            return
        self.template = template if self.template is None else self.template.merge(template)

    @property
    def allocated(self) -> bool:
        """Check if storage exists."""
        return self.data is not None

    def allocate(self) -> None:
        """Create storage from the merged template."""
        if self.template is None:
            raise ConfigurationError(f"Field '{self.name}' was never given a structure")
        if self.data is None:
            self.data = FieldData(self.template, self.name, self.owner)

    def assert_owner(self, requester: str | None) -> None:
        """Raise OwnershipViolation unless requester owns this field."""
        if requester is None or requester != self.owner:
            raise OwnershipViolation(self.name, self.owner, requester)

    def read_data(self) -> FieldData:
        """Read-only handle."""
        return self._allocated_data().view()

    def get_data(self, requester: str) -> FieldData:
        """Writable handle, owner only."""
        self.assert_owner(requester)
        return self._allocated_data()

    def set_data(self, requester: str, data: FieldData) -> None:
        """Replace storage by handle, owner only."""
        self.assert_owner(requester)
        if self.template is not None and not self.template.compatible_with(data.template):
            raise ConfigurationError(
                f"Field '{self.name}': incompatible data {data.names} for {self.template.names}"
            )
        self.template = data.template
        self.data = FieldData(data.template, self.name, self.owner, _components=data._components)

    def assign(self, requester: str, data: FieldData) -> None:
        """Copy values in, owner only."""
        self.get_data(requester).assign(data)

    def set_initialized(self, requester: str, initialized: bool = True) -> None:
        """Mark the field (un)initialized, owner only."""
        self.assert_owner(requester)
        self.initialized = initialized

    def subfield_names(self) -> dict[str, list[str]]:
        """Initialization names per component and dof.

        Explicit subfield names win. Otherwise a single-component,
        single-dof field uses its own name; dofs of other components are
        named "<component>" or "<component>_<k>".
        """
        template = self.template
        names = {}
        single = len(template.components) == 1
        for spec in template.components:
            if spec.subfield_names:
                names[spec.name] = list(spec.subfield_names)
            elif spec.num_dofs == 1:
                names[spec.name] = [self.name if single else spec.name]
            else:
                names[spec.name] = [f"{spec.name}_{k}" for k in range(spec.num_dofs)]
        return names

    def initialize(self, requester: str, constants: Mapping[str, float], blocks: Sequence[Any] = ()) -> bool:
        """Set initial values from named constants, globally or per region.

        Args:
            requester: Must be the owner
            constants: Subfield name -> value, applied everywhere if every
                subfield is given
            blocks: Objects with ``region`` and ``constants``; each block
                covering every subfield sets the cell component on its region

        Returns:
            Whether the field is now initialized

        Raises:
            InitializationError: If a block after a complete block does not
                name every subfield
        """
        data = self.get_data(requester)
        names = self.subfield_names()
        all_names = [n for comp in names.values() for n in comp]

        if all_names and all(n in constants for n in all_names):
            for comp, comp_names in names.items():
                data.put_scalar([constants[n] for n in comp_names], comp)
            self.initialized = True

        got_a_block = False
        for block in blocks:
            complete = all(n in block.constants for n in all_names)
            if got_a_block and not complete:
                raise InitializationError(
                    f"Field '{self.name}': region '{block.region}' is missing "
                    f"values for {[n for n in all_names if n not in block.constants]}"
                )
            if not complete:
                continue
            got_a_block = True
            cells = self.template.mesh.region_cells(block.region, owned=False)
            for comp, comp_names in names.items():
                if self.template.component(comp).kind != EntityKind.CELL:
                    continue
                data.put_cells(comp, cells, [block.constants[n] for n in comp_names])
        if got_a_block:
            self.initialized = True
        return self.initialized

    def clone(self, name: str | None = None) -> "Field":
        """Field with the same owner and layout and a deep copy of the data."""
        result = Field(self.name if name is None else name, self.owner, self.template)
        if self.data is not None:
            result.data = self.data.copy(result.name, self.owner)
        result.initialized = self.initialized
        result.io = IOFlags(self.io.visualize, self.io.checkpoint)
        return result

    def _allocated_data(self) -> FieldData:
        if self.data is None:
            raise ConfigurationError(f"Field '{self.name}' is not allocated; call State.setup() first")
        return self.data

    def __repr__(self) -> str:
        return f"Field({self.name!r}, owner={self.owner!r}, components={self.template.names if self.template else []})"
