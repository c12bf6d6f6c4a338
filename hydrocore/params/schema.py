"""Parameter schema with validation. Units: SI (m, s, Pa, kg, mol)."""

from dataclasses import dataclass, field, fields, asdict
from typing import Any, Callable, Mapping


class ValidationError(ValueError):
    """Parameter validation failed."""
    pass


def _positive(value: float, name: str) -> None:
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")


def _non_negative(value: float, name: str) -> None:
    if value < 0:
        raise ValidationError(f"{name} must be non-negative, got {value}")


def _fraction(value: float, name: str) -> None:
    if not 0 <= value <= 1:
        raise ValidationError(f"{name} must be in [0, 1], got {value}")


def _one_of(value: str, choices: tuple[str, ...], name: str) -> None:
    if value not in choices:
        raise ValidationError(f"{name} must be one of {list(choices)}, got {value!r}")


def _plain(value: Any) -> Any:
    """Tuples to lists, recursively, so YAML dumps stay tag-free."""
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def _build(cls, data: Mapping[str, Any], nested: Mapping[str, Callable] | None = None):
    """Construct a params dataclass from a dict; lists become tuples."""
    nested = nested or {}
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValidationError(f"Unknown {cls.__name__} parameters: {unknown}")
    kwargs = {}
    for key, value in data.items():
        if key in nested and value is not None:
            kwargs[key] = nested[key](value)
        elif isinstance(value, list):
            kwargs[key] = tuple(value)
        else:
            kwargs[key] = value
    return cls(**kwargs)


@dataclass(frozen=True)
class ToleranceParams:
    """Error-norm tolerances: atol [units of u], rtol [-]."""
    atol: float = 1.0
    rtol: float = 1e-6

    def __post_init__(self) -> None:
        _positive(self.atol, "atol")
        _non_negative(self.rtol, "rtol")


@dataclass(frozen=True)
class IOParams:
    """Output flags of an evaluated field."""
    visualize: bool = True
    checkpoint: bool = False


@dataclass(frozen=True)
class RegionBlock:
    """Initial values on one mesh region: subfield name -> value."""
    region: str
    constants: dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.region:
            raise ValidationError("region name cannot be empty")


@dataclass(frozen=True)
class FieldInitParams:
    """Initial values: global constants and/or per-region blocks."""
    constants: dict[str, float] = field(default_factory=dict)
    blocks: tuple[RegionBlock, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FieldInitParams":
        return _build(cls, data, {
            "blocks": lambda items: tuple(RegionBlock(**b) for b in items),
        })


@dataclass(frozen=True)
class IndependentFieldParams(FieldInitParams):
    """A field that no PK computes, set once from constants.

    entity: "cell" or "face"; constants are keyed by subfield name (the
    field's own key when it has one dof).
    """
    entity: str = "cell"
    num_dofs: int = 1

    def __post_init__(self) -> None:
        _one_of(self.entity, ("cell", "face"), "entity")
        if self.num_dofs < 1:
            raise ValidationError(f"num_dofs must be >= 1, got {self.num_dofs}")
        if self.entity == "face" and self.blocks:
            raise ValidationError("region blocks apply to cell fields only")


@dataclass(frozen=True)
class WRMParams:
    """van Genuchten water retention: alpha [1/Pa], n [-], sr [-], ell [-]."""
    region: str = "All"
    model: str = "van Genuchten"
    alpha: float = 1.5e-4
    n: float = 1.8
    residual_saturation: float = 0.0
    krel_function: str = "Mualem"
    ell: float = 0.5

    def __post_init__(self) -> None:
        _one_of(self.model, ("van Genuchten",), "model")
        _positive(self.alpha, "alpha")
        if self.n <= 1:
            raise ValidationError(f"n must be > 1, got {self.n}")
        _fraction(self.residual_saturation, "residual_saturation")
        if self.residual_saturation >= 1:
            raise ValidationError("residual_saturation must be < 1")
        _one_of(self.krel_function, ("Mualem", "Burdine"), "krel_function")

    @property
    def m(self) -> float:
        return 1.0 - 1.0 / self.n


@dataclass(frozen=True)
class EOSParams:
    """Liquid EOS: density [kg/m³], compressibility [1/Pa], molar_mass [kg/mol], viscosity [Pa·s]."""
    model: str = "constant"
    density: float = 1000.0
    compressibility: float = 0.0
    reference_pressure: float = 101325.0
    molar_mass: float = 0.0180153
    viscosity: float = 8.9e-4

    def __post_init__(self) -> None:
        _one_of(self.model, ("constant",), "model")
        _positive(self.density, "density")
        _non_negative(self.compressibility, "compressibility")
        _positive(self.molar_mass, "molar_mass")
        _positive(self.viscosity, "viscosity")


@dataclass(frozen=True)
class BoundaryConditionParams:
    """Boundary condition on the top or bottom exterior faces.

    kind "pressure": Dirichlet value [Pa].
    kind "flux": outward molar flux per face [mol/s]; negative is inflow.
    """
    kind: str = "pressure"
    side: str = "bottom"
    value: float = 101325.0

    def __post_init__(self) -> None:
        _one_of(self.kind, ("pressure", "flux"), "kind")
        _one_of(self.side, ("top", "bottom"), "side")


@dataclass(frozen=True)
class SolverParams:
    """Nonlinear solver and timestep adaptation."""
    max_iterations: int = 20
    divergence_norm: float = 1e10
    increase_below: int = 3
    reduce_above: int = 10
    increase_factor: float = 1.25
    reduction_factor: float = 0.5

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValidationError(f"max_iterations must be >= 1, got {self.max_iterations}")
        _positive(self.divergence_norm, "divergence_norm")
        if self.increase_factor < 1:
            raise ValidationError("increase_factor must be >= 1")
        if not 0 < self.reduction_factor <= 1:
            raise ValidationError("reduction_factor must be in (0, 1]")


@dataclass(frozen=True)
class ElevationParams:
    """Elevation/slope evaluator on a surface domain."""
    domain: str = "surface"
    dynamic_mesh: bool = False
    deformation_key: str = "deformation"
    io: IOParams = field(default_factory=IOParams)


@dataclass(frozen=True)
class PKParams:
    """Common PK parameters: initial_dt, max_dt [s]."""
    name: str = "pk"
    pk_type: str = ""
    domain: str = "domain"
    primary_key: str | None = None
    initial_dt: float = 1.0
    max_dt: float = 1e10
    tolerance: ToleranceParams = field(default_factory=ToleranceParams)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValidationError("PK name cannot be empty")
        _positive(self.initial_dt, "initial_dt")
        _positive(self.max_dt, "max_dt")

    _nested = {"tolerance": lambda d: ToleranceParams(**d)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PKParams":
        return _build(cls, data, cls._nested)

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class RichardsParams(PKParams):
    """Richards flow: porosity [-], permeability [m²], water_table_elevation [m].

    include_vapor adds water vapor in the gas phase to the water content,
    at a fixed temperature [K].
    """
    pk_type: str = "richards flow"
    wrm: tuple[WRMParams, ...] = (WRMParams(),)
    eos: EOSParams = field(default_factory=EOSParams)
    porosity: float = 0.25
    permeability: float = 1e-12
    initial_condition: FieldInitParams | None = None
    water_table_elevation: float | None = None
    boundary_conditions: tuple[BoundaryConditionParams, ...] = ()
    solver: SolverParams = field(default_factory=SolverParams)
    include_vapor: bool = False
    temperature: float = 283.15

    def __post_init__(self) -> None:
        super().__post_init__()
        _fraction(self.porosity, "porosity")
        _positive(self.permeability, "permeability")
        _positive(self.temperature, "temperature")
        if not self.wrm:
            raise ValidationError("at least one WRM is required")

    _nested = {
        **PKParams._nested,
        "wrm": lambda items: tuple(WRMParams(**w) for w in items),
        "eos": lambda d: EOSParams(**d),
        "initial_condition": FieldInitParams.from_dict,
        "boundary_conditions": lambda items: tuple(BoundaryConditionParams(**b) for b in items),
        "solver": lambda d: SolverParams(**d),
    }


@dataclass(frozen=True)
class TransportParams(PKParams):
    """Explicit upwind solute transport: cfl [-]."""
    pk_type: str = "solute transport"
    component_names: tuple[str, ...] = ("tracer",)
    cfl: float = 0.5
    flux_key: str | None = None
    water_density_key: str | None = None
    initial_condition: FieldInitParams | None = None
    negative_tolerance: float = 1e-12

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.component_names:
            raise ValidationError("component_names cannot be empty")
        if not 0 < self.cfl <= 1:
            raise ValidationError(f"cfl must be in (0, 1], got {self.cfl}")
        _non_negative(self.negative_tolerance, "negative_tolerance")

    _nested = {
        **PKParams._nested,
        "initial_condition": FieldInitParams.from_dict,
    }


@dataclass(frozen=True)
class MPCParams(PKParams):
    """Multi-process coupler over named children.

    coupling_sweeps: block Jacobi sweeps over the off-diagonal blocks
    (strong MPC with a fully coupled preconditioner only).
    """
    pk_type: str = "weak MPC"
    pks_order: tuple[str, ...] = ()
    preconditioner: str = "block diagonal"
    coupling_sweeps: int = 10
    solver: SolverParams = field(default_factory=SolverParams)

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.pks_order:
            raise ValidationError(f"MPC '{self.name}' needs at least one child in pks_order")
        _one_of(self.preconditioner, ("block diagonal", "fully coupled"), "preconditioner")
        if self.coupling_sweeps < 1:
            raise ValidationError(f"coupling_sweeps must be >= 1, got {self.coupling_sweeps}")

    _nested = {
        **PKParams._nested,
        "solver": lambda d: SolverParams(**d),
    }


@dataclass(frozen=True)
class CoupledTransportParams(MPCParams):
    """Surface/subsurface transport coupler."""
    pk_type: str = "coupled transport"
    subsurface_domain: str = "domain"
    exchange_key: str | None = None


@dataclass(frozen=True)
class MeshParams:
    """Column mesh: n_cells, dz [m], area [m²], z_bottom [m]."""
    n_cells: int = 10
    dz: float = 1.0
    area: float = 1.0
    z_bottom: float = 0.0
    surface: bool = False

    def __post_init__(self) -> None:
        if self.n_cells < 1:
            raise ValidationError(f"n_cells must be >= 1, got {self.n_cells}")
        _positive(self.dz, "dz")
        _positive(self.area, "area")


@dataclass(frozen=True)
class TimestepParams:
    """Outer loop: t_start, t_end, max_dt, min_dt [s]."""
    t_start: float = 0.0
    t_end: float = 86400.0
    max_dt: float = 1e10
    min_dt: float = 1e-6
    dt_reduction: float = 0.5
    max_cycles: int = 100000

    def __post_init__(self) -> None:
        if self.t_end < self.t_start:
            raise ValidationError(f"t_end ({self.t_end}) is before t_start ({self.t_start})")
        _positive(self.max_dt, "max_dt")
        _positive(self.min_dt, "min_dt")
        if not 0 < self.dt_reduction < 1:
            raise ValidationError(f"dt_reduction must be in (0, 1), got {self.dt_reduction}")
        if self.max_cycles < 1:
            raise ValidationError("max_cycles must be >= 1")


PARAMS_BY_TYPE: dict[str, type[PKParams]] = {
    "richards flow": RichardsParams,
    "solute transport": TransportParams,
    "weak MPC": MPCParams,
    "strong MPC": MPCParams,
    "coupled transport": CoupledTransportParams,
}


def pk_params_from_dict(name: str, data: Mapping[str, Any]) -> PKParams:
    """Build the params class matching data["pk_type"]."""
    pk_type = data.get("pk_type")
    if pk_type not in PARAMS_BY_TYPE:
        raise ValidationError(
            f"PK '{name}': unknown pk_type {pk_type!r}. Available: {list(PARAMS_BY_TYPE)}"
        )
    return PARAMS_BY_TYPE[pk_type].from_dict({**data, "name": name})


@dataclass(frozen=True)
class SimulationConfig:
    """Complete simulation configuration."""

    root_pk: str = "flow"
    pks: dict[str, PKParams] = field(
        default_factory=lambda: {"flow": RichardsParams(name="flow", water_table_elevation=5.0)}
    )
    mesh: MeshParams = field(default_factory=MeshParams)
    timestep: TimestepParams = field(default_factory=TimestepParams)
    gravity: tuple[float, ...] = (0.0, 0.0, -9.80665)
    atmospheric_pressure: float = 101325.0
    independent_variables: dict[str, IndependentFieldParams] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.root_pk not in self.pks:
            raise ValidationError(f"root_pk '{self.root_pk}' not in pks {list(self.pks)}")
        for name, params in self.pks.items():
            if params.name != name:
                raise ValidationError(f"PK entry '{name}' is named '{params.name}'")
            for child in getattr(params, "pks_order", ()):
                if child not in self.pks:
                    raise ValidationError(f"MPC '{name}' references unknown PK '{child}'")
        _positive(self.atmospheric_pressure, "atmospheric_pressure")

    def to_dict(self) -> dict[str, Any]:
        """Convert to nested dictionary."""
        return {
            "root_pk": self.root_pk,
            "pks": {name: params.to_dict() for name, params in self.pks.items()},
            "mesh": asdict(self.mesh),
            "timestep": asdict(self.timestep),
            "gravity": list(self.gravity),
            "atmospheric_pressure": self.atmospheric_pressure,
            "independent_variables": {
                key: _plain(asdict(params)) for key, params in self.independent_variables.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SimulationConfig":
        """Create from nested dictionary."""
        kwargs: dict[str, Any] = {}
        if "pks" in data:
            kwargs["pks"] = {name: pk_params_from_dict(name, d) for name, d in data["pks"].items()}
        if "mesh" in data:
            kwargs["mesh"] = _build(MeshParams, data["mesh"])
        if "timestep" in data:
            kwargs["timestep"] = _build(TimestepParams, data["timestep"])
        if "gravity" in data:
            kwargs["gravity"] = tuple(data["gravity"])
        if data.get("independent_variables"):
            kwargs["independent_variables"] = {
                key: IndependentFieldParams.from_dict(d) for key, d in data["independent_variables"].items()
            }
        for key in ("root_pk", "atmospheric_pressure"):
            if key in data:
                kwargs[key] = data[key]
        groups = {"pks", "mesh", "timestep", "gravity", "root_pk", "atmospheric_pressure", "independent_variables"}
        unknown = sorted(set(data) - groups)
        if unknown:
            raise ValidationError(f"Unknown parameter groups: {unknown}")
        return cls(**kwargs)

    def with_updates(self, **kwargs: Any) -> "SimulationConfig":
        """Create new config with updates.

        Group dicts (mesh, timestep) merge into the current group; ``pks``
        and ``independent_variables`` merge per entry.
        """
        current = self.to_dict()
        for key, value in kwargs.items():
            if key not in current:
                raise ValidationError(f"Unknown parameter group: {key}")
            if key in ("pks", "independent_variables"):
                for name, update in value.items():
                    current[key].setdefault(name, {}).update(update)
            elif isinstance(value, dict):
                current[key].update(value)
            else:
                current[key] = value
        return self.from_dict(current)

    def pk_params(self, name: str) -> PKParams:
        """Parameters of one PK."""
        if name not in self.pks:
            raise ValidationError(f"Unknown PK '{name}'. Available: {list(self.pks)}")
        return self.pks[name]
