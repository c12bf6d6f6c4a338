"""Tests for parameter management module.

Tests schema validation, dict conversion and YAML loading.
"""

from dataclasses import FrozenInstanceError

import pytest

from hydrocore.params import (
    BoundaryConditionParams,
    FieldInitParams,
    MeshParams,
    MPCParams,
    RegionBlock,
    RichardsParams,
    SimulationConfig,
    TimestepParams,
    ToleranceParams,
    TransportParams,
    ValidationError,
    WRMParams,
    load_config,
    load_config_with_overrides,
    merge_overrides,
    parse_assignment,
    pk_params_from_dict,
    save_config,
)


def coupled_config():
    """Flow and transport under a weak MPC."""
    return SimulationConfig(
        root_pk="coupled",
        pks={
            "flow": RichardsParams(
                name="flow",
                water_table_elevation=2.0,
                wrm=(WRMParams(region="bottom", alpha=1e-4), WRMParams(region="top")),
                boundary_conditions=(BoundaryConditionParams(kind="flux", side="top", value=-0.01),),
                tolerance=ToleranceParams(atol=0.1),
            ),
            "transport": TransportParams(
                name="transport",
                component_names=("a", "b"),
                initial_condition=FieldInitParams(
                    {"a": 0.0, "b": 0.0}, blocks=(RegionBlock("top", {"a": 1.0, "b": 0.5}),)
                ),
            ),
            "coupled": MPCParams(name="coupled", pks_order=("flow", "transport")),
        },
        mesh=MeshParams(n_cells=20, dz=0.1),
    )


class TestPKParams:
    """Tests for PK parameter validation."""

    def test_richards_defaults(self):
        """Default flow parameters."""
        params = RichardsParams(name="flow")
        assert params.pk_type == "richards flow"
        assert params.porosity == 0.25
        assert params.wrm == (WRMParams(),)
        assert params.initial_dt == 1.0

    def test_validation_porosity(self):
        """Porosity is a fraction."""
        with pytest.raises(ValidationError, match="porosity must be in"):
            RichardsParams(name="flow", porosity=1.5)

    def test_validation_temperature(self):
        """Vapor temperature is absolute."""
        assert not RichardsParams(name="flow").include_vapor
        with pytest.raises(ValidationError, match="temperature must be positive"):
            RichardsParams(name="flow", include_vapor=True, temperature=-5.0)

    def test_validation_empty_name(self):
        """Every PK needs a name."""
        with pytest.raises(ValidationError, match="name cannot be empty"):
            RichardsParams(name="")

    def test_validation_bc_kind(self):
        """Only pressure and flux conditions exist."""
        with pytest.raises(ValidationError, match="kind must be one of"):
            BoundaryConditionParams(kind="seepage")

    def test_validation_cfl(self):
        """CFL numbers above one are unstable."""
        with pytest.raises(ValidationError, match="cfl must be in"):
            TransportParams(name="transport", cfl=1.5)

    def test_validation_mpc_children(self):
        """Couplers need children."""
        with pytest.raises(ValidationError, match="needs at least one child"):
            MPCParams(name="mpc")

    def test_validation_atol(self):
        """Absolute tolerances must be positive."""
        with pytest.raises(ValidationError, match="atol must be positive"):
            ToleranceParams(atol=0.0)

    def test_immutability(self):
        """Parameters are frozen."""
        params = RichardsParams(name="flow")
        with pytest.raises(FrozenInstanceError):
            params.porosity = 0.3


class TestPKParamsFromDict:
    """Tests for building PK parameters by pk_type."""

    def test_dispatch(self):
        """pk_type selects the parameter class; lists become tuples."""
        params = pk_params_from_dict("tracer", {"pk_type": "solute transport", "component_names": ["a", "b"]})

        assert isinstance(params, TransportParams)
        assert params.name == "tracer"
        assert params.component_names == ("a", "b")

    def test_nested(self):
        """Nested groups become their dataclasses."""
        params = pk_params_from_dict("flow", {
            "pk_type": "richards flow",
            "wrm": [{"alpha": 1e-3, "n": 2.0}],
            "initial_condition": {"constants": {"pressure": 9e4}},
            "tolerance": {"atol": 0.5},
        })

        assert params.wrm[0].alpha == 1e-3
        assert params.initial_condition.constants == {"pressure": 9e4}
        assert params.tolerance.atol == 0.5

    def test_unknown_type(self):
        """Unknown pk_type lists the available ones."""
        with pytest.raises(ValidationError, match="unknown pk_type 'energy'"):
            pk_params_from_dict("energy", {"pk_type": "energy"})

    def test_unknown_parameter(self):
        """Typos are rejected rather than ignored."""
        with pytest.raises(ValidationError, match=r"Unknown RichardsParams parameters: \['porosty'\]"):
            pk_params_from_dict("flow", {"pk_type": "richards flow", "porosty": 0.3})


class TestTimestepParams:
    """Tests for TimestepParams dataclass."""

    def test_default_values(self):
        """Test default parameter values."""
        params = TimestepParams()
        assert params.t_start == 0.0
        assert params.t_end == 86400.0
        assert params.dt_reduction == 0.5

    def test_validation_end_before_start(self):
        """t_end must not precede t_start."""
        with pytest.raises(ValidationError, match="is before t_start"):
            TimestepParams(t_start=10.0, t_end=5.0)

    def test_validation_reduction(self):
        """A reduction factor of one would retry forever."""
        with pytest.raises(ValidationError, match="dt_reduction must be in"):
            TimestepParams(dt_reduction=1.0)


class TestSimulationConfig:
    """Tests for SimulationConfig dataclass."""

    def test_default_creation(self):
        """The default is a single flow PK on a 10-cell column."""
        config = SimulationConfig()
        assert config.root_pk == "flow"
        assert isinstance(config.pk_params("flow"), RichardsParams)
        assert config.mesh.n_cells == 10

    def test_unknown_root(self):
        """The root PK must be configured."""
        with pytest.raises(ValidationError, match="root_pk 'mpc' not in pks"):
            SimulationConfig(root_pk="mpc")

    def test_unknown_child(self):
        """Couplers may only reference configured PKs."""
        with pytest.raises(ValidationError, match="references unknown PK 'ghost'"):
            SimulationConfig(root_pk="mpc", pks={"mpc": MPCParams(name="mpc", pks_order=("ghost",))})

    def test_name_mismatch(self):
        """Entry names and PK names agree."""
        with pytest.raises(ValidationError, match="is named 'other'"):
            SimulationConfig(pks={"flow": RichardsParams(name="other")})

    def test_roundtrip_dict(self):
        """Dictionary roundtrip preserves every value."""
        original = coupled_config()
        restored = SimulationConfig.from_dict(original.to_dict())

        assert restored == original

    def test_from_dict_partial(self):
        """Groups left out keep their defaults."""
        config = SimulationConfig.from_dict({"mesh": {"n_cells": 3}})
        assert config.mesh.n_cells == 3
        assert config.mesh.dz == 1.0
        assert config.root_pk == "flow"

    def test_unknown_group(self):
        """Unknown top-level groups are rejected."""
        with pytest.raises(ValidationError, match="Unknown parameter groups"):
            SimulationConfig.from_dict({"grid": {"n": 3}})

    def test_with_updates(self):
        """Group dicts merge; the original is unchanged."""
        config = coupled_config()
        updated = config.with_updates(mesh={"n_cells": 5}, pks={"flow": {"porosity": 0.4}})

        assert updated.mesh.n_cells == 5
        assert updated.mesh.dz == 0.1
        assert updated.pk_params("flow").porosity == 0.4
        assert updated.pk_params("flow").water_table_elevation == 2.0
        assert config.pk_params("flow").porosity == 0.25

    def test_with_updates_unknown_group(self):
        """Updates to unknown groups are rejected."""
        with pytest.raises(ValidationError, match="Unknown parameter group: grid"):
            SimulationConfig().with_updates(grid={"n": 3})

    def test_unknown_pk(self):
        """Looking up a missing PK lists the available ones."""
        with pytest.raises(ValidationError, match="Unknown PK 'energy'"):
            SimulationConfig().pk_params("energy")


class TestYamlLoader:
    """Tests for YAML loading and saving."""

    def test_save_and_load(self, tmp_path):
        """Test YAML roundtrip."""
        config = coupled_config()
        yaml_path = tmp_path / "config.yaml"

        save_config(config, yaml_path)
        loaded = load_config(yaml_path)

        assert loaded == config

    def test_saved_yaml_is_plain(self, tmp_path):
        """No Python tags in the saved file."""
        yaml_path = tmp_path / "config.yaml"
        save_config(coupled_config(), yaml_path)

        assert "!!python" not in yaml_path.read_text()

    def test_load_empty_file(self, tmp_path):
        """Test loading empty YAML file uses defaults."""
        yaml_path = tmp_path / "empty.yaml"
        yaml_path.write_text("")

        config = load_config(yaml_path)
        assert config == SimulationConfig()

    def test_load_non_mapping(self, tmp_path):
        """The top level must be a mapping."""
        yaml_path = tmp_path / "list.yaml"
        yaml_path.write_text("- 1\n- 2\n")

        with pytest.raises(ValidationError, match="must be a dictionary"):
            load_config(yaml_path)

    def test_load_nonexistent_file(self, tmp_path):
        """Test loading nonexistent file raises error."""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.yaml")

    def test_load_with_overrides(self, tmp_path):
        """Test loading with overrides."""
        yaml_path = tmp_path / "base.yaml"
        save_config(coupled_config(), yaml_path)

        config = load_config_with_overrides(
            path=yaml_path,
            overrides={"timestep": {"t_end": 600.0}},
        )
        assert config.timestep.t_end == 600.0
        assert config.root_pk == "coupled"

    def test_load_with_overrides_no_file(self):
        """Test overrides without base file."""
        config = load_config_with_overrides(
            path=None,
            overrides={"mesh": {"n_cells": 50}},
        )
        assert config.mesh.n_cells == 50

    def test_handwritten_file(self, tmp_path):
        """A minimal hand-written configuration."""
        yaml_path = tmp_path / "column.yaml"
        yaml_path.write_text(
            "root_pk: flow\n"
            "pks:\n"
            "  flow:\n"
            "    pk_type: richards flow\n"
            "    water_table_elevation: 3.0\n"
            "    boundary_conditions:\n"
            "      - {kind: pressure, side: bottom, value: 120000.0}\n"
            "mesh: {n_cells: 6, surface: true}\n"
        )

        config = load_config(yaml_path)
        flow = config.pk_params("flow")
        assert flow.boundary_conditions == (BoundaryConditionParams("pressure", "bottom", 120000.0),)
        assert config.mesh.surface

    def test_independent_variables(self, tmp_path):
        """Fields no PK computes are declared with their entity and constants."""
        yaml_path = tmp_path / "surface.yaml"
        yaml_path.write_text(
            "mesh: {surface: true}\n"
            "independent_variables:\n"
            "  surface-mass_flux: {entity: face, constants: {surface-mass_flux: 0.0}}\n"
            "  surface-molar_density_liquid:\n"
            "    constants: {surface-molar_density_liquid: 1000.0}\n"
        )

        config = load_config(yaml_path)
        flux = config.independent_variables["surface-mass_flux"]
        density = config.independent_variables["surface-molar_density_liquid"]
        assert (flux.entity, flux.constants) == ("face", {"surface-mass_flux": 0.0})
        assert (density.entity, density.num_dofs) == ("cell", 1)
        assert SimulationConfig.from_dict(config.to_dict()) == config

    def test_independent_variable_entity(self):
        """Independent fields live on cells or faces only."""
        with pytest.raises(ValidationError, match="entity must be one of"):
            SimulationConfig.from_dict({"independent_variables": {"x": {"entity": "node"}}})

    def test_malformed_yaml(self, tmp_path):
        """Syntax errors name the file and position."""
        yaml_path = tmp_path / "broken.yaml"
        yaml_path.write_text("mesh:\n  n_cells: [3\n")

        with pytest.raises(ValidationError, match=r"Malformed YAML in .*broken.yaml \(line"):
            load_config(yaml_path)

    def test_unknown_mesh_parameter(self):
        """Typos in plain groups are rejected like PK parameters."""
        with pytest.raises(ValidationError, match=r"Unknown MeshParams parameters: \['ncells'\]"):
            SimulationConfig.from_dict({"mesh": {"ncells": 3}})


class TestAssignments:
    """Tests for dotted key=value overrides."""

    def test_parse(self):
        """Values are YAML scalars."""
        assert parse_assignment("pks.flow.porosity=0.3") == {"pks": {"flow": {"porosity": 0.3}}}
        assert parse_assignment("mesh.surface=true") == {"mesh": {"surface": True}}
        assert parse_assignment("root_pk=coupled") == {"root_pk": "coupled"}

    def test_parse_invalid(self):
        """An assignment needs a key and '='."""
        with pytest.raises(ValidationError, match="not of the form"):
            parse_assignment("pks.flow.porosity")
        with pytest.raises(ValidationError, match="not of the form"):
            parse_assignment("=3")

    def test_merge(self):
        """Nested dicts merge; leaves are replaced."""
        base = {"mesh": {"n_cells": 3, "dz": 0.5}}
        merged = merge_overrides(base, {"mesh": {"n_cells": 4}, "root_pk": "mpc"})

        assert merged == {"mesh": {"n_cells": 4, "dz": 0.5}, "root_pk": "mpc"}
        assert base == {"mesh": {"n_cells": 3, "dz": 0.5}}

    def test_applied_after_overrides(self, tmp_path):
        """Assignments win over group overrides."""
        yaml_path = tmp_path / "base.yaml"
        save_config(coupled_config(), yaml_path)

        config = load_config_with_overrides(
            path=yaml_path,
            overrides={"mesh": {"n_cells": 5}},
            assignments=["mesh.n_cells=7", "pks.transport.cfl=0.25"],
        )

        assert config.mesh.n_cells == 7
        assert config.mesh.dz == 0.1
        assert config.pk_params("transport").cfl == 0.25
