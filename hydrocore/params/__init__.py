"""
Parameter management.

This module provides:
- Validated, immutable parameter containers (schema.py)
- YAML files and command line overrides (loader.py)
"""

from hydrocore.params.schema import (
    BoundaryConditionParams,
    CoupledTransportParams,
    ElevationParams,
    EOSParams,
    FieldInitParams,
    IndependentFieldParams,
    IOParams,
    MeshParams,
    MPCParams,
    PKParams,
    RegionBlock,
    RichardsParams,
    SimulationConfig,
    SolverParams,
    TimestepParams,
    ToleranceParams,
    TransportParams,
    ValidationError,
    WRMParams,
    pk_params_from_dict,
)
from hydrocore.params.loader import (
    load_config,
    load_config_with_overrides,
    merge_overrides,
    parse_assignment,
    save_config,
)

__all__ = [
    # Schema classes
    "BoundaryConditionParams",
    "CoupledTransportParams",
    "ElevationParams",
    "EOSParams",
    "FieldInitParams",
    "IndependentFieldParams",
    "IOParams",
    "MeshParams",
    "MPCParams",
    "PKParams",
    "RegionBlock",
    "RichardsParams",
    "SimulationConfig",
    "SolverParams",
    "TimestepParams",
    "ToleranceParams",
    "TransportParams",
    "ValidationError",
    "WRMParams",
    "pk_params_from_dict",
    # Loader functions
    "load_config",
    "load_config_with_overrides",
    "merge_overrides",
    "parse_assignment",
    "save_config",
]
