"""
Process kernels and couplers.

Submodules:
- protocol: ProcessKernel / ResidualFunction interfaces and step results
- base: PKBase lifecycle and PhysicalPK primary-variable handling
- richards: implicit variably saturated flow
- transport: explicit upwind solute transport
- mpc: MPC, WeakMPC, StrongMPC couplers
- coupled_transport: surface/subsurface transport coupler
- registry: construction of PK trees from configuration
"""

from hydrocore.pks.protocol import (
    PhysicsFailure,
    PKStatus,
    ProcessKernel,
    ResidualFunction,
    StepResult,
)
from hydrocore.pks.solution import SolutionLayout, SolutionVector
from hydrocore.pks.base import PhysicalPK, PKBase
from hydrocore.pks.richards import Richards
from hydrocore.pks.transport import ExchangeSide, SoluteTransport
from hydrocore.pks.mpc import MPC, StrongMPC, WeakMPC
from hydrocore.pks.coupled_transport import CoupledTransport
from hydrocore.pks.registry import PKRegistry, get_registry

__all__ = [
    # Registry
    "PKRegistry",
    "get_registry",
    # Protocol types
    "PhysicsFailure",
    "PKStatus",
    "ProcessKernel",
    "ResidualFunction",
    "StepResult",
    # Solution vectors
    "SolutionLayout",
    "SolutionVector",
    # Implementations
    "CoupledTransport",
    "ExchangeSide",
    "MPC",
    "PhysicalPK",
    "PKBase",
    "Richards",
    "SoluteTransport",
    "StrongMPC",
    "WeakMPC",
]
