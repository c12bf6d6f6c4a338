"""
PK registry: builds a PK tree from configuration.

Usage:
    registry = PKRegistry()
    root = registry.create(config.root_pk, config)
"""

from typing import Type

from hydrocore.params.schema import MPCParams, SimulationConfig
from hydrocore.pks.base import PKBase
from hydrocore.pks.coupled_transport import CoupledTransport
from hydrocore.pks.mpc import StrongMPC, WeakMPC
from hydrocore.pks.richards import Richards
from hydrocore.pks.transport import SoluteTransport


class PKRegistry:
    """Registry of PK classes keyed by pk_type.

    Example:
        registry = PKRegistry()
        registry.register("my flow", MyFlowPK)
        pk = registry.create("flow", config)
    """

    def __init__(self):
        """Initialize registry with the built-in PKs."""
        self._types: dict[str, Type[PKBase]] = {
            "richards flow": Richards,
            "solute transport": SoluteTransport,
            "weak MPC": WeakMPC,
            "strong MPC": StrongMPC,
            "coupled transport": CoupledTransport,
        }

    def register(self, pk_type: str, pk_cls: Type[PKBase]) -> None:
        """Register a PK class under a type name."""
        self._types[pk_type] = pk_cls

    def get(self, pk_type: str) -> Type[PKBase]:
        """Look up a PK class.

        Raises:
            KeyError: If pk_type not registered
        """
        if pk_type not in self._types:
            raise KeyError(
                f"No PK registered for type '{pk_type}'. "
                f"Available: {list(self._types.keys())}"
            )
        return self._types[pk_type]

    def available_types(self) -> list[str]:
        """Registered type names."""
        return list(self._types.keys())

    def create(self, name: str, config: SimulationConfig, logger=None) -> PKBase:
        """Instantiate a PK and, for couplers, its children recursively."""
        params = config.pk_params(name)
        pk_cls = self.get(params.pk_type)
        if isinstance(params, MPCParams):
            children = [self.create(child, config) for child in params.pks_order]
            return pk_cls(params, children, logger)
        return pk_cls(params, logger)


# Default registry instance for convenience
_default_registry = PKRegistry()


def get_registry() -> PKRegistry:
    """Get the default PK registry."""
    return _default_registry
