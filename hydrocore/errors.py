"""Fatal error taxonomy.

All of these indicate wiring, configuration or mesh bugs and are never
caught inside hydrocore. Recoverable physics failures are not exceptions;
see ``hydrocore.pks.protocol.PhysicsFailure``.
"""


class HydroCoreError(Exception):
    """Base class for fatal hydrocore errors."""


class OwnershipViolation(HydroCoreError):
    """A non-owner attempted to mutate a field, scalar or constant."""

    def __init__(self, name: str, owner: str | None, requester: str | None):
        self.name = name
        self.owner = owner
        self.requester = requester
        super().__init__(
            f"'{requester}' may not write '{name}' (owned by '{owner}')"
        )


class ConfigurationError(HydroCoreError):
    """Incompatible field shapes, missing dependencies, cycles, bad wiring."""


class InitializationError(ConfigurationError):
    """Required initial data are missing."""


class ConsistencyError(HydroCoreError):
    """Collaborator data violate an invariant (e.g. malformed mesh)."""
