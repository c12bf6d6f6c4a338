"""Primary variable evaluator: a leaf whose field is written by a PK."""

from typing import Any

from hydrocore.evaluators.base import Evaluator


class PrimaryVariableEvaluator(Evaluator):
    """Leaf node for a PK-owned field.

    The owning PK calls ``set_field_as_changed`` after every write; the
    evaluator never computes anything itself.
    """

    def __init__(self, key: str):
        super().__init__([key])

    @property
    def key(self) -> str:
        return self.my_keys[0]

    def has_field_changed(self, state: Any, request: str) -> bool:
        return self._report(request)

    def set_field_as_changed(self) -> None:
        """Record a write by the owning PK."""
        self._generation += 1

    def ensure_compatibility(self, state: Any) -> None:
        state.require_field(self.key)
