"""Cell volume from mesh geometry."""

from typing import Any

from hydrocore.evaluators.secondary import SecondaryVariablesEvaluator
from hydrocore.fields.base import FieldData, get_key


class CellVolumeEvaluator(SecondaryVariablesEvaluator):
    """Volumes (areas on a manifold) of a domain's cells.

    Computed once; recomputed only when the deformation field changes.
    """

    def __init__(self, domain: str = "domain", deformation_key: str | None = None):
        deps = [deformation_key] if deformation_key else []
        super().__init__([get_key(domain, "cell_volume")], deps)
        self.domain = domain

    def evaluate_field_(self, state: Any, results: list[FieldData]) -> None:
        volume = results[0]
        volume.from_numpy("cell", volume.mesh.cell_volumes)
