"""
Taichi kernels for per-entity loops.

Submodules:
- utils: fill/copy/weighted totals over field components
- boundary: boundary-face mirroring of cell values
- accumulation: water content and the time-derivative residual term
- transport: first-order upwind advection
"""

from hydrocore.kernels.accumulation import (
    add_accumulation,
    water_content_liquid,
    water_content_two_phase,
)
from hydrocore.kernels.boundary import copy_cells_to_boundary_faces
from hydrocore.kernels.transport import upwind_divergence
from hydrocore.kernels.utils import copy_field, fill_field, weighted_total

__all__ = [
    "add_accumulation",
    "copy_cells_to_boundary_faces",
    "copy_field",
    "fill_field",
    "upwind_divergence",
    "water_content_liquid",
    "water_content_two_phase",
    "weighted_total",
]
