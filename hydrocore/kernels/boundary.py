"""Boundary-face mirroring.

A boundary-face component of a cell-keyed field holds, for each boundary
face, the value of the single interior cell behind it.
"""

import taichi as ti


@ti.kernel
def copy_cells_to_boundary_faces(
    cell: ti.template(),
    boundary_face: ti.template(),
    bface_cell: ti.template(),
    n_bfaces: ti.i32,
):
    """boundary_face[bf, k] = cell[bface_cell[bf], k] for every dof k."""
    n_dofs = cell.shape[1]
    for bf in range(n_bfaces):
        c = bface_cell[bf]
        for k in range(n_dofs):
            boundary_face[bf, k] = cell[c, k]
