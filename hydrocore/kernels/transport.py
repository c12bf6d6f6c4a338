"""
First-order upwind advection.

For every interior face f = (c0, c1) carrying water flux q (positive from
c0 to c1), solute leaves the upwind cell and enters the downwind cell:

    div[c0, i] -= q · C[up, i]
    div[c1, i] += q · C[up, i]

Boundary faces (face_cells[f, 1] < 0) are skipped.
"""

import taichi as ti


@ti.kernel
def upwind_divergence(
    flux: ti.template(),
    face_cells: ti.template(),
    tcc: ti.template(),
    div: ti.types.ndarray(),
    n_faces: ti.i32,
):
    """Accumulate net advective solute inflow per cell into div."""
    n_comp = tcc.shape[1]
    for f in range(n_faces):
        c0 = face_cells[f, 0]
        c1 = face_cells[f, 1]
        if c1 >= 0:
            q = flux[f, 0]
            up = c0
            if q < 0:
                up = c1
            for i in range(n_comp):
                adv = q * tcc[up, i]
                div[c0, i] -= adv
                div[c1, i] += adv
