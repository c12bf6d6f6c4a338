"""Utility kernels over field components.

Components are ``ti.field(DTYPE, shape=(n_entities, num_dofs))``.
"""

import taichi as ti

from hydrocore.core.dtypes import DTYPE


@ti.kernel
def fill_field(field: ti.template(), value: DTYPE):
    """Set all field values to a constant."""
    for I in ti.grouped(field):
        field[I] = value


@ti.kernel
def copy_field(src: ti.template(), dst: ti.template()):
    """Copy src to dst."""
    for I in ti.grouped(src):
        dst[I] = src[I]


@ti.kernel
def weighted_total(
    values: ti.template(),
    weight_a: ti.template(),
    weight_b: ti.template(),
    dof: ti.i32,
    n_owned: ti.i32,
) -> DTYPE:
    """Sum values[c, dof] * weight_a[c, 0] * weight_b[c, 0] over owned cells."""
    total = ti.cast(0.0, DTYPE)
    for c in range(n_owned):
        total += values[c, dof] * weight_a[c, 0] * weight_b[c, 0]
    return total
