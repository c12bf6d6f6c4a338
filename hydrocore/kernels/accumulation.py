"""
Water content and accumulation kernels.

Water content of a cell [mol]:

    wc = (n_l·s_l + n_g·s_g·ω_g) · φ · V

Accumulation contribution to the residual [mol/s]:

    g_c += (wc_new - wc_old) / dt
"""

import taichi as ti

from hydrocore.core.dtypes import DTYPE


@ti.kernel
def water_content_liquid(
    porosity: ti.template(),
    cell_volume: ti.template(),
    n_liq: ti.template(),
    sat_liq: ti.template(),
    wc: ti.template(),
    n_cells: ti.i32,
):
    """Liquid-only water content."""
    for c in range(n_cells):
        wc[c, 0] = n_liq[c, 0] * sat_liq[c, 0] * porosity[c, 0] * cell_volume[c, 0]


@ti.kernel
def water_content_two_phase(
    porosity: ti.template(),
    cell_volume: ti.template(),
    n_liq: ti.template(),
    sat_liq: ti.template(),
    n_gas: ti.template(),
    sat_gas: ti.template(),
    mol_frac_gas: ti.template(),
    wc: ti.template(),
    n_cells: ti.i32,
):
    """Water content of liquid plus water vapor in the gas phase."""
    for c in range(n_cells):
        wc_liq = n_liq[c, 0] * sat_liq[c, 0]
        wc_gas = n_gas[c, 0] * sat_gas[c, 0] * mol_frac_gas[c, 0]
        wc[c, 0] = (wc_liq + wc_gas) * porosity[c, 0] * cell_volume[c, 0]


@ti.kernel
def add_accumulation(
    wc_old: ti.template(),
    wc_new: ti.template(),
    g: ti.types.ndarray(),
    dt: DTYPE,
    n_owned: ti.i32,
):
    """Add the time derivative of total water content to the residual g."""
    for c in range(n_owned):
        g[c] += (wc_new[c, 0] - wc_old[c, 0]) / dt
