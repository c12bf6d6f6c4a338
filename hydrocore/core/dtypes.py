"""Type definitions for hydrocore.

Double precision is used throughout: conservation diagnostics are compared
against analytic totals at round-off level, which single precision cannot
resolve.
"""

import taichi as ti

# Floating-point type for all field payloads and kernel arithmetic
DTYPE = ti.f64

# Integer type for entity index maps (face -> cells, boundary face -> cell)
ITYPE = ti.i32
