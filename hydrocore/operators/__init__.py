"""
Discrete operators used by flow PKs.
"""

from hydrocore.operators.diffusion import (
    DIRICHLET,
    NEUMANN,
    DiffusionOperator,
    OperatorStage,
    TwoPointFluxDiffusion,
)

__all__ = [
    "DIRICHLET",
    "NEUMANN",
    "DiffusionOperator",
    "OperatorStage",
    "TwoPointFluxDiffusion",
]
