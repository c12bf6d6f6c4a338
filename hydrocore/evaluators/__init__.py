"""
Evaluators: nodes of the field dependency graph.

- PrimaryVariableEvaluator: leaf written by a PK
- IndependentVariableEvaluator: leaf initialized from parameters
- SecondaryVariablesEvaluator: computed from dependencies, memoized
"""

from hydrocore.evaluators.base import Evaluator
from hydrocore.evaluators.cell_volume import CellVolumeEvaluator
from hydrocore.evaluators.elevation import ElevationEvaluator, MeshElevationEvaluator
from hydrocore.evaluators.eos import EOSEvaluator, VaporEvaluator
from hydrocore.evaluators.independent import IndependentVariableEvaluator
from hydrocore.evaluators.primary import PrimaryVariableEvaluator
from hydrocore.evaluators.secondary import SecondaryVariablesEvaluator
from hydrocore.evaluators.water_content import WaterContentEvaluator
from hydrocore.evaluators.wrm import ATMOSPHERIC_PRESSURE, RelPermEvaluator, WRMEvaluator

__all__ = [
    "ATMOSPHERIC_PRESSURE",
    "CellVolumeEvaluator",
    "ElevationEvaluator",
    "EOSEvaluator",
    "Evaluator",
    "IndependentVariableEvaluator",
    "MeshElevationEvaluator",
    "PrimaryVariableEvaluator",
    "RelPermEvaluator",
    "SecondaryVariablesEvaluator",
    "VaporEvaluator",
    "WaterContentEvaluator",
    "WRMEvaluator",
]
