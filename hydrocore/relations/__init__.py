"""
Closure relations: water retention and equations of state.
"""

from hydrocore.relations.eos import EOS, EOSConstant, create_eos
from hydrocore.relations.wrm import WRM, WRMPartition, WRMVanGenuchten, create_wrm

__all__ = [
    "EOS",
    "EOSConstant",
    "WRM",
    "WRMPartition",
    "WRMVanGenuchten",
    "create_eos",
    "create_wrm",
]
