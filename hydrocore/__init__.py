"""
hydrocore: shared-state management and process-kernel coordination for
coupled surface/subsurface flow and transport, built on Taichi.

Process kernels (PKs) share one owner-gated State, recompute derived
fields lazily through a dependency graph of evaluators, and are composed
into weakly or strongly coupled multi-process couplers.
"""

__version__ = "0.1.0"
