"""
Taichi runtime selection.

Environment variables:
    HYDROCORE_BACKEND: 'cuda', 'vulkan', 'cpu', or 'auto' (default)
    HYDROCORE_DEBUG: '1' to enable debug mode (bounds-checked kernels)

Fields are allocated against whatever runtime is live, so the runtime is
initialized once per process; later calls return the active backend
unless ``reinit`` is given.
"""

import os
import subprocess

import taichi as ti

from hydrocore.core.dtypes import DTYPE
from hydrocore.logging_config import get_logger

ARCHES = {"cuda": ti.cuda, "vulkan": ti.vulkan, "cpu": ti.cpu}

logger = get_logger("config")
_active_backend: str | None = None


def _has_cuda_device() -> bool:
    try:
        result = subprocess.run(
            ["nvidia-smi", "-L"], capture_output=True, text=True, timeout=5
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0 and "GPU" in result.stdout


def get_backend(requested: str | None = None) -> str:
    """Resolve a backend name: explicit request, then HYDROCORE_BACKEND, then detection.

    Raises:
        ValueError: If the name is not a known backend or 'auto'
    """
    name = (requested or os.environ.get("HYDROCORE_BACKEND", "auto")).lower()
    if name in ARCHES:
        return name
    if name != "auto":
        raise ValueError(f"Invalid backend '{name}', expected one of {sorted(ARCHES)} or 'auto'")
    return "cuda" if _has_cuda_device() else "cpu"


def active_backend() -> str | None:
    """Backend of the live runtime, or None before init_taichi."""
    return _active_backend


def init_taichi(
    backend: str | None = None,
    debug: bool | None = None,
    reinit: bool = False,
) -> str:
    """Initialize the Taichi runtime in double precision.

    A second call is a no-op returning the active backend, since ti.init
    discards every field already allocated. Pass reinit=True to force it.
    """
    global _active_backend
    if _active_backend is not None and not reinit:
        logger.debug("Taichi already running on %s", _active_backend)
        return _active_backend

    backend = get_backend(backend)
    if debug is None:
        debug = os.environ.get("HYDROCORE_DEBUG", "0") == "1"

    ti.init(
        arch=ARCHES[backend],
        default_fp=DTYPE,
        debug=debug,
        offline_cache=True,
        random_seed=42,
    )
    _active_backend = backend
    logger.info("Taichi initialized on %s (debug=%s)", backend, debug)
    return backend
