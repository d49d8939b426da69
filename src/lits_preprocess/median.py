"""
Median Filter Module for LiTS Preprocess.

Filters every depth slice (the ``(width, height)`` plane at fixed z) of a
volume with a square ``k x k`` median. No values cross slices.
Out-of-bounds neighbours are clamped to the nearest edge voxel, for
every voxel of the volume. Results are written to a new array, so no
voxel ever reads an already filtered neighbour.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np
import scipy.ndimage as cpu_ndimage

from lits_preprocess.gpu_backend import get_array_module, gpu_ndimage
from lits_preprocess.logging_utils import ConfigurationError, PreconditionViolation

# Configure module logger
logger = logging.getLogger(__name__)

# scipy/cupyx name of the clamp-to-edge border rule
BORDER_MODE = "nearest"


def validate_kernel_size(k: int) -> int:
    """
    Check a median kernel size.

    Raises:
        ConfigurationError: If ``k`` is not an odd integer >= 1.
    """
    if isinstance(k, bool) or not isinstance(k, int):
        raise ConfigurationError(f"Median kernel size must be an integer, got {k!r}")
    if k < 1:
        raise ConfigurationError(f"Median kernel size must be >= 1, got {k}")
    if k % 2 == 0:
        raise ConfigurationError(f"Median kernel size must be odd, got {k}")
    return k


def median_filter_slices(data: Any, k: int) -> Any:
    """
    Apply a per-slice ``k x k`` median filter.

    Args:
        data: 3D array indexed [x, y, z] (NumPy or CuPy).
        k: Odd kernel size.

    Returns:
        New filtered array of the same module, shape and dtype.
    """
    validate_kernel_size(k)
    if data.ndim != 3:
        raise PreconditionViolation(f"Expected a 3D array, got {data.ndim} dimensions")

    if k == 1:
        return data.copy()

    xp = get_array_module(data)
    ndimage = cpu_ndimage if xp is np else gpu_ndimage
    logger.debug(f"Median filter k={k} on {data.shape} ({xp.__name__})")

    return ndimage.median_filter(data, size=(k, k, 1), mode=BORDER_MODE)
