"""
GPU Backend Module for LiTS Preprocess.

Provides transparent switching between NumPy and CuPy for the direct
(accelerated) kernels. When CuPy or a CUDA device is missing, the same
kernels run on NumPy and ``scipy.ndimage``.
"""

from __future__ import annotations

import logging
from types import ModuleType
from typing import Any, Optional

import numpy as np

# Try to import CuPy
try:
    import cupy as cp
    import cupyx.scipy.ndimage as gpu_ndimage
    CUPY_AVAILABLE = True
except ImportError:
    cp = None
    gpu_ndimage = None
    CUPY_AVAILABLE = False

# Configure module logger
logger = logging.getLogger(__name__)


class GPUBackend:
    """
    Device detection and host/device array transfers.

    Args:
        enabled: Allow use of a CUDA device when one is present.
    """

    def __init__(self, enabled: bool = True) -> None:
        self._gpu_enabled = enabled and CUPY_AVAILABLE
        self._device_id: Optional[int] = None

        if self._gpu_enabled:
            try:
                device = cp.cuda.Device()
                total_mem = device.mem_info[1] / (1024**3)
                self._device_id = device.id
                logger.info(f"GPU initialized: device {device.id}, {total_mem:.1f} GB VRAM")
            except Exception as e:
                logger.warning(f"GPU initialization failed, using CPU kernels: {e}")
                self._gpu_enabled = False
        elif enabled:
            logger.debug("CuPy not available, using CPU kernels")

    @property
    def available(self) -> bool:
        """Check if GPU is available and enabled."""
        return self._gpu_enabled

    @property
    def device_name(self) -> str:
        return f"cuda:{self._device_id}" if self.available else "cpu"

    @property
    def xp(self) -> ModuleType:
        """Array module the kernels run on."""
        return cp if self.available else np

    def to_device(self, array: np.ndarray) -> Any:
        """Transfer NumPy array to the active device."""
        if self.available and isinstance(array, np.ndarray):
            return cp.asarray(array)
        return array

    def to_host(self, array: Any) -> np.ndarray:
        """Transfer a device array back to a NumPy array."""
        if CUPY_AVAILABLE and isinstance(array, cp.ndarray):
            return cp.asnumpy(array)
        return array

    def clear_memory(self) -> None:
        """Release cached device memory blocks."""
        if self.available:
            cp.get_default_memory_pool().free_all_blocks()


def get_array_module(array: Any) -> ModuleType:
    """Return ``cupy`` for device arrays and ``numpy`` otherwise."""
    if CUPY_AVAILABLE:
        return cp.get_array_module(array)
    return np


def is_gpu_available() -> bool:
    """Check if a CUDA device can be used."""
    return GPUBackend().available
