"""
Execution Backends Module for LiTS Preprocess.

Every processing operation runs through one of two interchangeable
execution paths, chosen when a Processor is built:

- GenericToolkit: SimpleITK filters (IntensityWindowing, Flip,
  PermuteAxes, Median) over ITK images
- Accelerated: direct array kernels on a CUDA device through CuPy, or on
  NumPy/SciPy when no device is available

Both paths honour the same numeric contract and produce the same output
dimensions and values (within floating point tolerance). Input
validation happens in the Processor before either backend is called.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Union

import numpy as np
import SimpleITK as sitk

from lits_preprocess.axes import OrientationPlan
from lits_preprocess.buffer import VoxelBuffer
from lits_preprocess.gpu_backend import GPUBackend
from lits_preprocess.intensity import IntensityWindow, map_intensities
from lits_preprocess.logging_utils import ConfigurationError
from lits_preprocess.median import median_filter_slices
from lits_preprocess.transform import apply_plan

# Configure module logger
logger = logging.getLogger(__name__)


class ExecutionPath(str, Enum):
    """Execution path options."""

    GENERIC_TOOLKIT = "generic_toolkit"
    ACCELERATED = "accelerated"

    @classmethod
    def parse(cls, value: Union["ExecutionPath", str]) -> "ExecutionPath":
        """
        Parse an execution path name.

        Accepts the enum values and the short names ``itk`` and ``cuda``,
        case-insensitively.

        Raises:
            ConfigurationError: If the name is not recognized.
        """
        if isinstance(value, ExecutionPath):
            return value

        aliases = {
            "itk": cls.GENERIC_TOOLKIT,
            "generic_toolkit": cls.GENERIC_TOOLKIT,
            "cuda": cls.ACCELERATED,
            "accelerated": cls.ACCELERATED,
        }
        key = str(value).strip().lower()
        if key not in aliases:
            raise ConfigurationError(
                f"Unknown execution path: {value!r}. "
                f"Must be one of: {sorted(aliases)}"
            )
        return aliases[key]


class ExecutionBackend(ABC):
    """Abstract base class for execution paths."""

    path: ExecutionPath

    @abstractmethod
    def normalize(self, buffer: VoxelBuffer, window: IntensityWindow) -> VoxelBuffer:
        """Re-map intensities of a validated intensity buffer."""

    @abstractmethod
    def reorient(self, buffer: VoxelBuffer, plan: OrientationPlan) -> VoxelBuffer:
        """Apply a non-identity orientation plan to a validated buffer."""

    @abstractmethod
    def median(self, buffer: VoxelBuffer, k: int) -> VoxelBuffer:
        """Filter each depth slice with a validated ``k x k`` median."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(path={self.path.value})"


def buffer_to_image(buffer: VoxelBuffer) -> sitk.Image:
    """
    Convert a VoxelBuffer to a SimpleITK image.

    ITK index axes x, y, z are buffer axes 0, 1, 2; SimpleITK expects the
    array in (z, y, x) order.
    """
    return sitk.GetImageFromArray(np.ascontiguousarray(buffer.data.transpose(2, 1, 0)))


def image_to_array(image: sitk.Image) -> np.ndarray:
    """Convert a SimpleITK image to an array indexed [x, y, z]."""
    return np.ascontiguousarray(sitk.GetArrayFromImage(image).transpose(2, 1, 0))


class ToolkitBackend(ExecutionBackend):
    """
    GenericToolkit execution path built on SimpleITK filters.

    Flip and permutation run as two dependent filter stages. Median uses
    a radius of zero along depth so slices never mix; ITK's default
    zero-flux Neumann boundary is the clamp-to-edge rule.
    """

    path = ExecutionPath.GENERIC_TOOLKIT

    def normalize(self, buffer: VoxelBuffer, window: IntensityWindow) -> VoxelBuffer:
        image = buffer_to_image(buffer)
        windowed = sitk.IntensityWindowing(
            image,
            windowMinimum=window.lower_threshold,
            windowMaximum=window.upper_threshold,
            outputMinimum=window.output_min,
            outputMaximum=window.output_max,
        )
        windowed = sitk.Cast(windowed, sitk.sitkFloat32)
        return buffer.with_data(image_to_array(windowed))

    def reorient(self, buffer: VoxelBuffer, plan: OrientationPlan) -> VoxelBuffer:
        image = buffer_to_image(buffer)

        if plan.needs_flip:
            flip_mask = [axis in plan.flip_axes for axis in range(3)]
            image = sitk.Flip(image, flip_mask)

        if plan.needs_permute:
            image = sitk.PermuteAxes(image, [int(a) for a in plan.axes])

        return buffer.with_data(image_to_array(image))

    def median(self, buffer: VoxelBuffer, k: int) -> VoxelBuffer:
        if k == 1:
            return buffer.copy()
        radius = k // 2
        image = buffer_to_image(buffer)
        filtered = sitk.Median(image, [radius, radius, 0])
        return buffer.with_data(image_to_array(filtered))


class AcceleratedBackend(ExecutionBackend):
    """
    Accelerated execution path running direct per-voxel kernels.

    Buffers are copied to the device once per operation, processed with
    whole-array kernels (no ordering between voxels) and copied back.

    Args:
        use_gpu: Allow a CUDA device when CuPy finds one.
    """

    path = ExecutionPath.ACCELERATED

    def __init__(self, use_gpu: bool = True) -> None:
        self.gpu = GPUBackend(enabled=use_gpu)

    @property
    def device(self) -> str:
        return self.gpu.device_name

    def normalize(self, buffer: VoxelBuffer, window: IntensityWindow) -> VoxelBuffer:
        data = self.gpu.to_device(buffer.data)
        result = self.gpu.to_host(map_intensities(data, window))
        self.gpu.clear_memory()
        return buffer.with_data(result)

    def reorient(self, buffer: VoxelBuffer, plan: OrientationPlan) -> VoxelBuffer:
        data = self.gpu.to_device(buffer.data)
        result = self.gpu.to_host(apply_plan(data, plan))
        self.gpu.clear_memory()
        return buffer.with_data(result)

    def median(self, buffer: VoxelBuffer, k: int) -> VoxelBuffer:
        data = self.gpu.to_device(buffer.data)
        result = self.gpu.to_host(median_filter_slices(data, k))
        self.gpu.clear_memory()
        return buffer.with_data(result)

    def __repr__(self) -> str:
        return f"AcceleratedBackend(device={self.device})"


def create_backend(
    path: Union[ExecutionPath, str],
    use_gpu: bool = True,
) -> ExecutionBackend:
    """
    Build the backend for an execution path.

    Args:
        path: Execution path or its name.
        use_gpu: Passed to the accelerated backend.

    Returns:
        ExecutionBackend instance.
    """
    path = ExecutionPath.parse(path)
    if path == ExecutionPath.GENERIC_TOOLKIT:
        return ToolkitBackend()
    return AcceleratedBackend(use_gpu=use_gpu)
