"""
Volume Transform Module for LiTS Preprocess.

Applies an OrientationPlan to a dense 3D array. Flips and the axis
permutation are composed as strided views and materialized with one
contiguous copy, so every output voxel is read from exactly one input
voxel in a single pass. Works on NumPy and CuPy arrays alike and is
independent of the element type (float32 volumes, uint8 masks).
"""

from __future__ import annotations

import logging
from typing import Any

from lits_preprocess.axes import AxisSpec, OrientationPlan, plan_orientation
from lits_preprocess.buffer import VoxelBuffer
from lits_preprocess.gpu_backend import get_array_module
from lits_preprocess.logging_utils import PreconditionViolation

# Configure module logger
logger = logging.getLogger(__name__)


def apply_plan(data: Any, plan: OrientationPlan) -> Any:
    """
    Remap a 3D array according to ``plan``.

    Args:
        data: 3D array laid out as ``plan.current``.
        plan: Plan produced by :func:`plan_orientation`.

    Returns:
        Contiguous array laid out as ``plan.desired``. When the plan is
        the identity the input array is returned as is.
    """
    if data.ndim != 3:
        raise PreconditionViolation(f"Expected a 3D array, got {data.ndim} dimensions")

    if plan.is_identity:
        return data

    xp = get_array_module(data)

    index = [slice(None)] * 3
    for axis in plan.flip_axes:
        index[axis] = slice(None, None, -1)
    view = data[tuple(index)].transpose(plan.axes)

    return xp.ascontiguousarray(view)


def reorient_array(data: Any, current: AxisSpec, desired: AxisSpec) -> Any:
    """Plan and apply the transform taking ``current`` to ``desired``."""
    return apply_plan(data, plan_orientation(current, desired))


def reorient_buffer(
    buffer: VoxelBuffer,
    current: AxisSpec,
    desired: AxisSpec,
) -> VoxelBuffer:
    """
    Reorient a host VoxelBuffer.

    Args:
        buffer: Intensity volume or label mask.
        current: Layout of ``buffer``.
        desired: Target layout.

    Returns:
        New VoxelBuffer with permuted dimensions, or ``buffer`` itself
        when nothing has to change.
    """
    plan = plan_orientation(current, desired)
    if plan.is_identity:
        return buffer

    logger.debug(
        f"Reorienting {buffer.kind.value} buffer {buffer.shape} -> "
        f"{plan.output_shape(buffer.shape)}"
    )
    return buffer.with_data(apply_plan(buffer.data, plan))
