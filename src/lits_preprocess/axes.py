"""
Axis Specification Module for LiTS Preprocess.

Describes how the three canonical axes of a scan (left-right,
anterior-posterior, inferior-superior) are laid out in a voxel buffer,
and plans the permutation and flips needed to move a buffer from one
layout to another.

Conventions:
- order[i] is the buffer axis that holds canonical axis i
- sign[i] is the traversal direction of canonical axis i (+1 or -1)
- the home layout is order=(0, 1, 2), sign=(1, 1, 1)

Orientation policy:
- the order of all three axes is trusted
- only the signs of the last two axes are trusted; the sign of the
  left-right axis is unreliable (radiology and neurology viewers use
  opposite conventions) and never triggers a flip
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from lits_preprocess.logging_utils import ConfigurationError

# Configure module logger
logger = logging.getLogger(__name__)

# Canonical axes whose sign is used when deciding on flips
TRUSTED_SIGN_AXES: Tuple[int, ...] = (1, 2)


@dataclass(frozen=True)
class AxisSpec:
    """
    Order and sign of the three axes of a voxel buffer.

    Construction validates that ``order`` is a permutation of {0, 1, 2}
    and that every ``sign`` element is +1 or -1.
    """

    order: Tuple[int, int, int] = (0, 1, 2)
    sign: Tuple[int, int, int] = (1, 1, 1)

    def __post_init__(self) -> None:
        """Validate and normalize to tuples of ints."""
        try:
            order = tuple(int(a) for a in self.order)
            sign = tuple(int(s) for s in self.sign)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Axis order and sign must be integer sequences, got "
                f"order={self.order!r}, sign={self.sign!r}",
                cause=e,
            ) from e

        if len(order) != 3 or sorted(order) != [0, 1, 2]:
            raise ConfigurationError(
                f"Axis order must be a permutation of (0, 1, 2), got {order}"
            )
        if len(sign) != 3 or any(s not in (1, -1) for s in sign):
            raise ConfigurationError(
                f"Axis sign elements must be +1 or -1, got {sign}"
            )

        object.__setattr__(self, "order", order)
        object.__setattr__(self, "sign", sign)

    @classmethod
    def home(cls) -> "AxisSpec":
        """The canonical layout: identity order, all axes positive."""
        return cls()

    @property
    def is_home(self) -> bool:
        return self.order == (0, 1, 2) and self.sign == (1, 1, 1)

    def inverse_order(self) -> Tuple[int, int, int]:
        """Map buffer axis -> canonical axis it holds."""
        inverse = [0, 0, 0]
        for canonical, buffer_axis in enumerate(self.order):
            inverse[buffer_axis] = canonical
        return tuple(inverse)  # type: ignore[return-value]

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {"order": list(self.order), "sign": list(self.sign)}

    @classmethod
    def from_dict(cls, data: dict) -> "AxisSpec":
        """Create from dictionary."""
        return cls(
            order=tuple(data.get("order", (0, 1, 2))),
            sign=tuple(data.get("sign", (1, 1, 1))),
        )


HOME_AXES = AxisSpec.home()


@dataclass(frozen=True)
class OrientationPlan:
    """
    Result of comparing a current AxisSpec with a desired one.

    Attributes:
        needs_permute: Buffer axes must be reordered.
        needs_flip: At least one trusted axis must be reversed.
        axes: Output buffer axis b is taken from input buffer axis axes[b].
        flip_axes: Input buffer axes to reverse before permuting.
        current: Source layout.
        desired: Target layout.
    """

    needs_permute: bool
    needs_flip: bool
    axes: Tuple[int, int, int]
    flip_axes: Tuple[int, ...]
    current: AxisSpec
    desired: AxisSpec

    @property
    def is_identity(self) -> bool:
        return not (self.needs_permute or self.needs_flip)

    def output_shape(self, shape: Sequence[int]) -> Tuple[int, int, int]:
        """Dimensions of the buffer produced by this plan."""
        return tuple(int(shape[a]) for a in self.axes)  # type: ignore[return-value]


def plan_orientation(current: AxisSpec, desired: AxisSpec) -> OrientationPlan:
    """
    Plan the permutation and flips taking ``current`` to ``desired``.

    The sign of canonical axis 0 is ignored: it is always treated as
    matching, so axis 0 is never flipped.

    Args:
        current: Layout of the buffer as it is.
        desired: Layout the buffer should end up in.

    Returns:
        OrientationPlan describing the single composed index remapping.
    """
    needs_permute = current.order != desired.order

    flipped = [
        i for i in TRUSTED_SIGN_AXES if current.sign[i] != desired.sign[i]
    ]
    needs_flip = bool(flipped)

    desired_inverse = desired.inverse_order()
    axes = tuple(current.order[desired_inverse[b]] for b in range(3))
    flip_axes = tuple(sorted(current.order[i] for i in flipped))

    plan = OrientationPlan(
        needs_permute=needs_permute,
        needs_flip=needs_flip,
        axes=axes,  # type: ignore[arg-type]
        flip_axes=flip_axes,
        current=current,
        desired=desired,
    )
    logger.debug(
        f"Orientation plan: permute={needs_permute} axes={plan.axes} "
        f"flip={needs_flip} flip_axes={flip_axes}"
    )
    return plan


def axes_from_direction(direction: Sequence) -> AxisSpec:
    """
    Derive an AxisSpec from an image direction cosine matrix.

    Column j of the matrix is the physical direction of buffer axis j.
    Each buffer axis is assigned to the physical axis it is most aligned
    with, largest magnitude first, so oblique matrices still yield a
    permutation.

    Args:
        direction: 3x3 matrix, nested or flat row-major (SimpleITK's
            ``GetDirection()``).

    Returns:
        AxisSpec with order[physical] = buffer axis and the sign of the
        matching direction component.
    """
    flat = np.asarray(direction, dtype=np.float64).reshape(-1)
    if flat.size != 9:
        raise ConfigurationError(
            f"Direction matrix must have 9 elements, got {flat.size}"
        )

    def component(physical: int, buffer_axis: int) -> float:
        return float(flat[physical * 3 + buffer_axis])

    candidates = sorted(
        ((abs(component(p, b)), p, b) for p in range(3) for b in range(3)),
        reverse=True,
    )

    order = [-1, -1, -1]
    sign = [1, 1, 1]
    used_buffer_axes = set()
    for magnitude, physical, buffer_axis in candidates:
        if order[physical] != -1 or buffer_axis in used_buffer_axes:
            continue
        order[physical] = buffer_axis
        sign[physical] = -1 if component(physical, buffer_axis) < 0 else 1
        used_buffer_axes.add(buffer_axis)

    return AxisSpec(order=tuple(order), sign=tuple(sign))
