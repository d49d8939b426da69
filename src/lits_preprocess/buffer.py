"""
Voxel Buffer Module for LiTS Preprocess.

A VoxelBuffer is a dense 3D array tagged with its dimensions and payload
kind. Arrays are indexed ``[x, y, z]``, so the array shape is
``(width, height, depth)`` and the slices seen by the median filter are
the ``(width, height)`` planes at fixed depth.

Payload kinds:
- intensity: float32 CT volume
- label: uint8 segmentation mask (never intensity-mapped)

Buffers belong to the caller (usually a Scan). The core borrows them for
one operation and hands back new buffers; it never keeps references.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Tuple

import numpy as np
from numpy.typing import NDArray

from lits_preprocess.logging_utils import PreconditionViolation


class BufferKind(str, Enum):
    """Payload kind of a voxel buffer."""

    INTENSITY = "intensity"
    LABEL = "label"

    @property
    def dtype(self) -> np.dtype:
        """Element type required for this kind."""
        mapping = {
            BufferKind.INTENSITY: np.dtype(np.float32),
            BufferKind.LABEL: np.dtype(np.uint8),
        }
        return mapping[self]


@dataclass
class VoxelBuffer:
    """
    Dimension-tagged 3D voxel buffer.

    Attributes:
        data: Array of shape (width, height, depth).
        width: Declared size of buffer axis 0.
        height: Declared size of buffer axis 1.
        depth: Declared size of buffer axis 2.
        kind: Payload kind; fixes the element type.
    """

    data: NDArray
    width: int
    height: int
    depth: int
    kind: BufferKind = BufferKind.INTENSITY

    def __post_init__(self) -> None:
        """Validate the array against the declared dimensions and kind."""
        if isinstance(self.kind, str):
            self.kind = BufferKind(self.kind)

        if self.data is None:
            raise PreconditionViolation("Voxel buffer has no data")
        if getattr(self.data, "ndim", None) != 3:
            raise PreconditionViolation(
                f"Voxel buffer must be 3D, got {getattr(self.data, 'ndim', None)} dimensions"
            )
        if tuple(self.data.shape) != (self.width, self.height, self.depth):
            raise PreconditionViolation(
                f"Voxel buffer shape {tuple(self.data.shape)} does not match "
                f"declared dimensions {(self.width, self.height, self.depth)}"
            )
        if self.data.dtype != self.kind.dtype:
            raise PreconditionViolation(
                f"{self.kind.value} buffer must hold {self.kind.dtype}, "
                f"got {self.data.dtype}"
            )

    @classmethod
    def from_array(cls, data: Any, kind: BufferKind = BufferKind.INTENSITY) -> "VoxelBuffer":
        """
        Wrap an array, converting it to the element type of ``kind``.

        Args:
            data: 3D array indexed [x, y, z].
            kind: Payload kind.

        Returns:
            VoxelBuffer with dimensions taken from the array shape.
        """
        kind = BufferKind(kind)
        array = np.asarray(data)
        if array.ndim != 3:
            raise PreconditionViolation(
                f"Voxel buffer must be 3D, got {array.ndim} dimensions"
            )
        array = np.ascontiguousarray(array, dtype=kind.dtype)
        width, height, depth = array.shape
        return cls(data=array, width=width, height=height, depth=depth, kind=kind)

    @classmethod
    def volume(cls, data: Any) -> "VoxelBuffer":
        """Wrap an intensity volume."""
        return cls.from_array(data, BufferKind.INTENSITY)

    @classmethod
    def segment(cls, data: Any) -> "VoxelBuffer":
        """Wrap a label mask."""
        return cls.from_array(data, BufferKind.LABEL)

    @property
    def shape(self) -> Tuple[int, int, int]:
        return (self.width, self.height, self.depth)

    @property
    def is_label(self) -> bool:
        return self.kind == BufferKind.LABEL

    def with_data(self, data: NDArray) -> "VoxelBuffer":
        """New buffer of the same kind holding ``data`` (dimensions from its shape)."""
        width, height, depth = data.shape
        return VoxelBuffer(
            data=data,
            width=int(width),
            height=int(height),
            depth=int(depth),
            kind=self.kind,
        )

    def copy(self) -> "VoxelBuffer":
        return self.with_data(self.data.copy())

    def __repr__(self) -> str:
        return f"VoxelBuffer(kind={self.kind.value}, shape={self.shape})"
