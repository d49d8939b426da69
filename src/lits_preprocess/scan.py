"""
Scan Module for LiTS Preprocess.

A Scan holds one subject's CT volume, its optional segmentation mask and
the axis layout of each. The Processor borrows the buffers for the
duration of one operation and puts transformed buffers back through the
setters; the Scan keeps ownership.

Scans can be built in memory or loaded from NIfTI files with SimpleITK.
On load the ITK array (z, y, x) is rearranged into the (width, height,
depth) buffer layout and the AxisSpec is derived from the image
direction cosine matrix. On save the direction matrix is rebuilt from the
recorded AxisSpec, so a load/save cycle keeps every voxel at the same
physical position.

Geometry:
- voxel spacing is kept per canonical (physical) axis, so it follows the
  buffers through any permutation
- each buffer keeps its own origin (physical position of voxel [0, 0, 0]),
  moved whenever a trusted axis is flipped
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import SimpleITK as sitk

from lits_preprocess.axes import (
    HOME_AXES,
    TRUSTED_SIGN_AXES,
    AxisSpec,
    axes_from_direction,
)
from lits_preprocess.buffer import BufferKind, VoxelBuffer
from lits_preprocess.logging_utils import LiTSPreprocessError, PreconditionViolation, ProcessingStage

# Configure module logger
logger = logging.getLogger(__name__)

Vector3 = Tuple[float, float, float]


def direction_from_axes(axes: AxisSpec) -> Tuple[float, ...]:
    """
    Build a flat row-major direction matrix from an AxisSpec.

    Inverse of :func:`~lits_preprocess.axes.axes_from_direction`: column
    ``order[i]`` is ``sign[i]`` times the unit vector of physical axis ``i``.
    """
    direction = [0.0] * 9
    for physical, buffer_axis in enumerate(axes.order):
        direction[physical * 3 + buffer_axis] = float(axes.sign[physical])
    return tuple(direction)


def _to_canonical(values: Sequence[float], axes: AxisSpec) -> Vector3:
    """Reorder per-buffer-axis values into canonical axis order."""
    return tuple(float(values[axes.order[i]]) for i in range(3))  # type: ignore[return-value]


def _to_buffer(values: Sequence[float], axes: AxisSpec) -> Vector3:
    """Reorder per-canonical-axis values into the buffer axis order of ``axes``."""
    out = [0.0, 0.0, 0.0]
    for canonical, buffer_axis in enumerate(axes.order):
        out[buffer_axis] = float(values[canonical])
    return tuple(out)  # type: ignore[return-value]


def _canonical_extent(buffer: VoxelBuffer, axes: AxisSpec) -> Tuple[int, int, int]:
    return tuple(buffer.shape[axes.order[i]] for i in range(3))  # type: ignore[return-value]


def _flipped_origin(
    origin: Vector3,
    buffer: VoxelBuffer,
    current: AxisSpec,
    new: AxisSpec,
    spacing: Vector3,
) -> Vector3:
    """
    Origin of ``buffer`` after moving it from ``current`` to ``new``.

    Only trusted axes are ever flipped; voxel [0, 0, 0] of a flipped axis
    is the former last voxel along it.
    """
    shifted = list(origin)
    extent = _canonical_extent(buffer, current)
    for i in TRUSTED_SIGN_AXES:
        if current.sign[i] != new.sign[i]:
            shifted[i] += current.sign[i] * spacing[i] * (extent[i] - 1)
    return tuple(shifted)  # type: ignore[return-value]


def _read_buffer(path: Path, kind: BufferKind) -> Tuple[VoxelBuffer, sitk.Image]:
    """Read an image file into a buffer of ``kind``."""
    if not path.exists():
        raise FileNotFoundError(f"Image file not found: {path}")

    logger.debug(f"Loading {kind.value} image: {path}")
    try:
        image = sitk.ReadImage(str(path))
    except RuntimeError as e:
        raise LiTSPreprocessError(
            f"Failed to read image: {path}",
            stage=ProcessingStage.LOADING,
            cause=e,
        ) from e

    if image.GetDimension() != 3:
        raise PreconditionViolation(
            f"Expected a 3D image, got {image.GetDimension()}D: {path}"
        )

    array = sitk.GetArrayFromImage(image).transpose(2, 1, 0)
    return VoxelBuffer.from_array(array, kind), image


def _write_buffer(
    buffer: VoxelBuffer,
    path: Path,
    axes: AxisSpec,
    spacing: Vector3,
    origin: Vector3,
) -> None:
    """Write a buffer as an image whose direction matches ``axes``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    image = sitk.GetImageFromArray(np.ascontiguousarray(buffer.data.transpose(2, 1, 0)))
    image.SetSpacing(_to_buffer(spacing, axes))
    image.SetOrigin(tuple(float(o) for o in origin))
    image.SetDirection(direction_from_axes(axes))
    try:
        sitk.WriteImage(image, str(path), useCompression=True)
    except RuntimeError as e:
        raise LiTSPreprocessError(
            f"Failed to write image: {path}",
            stage=ProcessingStage.SAVING,
            cause=e,
        ) from e
    logger.debug(f"Saved {buffer.kind.value} image to: {path}")


class Scan:
    """
    One subject's volume and optional segmentation.

    Args:
        volume: Intensity buffer.
        segment: Optional label buffer covering the same physical extent.
            It may be stored in a different axis layout.
        axes: Layout of the volume.
        segment_axes: Layout of the segment (defaults to ``axes``).
        spacing: Voxel spacing along the volume's buffer axes 0, 1, 2.
        origin: Physical position of volume voxel [0, 0, 0].
        segment_origin: Physical position of segment voxel [0, 0, 0]
            (defaults to ``origin``).
        name: Identifier used in log messages.
    """

    def __init__(
        self,
        volume: VoxelBuffer,
        segment: Optional[VoxelBuffer] = None,
        axes: AxisSpec = HOME_AXES,
        segment_axes: Optional[AxisSpec] = None,
        spacing: Vector3 = (1.0, 1.0, 1.0),
        origin: Vector3 = (0.0, 0.0, 0.0),
        segment_origin: Optional[Vector3] = None,
        name: str = "scan",
    ) -> None:
        if volume is None:
            raise PreconditionViolation(f"Scan {name} has no volume")

        self._volume = volume
        self._segment = segment
        self._axes = axes
        self._segment_axes = segment_axes or axes
        self._spacing = _to_canonical(spacing, axes)
        self._origin = tuple(float(o) for o in origin)
        self._segment_origin = tuple(
            float(o) for o in (segment_origin if segment_origin is not None else origin)
        )
        self.name = name

        self._check_extents(volume, axes, segment, self._segment_axes)

    @staticmethod
    def _check_extents(
        volume: VoxelBuffer,
        axes: AxisSpec,
        segment: Optional[VoxelBuffer],
        segment_axes: AxisSpec,
    ) -> None:
        """Volume and segment must cover the same canonical extent."""
        if segment is None:
            return
        volume_extent = _canonical_extent(volume, axes)
        segment_extent = _canonical_extent(segment, segment_axes)
        if volume_extent != segment_extent:
            raise PreconditionViolation(
                f"Segment shape {segment.shape} (axes {segment_axes.to_dict()}) "
                f"does not match volume shape {volume.shape} (axes {axes.to_dict()})"
            )

    @classmethod
    def from_arrays(
        cls,
        volume: np.ndarray,
        segment: Optional[np.ndarray] = None,
        axes: AxisSpec = HOME_AXES,
        name: str = "scan",
        spacing: Vector3 = (1.0, 1.0, 1.0),
        origin: Vector3 = (0.0, 0.0, 0.0),
    ) -> "Scan":
        """Build a scan from arrays indexed [x, y, z]."""
        return cls(
            volume=VoxelBuffer.volume(volume),
            segment=VoxelBuffer.segment(segment) if segment is not None else None,
            axes=axes,
            spacing=spacing,
            origin=origin,
            name=name,
        )

    @classmethod
    def load(
        cls,
        volume_path: Union[Path, str],
        segment_path: Optional[Union[Path, str]] = None,
    ) -> "Scan":
        """
        Load a scan from NIfTI (or any format SimpleITK reads).

        Args:
            volume_path: Path to the volume image.
            segment_path: Optional path to the segmentation image.

        Returns:
            Scan whose axes are derived from the image direction.

        Raises:
            FileNotFoundError: If a file does not exist.
            LiTSPreprocessError: If SimpleITK cannot read a file.
        """
        volume_path = Path(volume_path)
        volume, image = _read_buffer(volume_path, BufferKind.INTENSITY)
        axes = axes_from_direction(image.GetDirection())

        segment = None
        segment_axes = None
        segment_origin = None
        if segment_path is not None:
            segment, segment_image = _read_buffer(Path(segment_path), BufferKind.LABEL)
            segment_axes = axes_from_direction(segment_image.GetDirection())
            segment_origin = segment_image.GetOrigin()

        name = volume_path.name.split(".")[0]
        logger.info(f"Loaded scan {name}: shape={volume.shape} axes={axes.to_dict()}")

        return cls(
            volume=volume,
            segment=segment,
            axes=axes,
            segment_axes=segment_axes,
            spacing=image.GetSpacing(),
            origin=image.GetOrigin(),
            segment_origin=segment_origin,
            name=name,
        )

    def save(
        self,
        volume_path: Union[Path, str],
        segment_path: Optional[Union[Path, str]] = None,
    ) -> None:
        """
        Write the volume (and the segment, when both exist) to disk.

        Each image gets the direction matrix of its recorded layout, its
        own origin and the spacing reordered to its buffer axes.
        """
        _write_buffer(
            self._volume, Path(volume_path), self._axes, self._spacing, self._origin
        )
        if segment_path is not None:
            if self._segment is None:
                raise PreconditionViolation(f"Scan {self.name} has no segment to save")
            _write_buffer(
                self._segment,
                Path(segment_path),
                self._segment_axes,
                self._spacing,
                self._segment_origin,
            )

    @property
    def spacing(self) -> Vector3:
        """Voxel spacing along the volume's buffer axes 0, 1, 2."""
        return _to_buffer(self._spacing, self._axes)

    @property
    def origin(self) -> Vector3:
        """Physical position of volume voxel [0, 0, 0]."""
        return self._origin

    @property
    def segment_origin(self) -> Vector3:
        """Physical position of segment voxel [0, 0, 0]."""
        return self._segment_origin

    def get_volume(self) -> VoxelBuffer:
        return self._volume

    def set_volume(self, volume: VoxelBuffer, axes: Optional[AxisSpec] = None) -> None:
        """
        Replace the volume, optionally recording its new layout.

        When ``axes`` changes the sign of a trusted axis the buffer is taken
        to be flipped along it and the origin moves to the former last voxel.
        """
        if volume.kind != BufferKind.INTENSITY:
            raise PreconditionViolation("Volume must be an intensity buffer")
        axes = axes or self._axes
        self._check_extents(volume, axes, self._segment, self._segment_axes)

        self._origin = _flipped_origin(
            self._origin, self._volume, self._axes, axes, self._spacing
        )
        self._volume = volume
        self._axes = axes

    def get_segment(self) -> Optional[VoxelBuffer]:
        return self._segment

    def set_segment(self, segment: VoxelBuffer, axes: Optional[AxisSpec] = None) -> None:
        """Replace the segment, optionally recording its new layout."""
        if segment.kind != BufferKind.LABEL:
            raise PreconditionViolation("Segment must be a label buffer")
        axes = axes or self._segment_axes
        self._check_extents(self._volume, self._axes, segment, axes)

        if self._segment is not None:
            self._segment_origin = _flipped_origin(
                self._segment_origin, self._segment, self._segment_axes, axes, self._spacing
            )
        self._segment = segment
        self._segment_axes = axes

    @property
    def has_segment(self) -> bool:
        return self._segment is not None

    def get_axes(self) -> AxisSpec:
        """Current layout of the volume."""
        return self._axes

    def get_segment_axes(self) -> AxisSpec:
        """Current layout of the segment."""
        return self._segment_axes

    def get_width(self) -> int:
        return self._volume.width

    def get_height(self) -> int:
        return self._volume.height

    def get_depth(self) -> int:
        return self._volume.depth

    def __repr__(self) -> str:
        return (
            f"Scan(name={self.name}, shape={self._volume.shape}, "
            f"segment={self.has_segment}, axes={self._axes.to_dict()})"
        )
