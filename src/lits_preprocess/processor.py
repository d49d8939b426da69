"""
Processor Module for LiTS Preprocess.

The Processor is the entry point for preparing LiTS scans: it normalizes
voxel intensities, brings volumes and segmentation masks into the home
axis layout and median-filters volume slices.

Operations:
- preprocess: normalize, then reorient volume (and mask) to home
- normalize: intensity re-mapping only
- reorient_volume / reorient_segment: geometry only
- filter_median: per-slice k x k median

Every operation validates its input the same way before handing it to
the configured execution path (SimpleITK toolkit or accelerated
kernels), so both paths fail identically.

Concurrency:
    Operations are synchronous. The configuration is the only mutable
    state; callers must not change it while an operation is running on
    another thread.

Example:
    >>> processor = Processor(ProcessorConfig(execution_path="accelerated"))
    >>> scan = Scan.load("volume-0.nii", "segmentation-0.nii")
    >>> processor.preprocess(scan)
    >>> processor.filter_median(scan, 3)
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

from lits_preprocess.axes import HOME_AXES, AxisSpec, plan_orientation
from lits_preprocess.backends import ExecutionBackend, ExecutionPath, create_backend
from lits_preprocess.buffer import BufferKind, VoxelBuffer
from lits_preprocess.intensity import IntensityWindow
from lits_preprocess.logging_utils import (
    PreconditionViolation,
    ProcessingLogger,
    ProcessingStage,
    setup_logging,
    timed_operation,
)
from lits_preprocess.median import validate_kernel_size
from lits_preprocess.scan import Scan

if TYPE_CHECKING:
    from lits_preprocess.config import Config

# Configure module logger
logger = ProcessingLogger(__name__)


@dataclass
class ProcessorConfig:
    """Complete configuration for a Processor."""

    window: IntensityWindow = field(default_factory=IntensityWindow)
    execution_path: ExecutionPath = ExecutionPath.GENERIC_TOOLKIT
    use_gpu: bool = True
    home_axes: AxisSpec = HOME_AXES
    median_kernel_size: int = 3

    def __post_init__(self) -> None:
        """Validate configuration."""
        self.execution_path = ExecutionPath.parse(self.execution_path)
        validate_kernel_size(self.median_kernel_size)

        if isinstance(self.window, dict):
            self.window = IntensityWindow(**self.window)

        if isinstance(self.home_axes, dict):
            self.home_axes = AxisSpec.from_dict(self.home_axes)

    @property
    def lower_threshold(self) -> float:
        return self.window.lower_threshold

    @property
    def upper_threshold(self) -> float:
        return self.window.upper_threshold

    @property
    def output_min(self) -> float:
        return self.window.output_min

    @property
    def output_max(self) -> float:
        return self.window.output_max


def _require_volume(scan: Scan) -> VoxelBuffer:
    volume = scan.get_volume()
    if volume is None:
        raise PreconditionViolation(f"Scan {scan.name} has no volume")
    if volume.kind != BufferKind.INTENSITY:
        raise PreconditionViolation(f"Scan {scan.name} volume is not an intensity buffer")
    return volume


def _require_segment(scan: Scan) -> VoxelBuffer:
    segment = scan.get_segment()
    if segment is None:
        raise PreconditionViolation(f"Scan {scan.name} has no segment")
    if segment.kind != BufferKind.LABEL:
        raise PreconditionViolation(f"Scan {scan.name} segment is not a label buffer")
    return segment


class Processor:
    """
    Facade over intensity mapping, reorientation and median filtering.

    Args:
        config: Processor configuration. If None, uses defaults.
        backend: Explicit backend; built from ``config`` when omitted.
    """

    def __init__(
        self,
        config: Optional[ProcessorConfig] = None,
        backend: Optional[ExecutionBackend] = None,
    ) -> None:
        self.config = config or ProcessorConfig()
        self.backend = backend or create_backend(
            self.config.execution_path, use_gpu=self.config.use_gpu
        )

    @classmethod
    def from_config(
        cls,
        config: Optional[Union["Config", Path, str]] = None,
        configure_logging: bool = True,
    ) -> "Processor":
        """
        Create a Processor from configuration.

        Args:
            config: Config object, path to a YAML file, or None to use
                ``LITS_PREPROCESS_CONFIG`` / defaults.
            configure_logging: Apply the logging section of the config.

        Returns:
            Configured Processor instance.

        Raises:
            ConfigurationError: If the configuration is invalid.
        """
        from lits_preprocess.config import Config, load_config

        if not isinstance(config, Config):
            config = load_config(config)

        processor_config = config.to_processor_config()

        if configure_logging:
            setup_logging(
                level=config.logging.level,
                log_file=Path(config.logging.log_file) if config.logging.log_file else None,
                log_to_console=config.logging.log_to_console,
            )

        return cls(processor_config)

    @property
    def execution_path(self) -> ExecutionPath:
        return self.backend.path

    @property
    def home_axes(self) -> AxisSpec:
        """Layout that :meth:`preprocess` brings scans into."""
        return self.config.home_axes

    # Configuration mutators

    def set_low_threshold(self, lower: float) -> None:
        """
        Set the lower intensity threshold for subsequent operations.

        The new value is checked against the current upper threshold, so a
        window cannot be moved entirely above its old upper bound one end
        at a time. Use :meth:`set_thresholds` for that.

        Raises:
            ConfigurationError: If ``lower >= upper_threshold``.
        """
        self.set_thresholds(lower, self.config.upper_threshold)

    def set_high_threshold(self, upper: float) -> None:
        """
        Set the upper intensity threshold for subsequent operations.

        Checked against the current lower threshold; see
        :meth:`set_low_threshold`.

        Raises:
            ConfigurationError: If ``upper <= lower_threshold``.
        """
        self.set_thresholds(self.config.lower_threshold, upper)

    def set_thresholds(self, lower: float, upper: float) -> None:
        """
        Set both thresholds at once.

        Raises:
            ConfigurationError: If the resulting window is degenerate or
                inverted. The previous window stays in effect.
        """
        self.config = replace(self.config, window=self.config.window.with_thresholds(lower, upper))
        logger.debug("Updated intensity window", lower=lower, upper=upper)

    def set_output_range(self, output_min: float, output_max: float) -> None:
        """
        Set the output intensity range.

        Raises:
            ConfigurationError: If ``output_min > output_max``.
        """
        self.config = replace(
            self.config,
            window=self.config.window.with_output_range(output_min, output_max),
        )
        logger.debug("Updated output range", output_min=output_min, output_max=output_max)

    # Operations

    def preprocess(self, scan: Scan) -> Scan:
        """
        Normalize intensities, then bring the volume into the home layout.

        A segmentation mask, when present, is reoriented to home as well
        (never intensity-mapped).
        """
        _require_volume(scan)
        if scan.has_segment:
            _require_segment(scan)

        logger.log_scan_start(
            scan.name,
            path=self.execution_path.value,
            segment=scan.has_segment,
        )
        with timed_operation(f"preprocess {scan.name}", logger.logger) as timing:
            self.normalize(scan)
            self.reorient_volume(scan, self.home_axes)
            if scan.has_segment:
                self.reorient_segment(scan, self.home_axes)

        logger.log_scan_complete(scan.name, timing["duration"])
        return scan

    def normalize(self, scan: Scan) -> Scan:
        """Re-map volume intensities with the configured window."""
        volume = _require_volume(scan)
        window = self.config.window

        logger.log_operation(
            "intensity window",
            ProcessingStage.NORMALIZATION,
            scan=scan.name,
            path=self.execution_path.value,
            window=f"[{window.lower_threshold}, {window.upper_threshold}]",
            range=f"[{window.output_min}, {window.output_max}]",
        )
        scan.set_volume(self.backend.normalize(volume, window))
        return scan

    def reorient_volume(self, scan: Scan, desired: AxisSpec) -> Scan:
        """Bring the volume from the scan's layout into ``desired``."""
        volume = _require_volume(scan)
        scan.set_volume(self._reorient(volume, scan.get_axes(), desired, scan.name), desired)
        return scan

    def reorient_segment(self, scan: Scan, desired: AxisSpec) -> Scan:
        """Bring the segmentation mask from the scan's layout into ``desired``."""
        segment = _require_segment(scan)
        scan.set_segment(
            self._reorient(segment, scan.get_segment_axes(), desired, scan.name),
            desired,
        )
        return scan

    def reorient_buffer(
        self,
        buffer: VoxelBuffer,
        current: AxisSpec,
        desired: AxisSpec,
    ) -> VoxelBuffer:
        """Reorient a bare volume or label buffer without a Scan."""
        if buffer is None:
            raise PreconditionViolation("No buffer to reorient")
        return self._reorient(buffer, current, desired, "buffer")

    def filter_median(self, scan: Scan, k: Optional[int] = None) -> Scan:
        """
        Filter each depth slice of the volume with a ``k x k`` median.

        Args:
            scan: Scan whose volume is filtered.
            k: Kernel size; the configured size when omitted.

        Raises:
            ConfigurationError: If ``k`` is even or < 1.
        """
        if k is None:
            k = self.config.median_kernel_size
        validate_kernel_size(k)
        volume = _require_volume(scan)

        logger.log_operation(
            "median filter",
            ProcessingStage.FILTERING,
            scan=scan.name,
            path=self.execution_path.value,
            k=k,
        )
        scan.set_volume(self.backend.median(volume, k))
        return scan

    def _reorient(
        self,
        buffer: VoxelBuffer,
        current: AxisSpec,
        desired: AxisSpec,
        name: str,
    ) -> VoxelBuffer:
        plan = plan_orientation(current, desired)
        if plan.is_identity:
            return buffer

        logger.log_operation(
            "reorientation",
            ProcessingStage.REORIENTATION,
            scan=name,
            kind=buffer.kind.value,
            path=self.execution_path.value,
            permute=plan.needs_permute,
            flip=plan.needs_flip,
        )
        return self.backend.reorient(buffer, plan)

    def __repr__(self) -> str:
        window = self.config.window
        return (
            f"Processor(path={self.execution_path.value}, "
            f"window=[{window.lower_threshold}, {window.upper_threshold}], "
            f"range=[{window.output_min}, {window.output_max}])"
        )
