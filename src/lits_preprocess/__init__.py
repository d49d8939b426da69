"""
LiTS Preprocess - CT volume preparation for liver/tumor segmentation.

This package normalizes voxel intensities, brings volumes and
segmentation masks into a canonical axis layout and median-filters
volume slices, using either SimpleITK filters or direct array kernels
(on a CUDA device through CuPy when available).
"""

__version__ = "0.1.0"
__author__ = "LiTS Preprocess Team"

from lits_preprocess.axes import (
    HOME_AXES,
    AxisSpec,
    OrientationPlan,
    axes_from_direction,
    plan_orientation,
)
from lits_preprocess.backends import (
    AcceleratedBackend,
    ExecutionBackend,
    ExecutionPath,
    ToolkitBackend,
    create_backend,
)
from lits_preprocess.buffer import BufferKind, VoxelBuffer
from lits_preprocess.config import (
    Config,
    ExecutionSettings,
    FilterSettings,
    IntensitySettings,
    LoggingSettings,
    OrientationSettings,
    create_config_template,
    load_config,
)
from lits_preprocess.intensity import IntensityWindow, map_intensities
from lits_preprocess.logging_utils import (
    ConfigurationError,
    LiTSPreprocessError,
    LogLevel,
    PreconditionViolation,
    ProcessingLogger,
    ProcessingStage,
    get_logger,
    setup_logging,
    timed_operation,
)
from lits_preprocess.median import median_filter_slices, validate_kernel_size
from lits_preprocess.processor import Processor, ProcessorConfig
from lits_preprocess.scan import Scan, direction_from_axes
from lits_preprocess.transform import apply_plan, reorient_array, reorient_buffer

__all__ = [
    "__version__",
    # Configuration
    "Config",
    "load_config",
    "create_config_template",
    "IntensitySettings",
    "OrientationSettings",
    "FilterSettings",
    "ExecutionSettings",
    "LoggingSettings",
    # Logging and error handling
    "setup_logging",
    "get_logger",
    "ProcessingLogger",
    "ProcessingStage",
    "LogLevel",
    "LiTSPreprocessError",
    "ConfigurationError",
    "PreconditionViolation",
    "timed_operation",
    # Axes and orientation
    "AxisSpec",
    "HOME_AXES",
    "OrientationPlan",
    "plan_orientation",
    "axes_from_direction",
    "direction_from_axes",
    # Buffers and scans
    "VoxelBuffer",
    "BufferKind",
    "Scan",
    # Kernels
    "IntensityWindow",
    "map_intensities",
    "apply_plan",
    "reorient_array",
    "reorient_buffer",
    "median_filter_slices",
    "validate_kernel_size",
    # Execution paths
    "ExecutionPath",
    "ExecutionBackend",
    "ToolkitBackend",
    "AcceleratedBackend",
    "create_backend",
    # Facade
    "Processor",
    "ProcessorConfig",
]
