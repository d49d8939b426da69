"""
Intensity Mapping Module for LiTS Preprocess.

Re-maps CT voxel intensities from an input window onto an output range:

    t   = clamp(v, lower_threshold, upper_threshold)
    out = output_min + (t - lower_threshold) * (output_max - output_min)
                       / (upper_threshold - lower_threshold)
    out = clamp(out, output_min, output_max)

Arithmetic is done in float64 and stored as float32, no integer rounding
(with window [-200, 200] -> [0, 255], a value of 0 maps to 127.5).

The kernel is array-module generic: it runs unchanged on NumPy arrays
and on CuPy device arrays. Label masks never go through this module.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np

from lits_preprocess.gpu_backend import get_array_module
from lits_preprocess.logging_utils import ConfigurationError

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntensityWindow:
    """
    Input window and output range for intensity re-mapping.

    Raises:
        ConfigurationError: If the window is degenerate or inverted
            (``lower_threshold >= upper_threshold``) or the output range is
            inverted (``output_min > output_max``).
    """

    lower_threshold: float = -200.0
    upper_threshold: float = 200.0
    output_min: float = 0.0
    output_max: float = 255.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        for name in ("lower_threshold", "upper_threshold", "output_min", "output_max"):
            value = float(getattr(self, name))
            if not np.isfinite(value):
                raise ConfigurationError(f"{name} must be finite, got {value}")
            object.__setattr__(self, name, value)

        if self.lower_threshold == self.upper_threshold:
            raise ConfigurationError(
                f"Degenerate intensity window: lower_threshold == upper_threshold "
                f"== {self.lower_threshold}"
            )
        if self.lower_threshold > self.upper_threshold:
            raise ConfigurationError(
                f"Inverted intensity window: lower_threshold={self.lower_threshold} "
                f"> upper_threshold={self.upper_threshold}"
            )
        if self.output_min > self.output_max:
            raise ConfigurationError(
                f"Inverted output range: output_min={self.output_min} "
                f"> output_max={self.output_max}"
            )

    @property
    def scale(self) -> float:
        """Output units per input unit."""
        return (self.output_max - self.output_min) / (
            self.upper_threshold - self.lower_threshold
        )

    def with_thresholds(self, lower: float, upper: float) -> "IntensityWindow":
        """Copy with a new input window (validated)."""
        return IntensityWindow(lower, upper, self.output_min, self.output_max)

    def with_output_range(self, output_min: float, output_max: float) -> "IntensityWindow":
        """Copy with a new output range (validated)."""
        return IntensityWindow(
            self.lower_threshold, self.upper_threshold, output_min, output_max
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "lower_threshold": self.lower_threshold,
            "upper_threshold": self.upper_threshold,
            "output_min": self.output_min,
            "output_max": self.output_max,
        }


def map_intensities(data: Any, window: IntensityWindow) -> Any:
    """
    Apply the window re-mapping to every voxel.

    Args:
        data: Intensity array (NumPy or CuPy), any shape.
        window: Validated intensity window.

    Returns:
        New float32 array of the same module and shape.
    """
    xp = get_array_module(data)

    clamped = xp.clip(
        data.astype(xp.float64),
        window.lower_threshold,
        window.upper_threshold,
    )
    mapped = window.output_min + (clamped - window.lower_threshold) * (
        window.output_max - window.output_min
    ) / (window.upper_threshold - window.lower_threshold)
    mapped = xp.clip(mapped, window.output_min, window.output_max)

    return mapped.astype(xp.float32)


def map_value(value: float, window: IntensityWindow) -> float:
    """Scalar version of :func:`map_intensities`, useful for inspection."""
    mapped = map_intensities(np.asarray([value], dtype=np.float32), window)
    return float(mapped[0])
