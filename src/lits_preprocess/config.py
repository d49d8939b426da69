"""
Configuration System Module for LiTS Preprocess.

This module provides a YAML-based configuration system for the scan
preprocessing parameters, so the same settings can be reused across
training, validation and inference runs.

Configurable items:
- Intensity window and output range
- Home axis layout
- Median filter kernel size
- Execution path (SimpleITK toolkit or accelerated kernels)
- Logging level and destinations
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from lits_preprocess.axes import AxisSpec
from lits_preprocess.backends import ExecutionPath
from lits_preprocess.intensity import IntensityWindow
from lits_preprocess.logging_utils import ConfigurationError, LogLevel
from lits_preprocess.processor import ProcessorConfig

# Configure module logger
logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "LITS_PREPROCESS_CONFIG"


@dataclass
class IntensitySettings:
    """Intensity window configuration settings."""

    lower_threshold: float = -200.0
    upper_threshold: float = 200.0
    output_min: float = 0.0
    output_max: float = 255.0

    def to_intensity_window(self) -> IntensityWindow:
        """Convert to IntensityWindow (validated)."""
        return IntensityWindow(
            lower_threshold=self.lower_threshold,
            upper_threshold=self.upper_threshold,
            output_min=self.output_min,
            output_max=self.output_max,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "lower_threshold": self.lower_threshold,
            "upper_threshold": self.upper_threshold,
            "output_min": self.output_min,
            "output_max": self.output_max,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IntensitySettings":
        """Create from dictionary."""
        return cls(
            lower_threshold=data.get("lower_threshold", -200.0),
            upper_threshold=data.get("upper_threshold", 200.0),
            output_min=data.get("output_min", 0.0),
            output_max=data.get("output_max", 255.0),
        )


@dataclass
class OrientationSettings:
    """Home axis layout settings."""

    home_order: List[int] = field(default_factory=lambda: [0, 1, 2])
    home_sign: List[int] = field(default_factory=lambda: [1, 1, 1])

    def to_axis_spec(self) -> AxisSpec:
        """Convert to AxisSpec (validated)."""
        return AxisSpec(order=tuple(self.home_order), sign=tuple(self.home_sign))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "home_order": list(self.home_order),
            "home_sign": list(self.home_sign),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrientationSettings":
        """Create from dictionary."""
        return cls(
            home_order=list(data.get("home_order", [0, 1, 2])),
            home_sign=list(data.get("home_sign", [1, 1, 1])),
        )


@dataclass
class FilterSettings:
    """Median filter settings."""

    median_kernel_size: int = 3

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {"median_kernel_size": self.median_kernel_size}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FilterSettings":
        """Create from dictionary."""
        return cls(median_kernel_size=data.get("median_kernel_size", 3))


@dataclass
class ExecutionSettings:
    """Execution path settings."""

    path: str = "generic_toolkit"
    use_gpu: bool = True

    def get_execution_path(self) -> ExecutionPath:
        """Get ExecutionPath enum (raises ConfigurationError if unknown)."""
        return ExecutionPath.parse(self.path)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {"path": self.path, "use_gpu": self.use_gpu}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionSettings":
        """Create from dictionary."""
        return cls(
            path=data.get("path", "generic_toolkit"),
            use_gpu=data.get("use_gpu", True),
        )


@dataclass
class LoggingSettings:
    """Logging configuration settings."""

    level: str = "info"
    log_to_console: bool = True
    log_file: Optional[str] = None

    def get_log_level(self) -> int:
        """Get logging module level."""
        return LogLevel(self.level).to_logging_level()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "level": self.level,
            "log_to_console": self.log_to_console,
            "log_file": self.log_file,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingSettings":
        """Create from dictionary."""
        return cls(
            level=data.get("level", "info"),
            log_to_console=data.get("log_to_console", True),
            log_file=data.get("log_file"),
        )


@dataclass
class Config:
    """
    Complete configuration for LiTS Preprocess.

    Sections:
    - intensity: Input window and output range
    - orientation: Home axis layout
    - filter: Median kernel size
    - execution: Toolkit or accelerated path
    - logging: Log level and output settings

    Example YAML:
    ```yaml
    intensity:
      lower_threshold: -200
      upper_threshold: 200
      output_min: 0
      output_max: 255
    execution:
      path: accelerated
    logging:
      level: info
    ```
    """

    intensity: IntensitySettings = field(default_factory=IntensitySettings)
    orientation: OrientationSettings = field(default_factory=OrientationSettings)
    filter: FilterSettings = field(default_factory=FilterSettings)
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "intensity": self.intensity.to_dict(),
            "orientation": self.orientation.to_dict(),
            "filter": self.filter.to_dict(),
            "execution": self.execution.to_dict(),
            "logging": self.logging.to_dict(),
        }

    def to_yaml(self, indent: int = 2) -> str:
        """Convert to YAML string."""
        return yaml.dump(
            self.to_dict(),
            default_flow_style=False,
            indent=indent,
            sort_keys=False,
            allow_unicode=True,
        )

    def save(self, file_path: Union[Path, str]) -> None:
        """
        Save configuration to YAML file.

        Args:
            file_path: Path to save configuration.
        """
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, "w", encoding="utf-8") as f:
            f.write(self.to_yaml())

        logger.info(f"Saved configuration to: {file_path}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        return cls(
            intensity=IntensitySettings.from_dict(data.get("intensity", {})),
            orientation=OrientationSettings.from_dict(data.get("orientation", {})),
            filter=FilterSettings.from_dict(data.get("filter", {})),
            execution=ExecutionSettings.from_dict(data.get("execution", {})),
            logging=LoggingSettings.from_dict(data.get("logging", {})),
        )

    @classmethod
    def from_yaml(cls, yaml_string: str) -> "Config":
        """
        Create Config from YAML string.

        Args:
            yaml_string: YAML configuration string.

        Returns:
            Config instance.
        """
        data = yaml.safe_load(yaml_string) or {}
        return cls.from_dict(data)

    @classmethod
    def load(cls, file_path: Union[Path, str]) -> "Config":
        """
        Load configuration from YAML file.

        Args:
            file_path: Path to YAML configuration file.

        Returns:
            Config instance.

        Raises:
            FileNotFoundError: If file does not exist.
            yaml.YAMLError: If file is not valid YAML.
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        with open(file_path, "r", encoding="utf-8") as f:
            content = f.read()

        config = cls.from_yaml(content)
        logger.info(f"Loaded configuration from: {file_path}")

        return config

    @classmethod
    def default(cls) -> "Config":
        """
        Create default configuration.

        Defaults: liver window [-200, 200] HU mapped onto [0, 255], home
        layout, 3x3 median, SimpleITK toolkit path, info-level logging.
        """
        return cls()

    def validate(self) -> List[str]:
        """
        Validate configuration settings.

        Returns:
            List of validation error messages (empty if valid).
        """
        errors = []

        for name, check in (
            ("intensity", self.intensity.to_intensity_window),
            ("orientation", self.orientation.to_axis_spec),
            ("execution", self.execution.get_execution_path),
        ):
            try:
                check()
            except ConfigurationError as e:
                errors.append(f"{name}: {e.message}")
            except (TypeError, ValueError) as e:
                errors.append(f"{name}: {e}")

        k = self.filter.median_kernel_size
        if isinstance(k, bool) or not isinstance(k, int) or k < 1 or k % 2 == 0:
            errors.append(f"filter: median_kernel_size must be an odd integer >= 1, got {k!r}")

        valid_levels = [level.value for level in LogLevel]
        if self.logging.level not in valid_levels:
            errors.append(
                f"Invalid logging level: {self.logging.level}. "
                f"Must be one of: {valid_levels}"
            )

        return errors

    def is_valid(self) -> bool:
        """Check if configuration is valid."""
        return len(self.validate()) == 0

    def to_processor_config(self) -> ProcessorConfig:
        """
        Convert to ProcessorConfig.

        Raises:
            ConfigurationError: If any section is invalid.
        """
        errors = self.validate()
        if errors:
            raise ConfigurationError("Invalid configuration: " + "; ".join(errors))

        return ProcessorConfig(
            window=self.intensity.to_intensity_window(),
            execution_path=self.execution.get_execution_path(),
            use_gpu=self.execution.use_gpu,
            home_axes=self.orientation.to_axis_spec(),
            median_kernel_size=self.filter.median_kernel_size,
        )


def load_config(file_path: Optional[Union[Path, str]] = None) -> Config:
    """
    Load configuration from file or return default.

    This is a convenience function that:
    1. If file_path is provided, loads from that file
    2. If LITS_PREPROCESS_CONFIG env var is set, loads from that path
    3. Otherwise returns default configuration

    Args:
        file_path: Optional path to configuration file.

    Returns:
        Config instance.
    """
    if file_path is not None:
        return Config.load(file_path)

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Config.load(env_path)

    return Config.default()


# YAML configuration template with comments
CONFIG_TEMPLATE = """# LiTS Preprocess Configuration
# =============================
# This file configures CT volume normalization and reorientation.

# Intensity Settings
# ------------------
intensity:
  # Input window in HU; values outside are clamped
  lower_threshold: -200
  upper_threshold: 200
  # Output range the window is mapped onto
  output_min: 0
  output_max: 255

# Orientation Settings
# --------------------
orientation:
  # Buffer axis holding each canonical axis
  home_order: [0, 1, 2]
  # Direction of each canonical axis (+1 or -1)
  home_sign: [1, 1, 1]

# Filter Settings
# ---------------
filter:
  # Odd size of the per-slice square median kernel
  median_kernel_size: 3

# Execution Settings
# ------------------
execution:
  # "generic_toolkit" (alias "itk") or "accelerated" (alias "cuda")
  path: generic_toolkit
  # Let the accelerated path use a CUDA device when CuPy finds one
  use_gpu: true

# Logging Settings
# ----------------
logging:
  # Log level: "debug", "info", "warning", "error", "critical"
  level: info
  log_to_console: true
  # Optional log file path
  log_file: null
"""


def create_config_template(output_path: Union[Path, str]) -> None:
    """
    Create a configuration template with comments.

    Args:
        output_path: Path to write the template.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        f.write(CONFIG_TEMPLATE)

    logger.info(f"Created configuration template: {output_path}")
