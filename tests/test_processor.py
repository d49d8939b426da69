"""
Tests for the processor module.

These tests verify:
- ProcessorConfig validation
- Threshold and output range mutators
- preprocess / normalize / reorient / filter_median on both paths
- Both paths fail identically on invalid input
- Construction from Config objects and YAML files
"""

import logging

import numpy as np
import pytest

from lits_preprocess.axes import HOME_AXES, AxisSpec
from lits_preprocess.backends import AcceleratedBackend, ExecutionPath, ToolkitBackend
from lits_preprocess.buffer import VoxelBuffer
from lits_preprocess.config import Config
from lits_preprocess.intensity import IntensityWindow
from lits_preprocess.logging_utils import ConfigurationError, PreconditionViolation
from lits_preprocess.processor import Processor, ProcessorConfig
from lits_preprocess.scan import Scan

PATHS = ["generic_toolkit", "accelerated"]


def make_processor(path: str, **kwargs) -> Processor:
    return Processor(ProcessorConfig(execution_path=path, use_gpu=False, **kwargs))


@pytest.fixture(params=PATHS)
def processor(request):
    """Processor on each execution path."""
    return make_processor(request.param)


@pytest.fixture
def flipped_scan():
    """Scan stored with axes swapped and the depth axis reversed."""
    rng = np.random.default_rng(7)
    volume = rng.uniform(-400, 400, size=(6, 4, 5)).astype(np.float32)
    segment = (volume > 0).astype(np.uint8)
    axes = AxisSpec(order=(1, 0, 2), sign=(1, 1, -1))
    return Scan.from_arrays(volume, segment, axes=axes, name="volume-1")


class TestProcessorConfig:
    """Tests for ProcessorConfig."""

    def test_defaults(self):
        """Test default configuration."""
        config = ProcessorConfig()
        assert config.execution_path == ExecutionPath.GENERIC_TOOLKIT
        assert config.lower_threshold == -200.0
        assert config.upper_threshold == 200.0
        assert config.output_min == 0.0
        assert config.output_max == 255.0
        assert config.home_axes == HOME_AXES
        assert config.median_kernel_size == 3

    def test_path_alias(self):
        """Test execution path aliases are parsed."""
        assert ProcessorConfig(execution_path="cuda").execution_path == ExecutionPath.ACCELERATED

    def test_unknown_path(self):
        """Test unknown paths fail at construction."""
        with pytest.raises(ConfigurationError):
            ProcessorConfig(execution_path="metal")

    def test_even_kernel(self):
        """Test an even default kernel is rejected."""
        with pytest.raises(ConfigurationError):
            ProcessorConfig(median_kernel_size=4)

    def test_dict_sections(self):
        """Test window and axes can be given as dictionaries."""
        config = ProcessorConfig(
            window={"lower_threshold": -100, "upper_threshold": 300},
            home_axes={"order": [1, 0, 2], "sign": [1, 1, 1]},
        )
        assert config.window == IntensityWindow(-100, 300)
        assert config.home_axes.order == (1, 0, 2)


class TestProcessorConstruction:
    """Tests for building processors."""

    def test_default_backend(self):
        """Test the default processor runs on SimpleITK."""
        processor = Processor()
        assert isinstance(processor.backend, ToolkitBackend)
        assert processor.execution_path == ExecutionPath.GENERIC_TOOLKIT

    def test_accelerated_backend(self):
        """Test the accelerated path builds the accelerated backend."""
        processor = make_processor("accelerated")
        assert isinstance(processor.backend, AcceleratedBackend)

    def test_explicit_backend(self):
        """Test an explicit backend overrides the configured path."""
        processor = Processor(backend=AcceleratedBackend(use_gpu=False))
        assert processor.execution_path == ExecutionPath.ACCELERATED

    def test_repr(self):
        """Test repr shows path and window."""
        text = repr(Processor())
        assert "generic_toolkit" in text
        assert "-200.0" in text


class TestMutators:
    """Tests for threshold and range mutators."""

    def test_set_thresholds(self, processor):
        """Test thresholds are updated for subsequent operations."""
        processor.set_low_threshold(-100)
        processor.set_high_threshold(300)

        assert processor.config.lower_threshold == -100.0
        assert processor.config.upper_threshold == 300.0

    def test_set_both_thresholds(self, processor):
        """Test moving the window past its old bounds in one step."""
        processor.set_thresholds(500, 900)
        assert processor.config.window.lower_threshold == 500.0

    def test_degenerate_window_keeps_previous(self, processor):
        """Test a rejected update leaves the old window in effect."""
        with pytest.raises(ConfigurationError):
            processor.set_low_threshold(200)

        assert processor.config.lower_threshold == -200.0

    def test_inverted_window(self, processor):
        """Test low above high is rejected."""
        with pytest.raises(ConfigurationError):
            processor.set_high_threshold(-500)

    def test_single_end_cannot_pass_other_end(self, processor):
        """Test each single-end setter is checked against the current other end."""
        with pytest.raises(ConfigurationError):
            processor.set_low_threshold(300)

        processor.set_thresholds(300, 600)

        assert processor.config.lower_threshold == 300.0
        assert processor.config.upper_threshold == 600.0

    def test_set_output_range(self, processor):
        """Test the output range can be changed."""
        processor.set_output_range(0, 1)
        scan = Scan.from_arrays(np.full((2, 2, 2), 200.0))

        processor.normalize(scan)

        np.testing.assert_allclose(scan.get_volume().data, 1.0)

    def test_inverted_output_range(self, processor):
        """Test an inverted output range is rejected."""
        with pytest.raises(ConfigurationError):
            processor.set_output_range(10, 0)


class TestNormalize:
    """Tests for Processor.normalize."""

    def test_values(self, processor):
        """Test the documented window examples."""
        data = np.array([-500, -200, 0, 200, 1000], dtype=np.float32).reshape(5, 1, 1)
        scan = Scan.from_arrays(data)

        processor.normalize(scan)

        np.testing.assert_allclose(
            scan.get_volume().data.ravel(),
            [0.0, 0.0, 127.5, 255.0, 255.0],
            atol=1e-3,
        )

    def test_segment_untouched(self, processor, flipped_scan):
        """Test label masks are never intensity-mapped."""
        before = flipped_scan.get_segment().data.copy()
        processor.normalize(flipped_scan)
        np.testing.assert_array_equal(flipped_scan.get_segment().data, before)

    def test_layout_unchanged(self, processor, flipped_scan):
        """Test normalization keeps shape and axes."""
        processor.normalize(flipped_scan)
        assert flipped_scan.get_volume().shape == (6, 4, 5)
        assert flipped_scan.get_axes().order == (1, 0, 2)


class TestReorient:
    """Tests for reorient_volume, reorient_segment and reorient_buffer."""

    def test_reorient_volume(self, processor, flipped_scan):
        """Test the volume is permuted and flipped into the home layout."""
        original = flipped_scan.get_volume().data.copy()

        processor.reorient_volume(flipped_scan, HOME_AXES)

        assert flipped_scan.get_axes() == HOME_AXES
        assert flipped_scan.get_volume().shape == (4, 6, 5)
        np.testing.assert_array_equal(
            flipped_scan.get_volume().data,
            original.transpose(1, 0, 2)[:, :, ::-1],
        )

    def test_reorient_segment(self, processor, flipped_scan):
        """Test the segment is reoriented independently of the volume."""
        original = flipped_scan.get_segment().data.copy()

        processor.reorient_segment(flipped_scan, HOME_AXES)

        assert flipped_scan.get_segment_axes() == HOME_AXES
        assert flipped_scan.get_axes().order == (1, 0, 2)
        assert flipped_scan.get_segment().data.dtype == np.uint8
        np.testing.assert_array_equal(
            flipped_scan.get_segment().data,
            original.transpose(1, 0, 2)[:, :, ::-1],
        )

    def test_reorient_segment_missing(self, processor):
        """Test reorienting a missing segment is a precondition violation."""
        scan = Scan.from_arrays(np.zeros((2, 2, 2)))
        with pytest.raises(PreconditionViolation, match="no segment"):
            processor.reorient_segment(scan, HOME_AXES)

    def test_identity_does_not_copy(self, processor):
        """Test a scan already in the desired layout keeps its buffer."""
        scan = Scan.from_arrays(np.zeros((2, 3, 4)))
        buffer = scan.get_volume()

        processor.reorient_volume(scan, HOME_AXES)

        assert scan.get_volume() is buffer

    def test_axis_zero_sign_ignored(self, processor):
        """Test a reversed left-right axis is recorded but not flipped."""
        data = np.arange(8, dtype=np.float32).reshape(2, 2, 2)
        scan = Scan.from_arrays(data, axes=AxisSpec(sign=(-1, 1, 1)))

        processor.reorient_volume(scan, HOME_AXES)

        np.testing.assert_array_equal(scan.get_volume().data, data)
        assert scan.get_axes() == HOME_AXES

    def test_spacing_follows_permutation(self, processor):
        """Test voxel spacing is reordered with the buffer axes."""
        scan = Scan.from_arrays(
            np.zeros((2, 3, 4), dtype=np.float32),
            axes=AxisSpec(order=(2, 1, 0)),
            spacing=(0.7, 0.8, 5.0),
        )

        processor.reorient_volume(scan, HOME_AXES)

        assert scan.get_volume().shape == (4, 3, 2)
        assert scan.spacing == pytest.approx((5.0, 0.8, 0.7))

    def test_flip_moves_origin(self, processor):
        """Test flipping a trusted axis moves the origin to the former last voxel."""
        scan = Scan.from_arrays(
            np.zeros((3, 4, 5), dtype=np.float32),
            axes=AxisSpec(sign=(1, -1, 1)),
            spacing=(0.7, 0.7, 2.5),
            origin=(10.0, 20.0, 30.0),
        )

        processor.reorient_volume(scan, HOME_AXES)

        assert scan.origin == pytest.approx((10.0, 17.9, 30.0))

    def test_reorient_buffer(self, processor):
        """Test bare buffers can be reoriented without a scan."""
        buffer = VoxelBuffer.segment(np.arange(24).reshape(2, 3, 4) % 2)
        result = processor.reorient_buffer(buffer, AxisSpec(order=(2, 1, 0)), HOME_AXES)

        assert result.shape == (4, 3, 2)
        assert result.is_label

    def test_reorient_buffer_none(self, processor):
        """Test a missing buffer is a precondition violation."""
        with pytest.raises(PreconditionViolation):
            processor.reorient_buffer(None, HOME_AXES, HOME_AXES)


class TestPreprocess:
    """Tests for Processor.preprocess."""

    def test_normalizes_then_reorients(self, processor, flipped_scan):
        """Test the volume ends up mapped and in the home layout."""
        original = flipped_scan.get_volume().data.copy()

        processor.preprocess(flipped_scan)

        expected = np.clip((original + 200.0) * 255.0 / 400.0, 0.0, 255.0)
        expected = expected.transpose(1, 0, 2)[:, :, ::-1]
        np.testing.assert_allclose(flipped_scan.get_volume().data, expected, atol=1e-3)
        assert flipped_scan.get_axes() == HOME_AXES

    def test_segment_follows_volume(self, processor, flipped_scan):
        """Test the mask is brought into the same layout as the volume."""
        processor.preprocess(flipped_scan)

        assert flipped_scan.get_segment_axes() == HOME_AXES
        assert flipped_scan.get_segment().shape == flipped_scan.get_volume().shape

    def test_without_segment(self, processor):
        """Test scans without a mask are preprocessed."""
        scan = Scan.from_arrays(np.zeros((3, 3, 3)), axes=AxisSpec(sign=(1, -1, 1)))
        processor.preprocess(scan)

        assert not scan.has_segment
        np.testing.assert_allclose(scan.get_volume().data, 127.5)

    def test_custom_home(self):
        """Test preprocess targets the configured home layout."""
        home = AxisSpec(order=(2, 1, 0))
        processor = make_processor("accelerated", home_axes=home)
        scan = Scan.from_arrays(np.zeros((2, 3, 4)))

        processor.preprocess(scan)

        assert scan.get_axes() == home
        assert scan.get_volume().shape == (4, 3, 2)

    def test_logs_completion(self, processor, flipped_scan, caplog):
        """Test completion is logged with the scan name."""
        with caplog.at_level(logging.INFO, logger="lits_preprocess"):
            processor.preprocess(flipped_scan)

        assert "volume-1" in caplog.text
        assert "duration=" in caplog.text


class TestFilterMedian:
    """Tests for Processor.filter_median."""

    def test_removes_outlier(self, processor):
        """Test an isolated spike is removed."""
        data = np.zeros((5, 5, 2), dtype=np.float32)
        data[2, 2, 0] = 100.0
        scan = Scan.from_arrays(data)

        processor.filter_median(scan, 3)

        np.testing.assert_array_equal(scan.get_volume().data, 0.0)

    def test_default_kernel(self):
        """Test the configured kernel is used when k is omitted."""
        processor = make_processor("accelerated", median_kernel_size=5)
        data = np.zeros((5, 5, 1), dtype=np.float32)
        data[1:3, 1:3, 0] = 100.0
        scan = Scan.from_arrays(data)

        processor.filter_median(scan)

        # four bright voxels never reach a majority of a 5 x 5 window
        np.testing.assert_array_equal(scan.get_volume().data, 0.0)

    def test_segment_untouched(self, processor, flipped_scan):
        """Test the mask is not filtered."""
        before = flipped_scan.get_segment().data.copy()
        processor.filter_median(flipped_scan, 3)
        np.testing.assert_array_equal(flipped_scan.get_segment().data, before)


class TestFailureParity:
    """Tests that both paths reject the same inputs the same way."""

    @pytest.mark.parametrize("k", [0, 2, -1, 4])
    def test_invalid_kernel(self, k):
        """Test invalid kernels raise ConfigurationError on both paths."""
        messages = []
        for path in PATHS:
            scan = Scan.from_arrays(np.zeros((3, 3, 3)))
            with pytest.raises(ConfigurationError) as excinfo:
                make_processor(path).filter_median(scan, k)
            messages.append(str(excinfo.value))

        assert messages[0] == messages[1]

    def test_invalid_kernel_leaves_scan(self, processor):
        """Test a rejected kernel does not touch the volume."""
        scan = Scan.from_arrays(np.ones((3, 3, 3)))
        buffer = scan.get_volume()

        with pytest.raises(ConfigurationError):
            processor.filter_median(scan, 2)

        assert scan.get_volume() is buffer

    def test_missing_segment(self):
        """Test both paths raise the same precondition violation."""
        messages = []
        for path in PATHS:
            scan = Scan.from_arrays(np.zeros((2, 2, 2)), name="no-mask")
            with pytest.raises(PreconditionViolation) as excinfo:
                make_processor(path).reorient_segment(scan, HOME_AXES)
            messages.append(str(excinfo.value))

        assert messages[0] == messages[1]


class TestFromConfig:
    """Tests for Processor.from_config."""

    def test_from_config_object(self):
        """Test building from a Config object."""
        config = Config.default()
        config.execution.path = "cuda"
        config.execution.use_gpu = False
        config.intensity.lower_threshold = -100

        processor = Processor.from_config(config, configure_logging=False)

        assert processor.execution_path == ExecutionPath.ACCELERATED
        assert processor.config.lower_threshold == -100.0

    def test_from_yaml_file(self, tmp_path):
        """Test building from a YAML file."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "execution:\n"
            "  path: itk\n"
            "filter:\n"
            "  median_kernel_size: 5\n"
        )

        processor = Processor.from_config(path, configure_logging=False)

        assert processor.execution_path == ExecutionPath.GENERIC_TOOLKIT
        assert processor.config.median_kernel_size == 5

    def test_from_env(self, tmp_path, monkeypatch):
        """Test the config path is read from the environment."""
        path = tmp_path / "env.yaml"
        path.write_text("intensity:\n  upper_threshold: 400\n")
        monkeypatch.setenv("LITS_PREPROCESS_CONFIG", str(path))

        processor = Processor.from_config(configure_logging=False)

        assert processor.config.upper_threshold == 400.0

    def test_invalid_config(self):
        """Test invalid settings raise ConfigurationError."""
        config = Config.default()
        config.intensity.lower_threshold = 500

        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            Processor.from_config(config, configure_logging=False)

    def test_configures_logging(self, tmp_path):
        """Test the logging section is applied."""
        config = Config.default()
        config.execution.use_gpu = False
        config.logging.level = "debug"
        config.logging.log_to_console = False
        config.logging.log_file = str(tmp_path / "run.log")

        Processor.from_config(config)

        package_logger = logging.getLogger("lits_preprocess")
        assert package_logger.level == logging.DEBUG
        assert (tmp_path / "run.log").exists()

        for handler in package_logger.handlers:
            handler.close()
        package_logger.handlers.clear()
