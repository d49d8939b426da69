"""
Tests for the volume transform module.

These tests verify:
- Layouts are brought back to the canonical arrangement
- Reorientation is a bijection that preserves dtype
- Round trips between arbitrary layouts are lossless
"""

from itertools import permutations, product

import numpy as np
import pytest

from lits_preprocess.axes import HOME_AXES, AxisSpec, plan_orientation
from lits_preprocess.buffer import BufferKind, VoxelBuffer
from lits_preprocess.logging_utils import PreconditionViolation
from lits_preprocess.transform import apply_plan, reorient_array, reorient_buffer

ALL_SPECS = [
    AxisSpec(order=order, sign=sign)
    for order in permutations(range(3))
    for sign in product((1, -1), repeat=3)
]


def lay_out(canonical: np.ndarray, spec: AxisSpec) -> np.ndarray:
    """Store a canonical [x, y, z] array the way ``spec`` describes."""
    index = [slice(None)] * 3
    for axis in (1, 2):
        if spec.sign[axis] == -1:
            index[axis] = slice(None, None, -1)
    return np.ascontiguousarray(canonical[tuple(index)].transpose(spec.inverse_order()))


@pytest.fixture
def canonical():
    """Volume with a distinct value in every voxel and unequal dimensions."""
    return np.arange(4 * 5 * 6, dtype=np.float32).reshape(4, 5, 6)


class TestApplyPlan:
    """Tests for apply_plan."""

    def test_identity_returns_input(self, canonical):
        """Test an identity plan leaves the array alone."""
        plan = plan_orientation(HOME_AXES, HOME_AXES)
        assert apply_plan(canonical, plan) is canonical

    def test_flip_only(self, canonical):
        """Test a single trusted-axis flip."""
        plan = plan_orientation(AxisSpec(sign=(1, 1, -1)), HOME_AXES)
        result = apply_plan(canonical, plan)

        np.testing.assert_array_equal(result, canonical[:, :, ::-1])

    def test_permute_only(self, canonical):
        """Test a pure axis swap."""
        plan = plan_orientation(AxisSpec(order=(1, 0, 2)), HOME_AXES)
        result = apply_plan(canonical, plan)

        assert result.shape == (5, 4, 6)
        np.testing.assert_array_equal(result, canonical.transpose(1, 0, 2))

    def test_result_is_contiguous(self, canonical):
        """Test the output is materialized, not a strided view."""
        plan = plan_orientation(AxisSpec(order=(2, 0, 1), sign=(1, -1, 1)), HOME_AXES)
        result = apply_plan(canonical, plan)

        assert result.flags["C_CONTIGUOUS"]
        assert not np.shares_memory(result, canonical)

    def test_rejects_non_3d(self):
        """Test 2D input is rejected."""
        plan = plan_orientation(AxisSpec(order=(1, 0, 2)), HOME_AXES)
        with pytest.raises(PreconditionViolation, match="3D"):
            apply_plan(np.zeros((3, 3)), plan)


class TestReorientArray:
    """Tests for reorient_array."""

    @pytest.mark.parametrize("spec", ALL_SPECS)
    def test_restores_canonical_layout(self, canonical, spec):
        """Test every layout is brought back to the canonical arrangement."""
        stored = lay_out(canonical, spec)
        result = reorient_array(stored, spec, HOME_AXES)

        np.testing.assert_array_equal(result, canonical)

    @pytest.mark.parametrize("spec", ALL_SPECS)
    def test_round_trip(self, canonical, spec):
        """Test home -> spec -> home is lossless."""
        forward = reorient_array(canonical, HOME_AXES, spec)
        back = reorient_array(forward, spec, HOME_AXES)

        np.testing.assert_array_equal(back, canonical)

    @pytest.mark.parametrize("spec", ALL_SPECS)
    def test_bijection(self, canonical, spec):
        """Test every input voxel lands in exactly one output voxel."""
        result = reorient_array(canonical, spec, HOME_AXES)

        assert result.size == canonical.size
        np.testing.assert_array_equal(np.sort(result, axis=None), canonical.ravel())

    def test_round_trip_between_non_home_layouts(self, canonical):
        """Test round trips where neither end is the home layout."""
        a = AxisSpec(order=(2, 0, 1), sign=(-1, 1, -1))
        b = AxisSpec(order=(1, 2, 0), sign=(1, -1, 1))

        back = reorient_array(reorient_array(canonical, a, b), b, a)

        np.testing.assert_array_equal(back, canonical)

    def test_label_dtype_preserved(self):
        """Test uint8 masks stay uint8 with unchanged values."""
        mask = (np.arange(60).reshape(3, 4, 5) % 3).astype(np.uint8)
        spec = AxisSpec(order=(2, 1, 0), sign=(1, -1, -1))

        result = reorient_array(mask, spec, HOME_AXES)

        assert result.dtype == np.uint8
        assert result.shape == (5, 4, 3)
        assert set(np.unique(result)) == {0, 1, 2}


class TestReorientBuffer:
    """Tests for reorient_buffer."""

    def test_dimensions_follow_permutation(self, canonical):
        """Test width, height and depth are taken from the output array."""
        buffer = VoxelBuffer.volume(canonical)
        result = reorient_buffer(buffer, AxisSpec(order=(2, 0, 1)), HOME_AXES)

        assert result.shape == (6, 4, 5)
        assert result.kind == BufferKind.INTENSITY

    def test_identity_returns_same_buffer(self, canonical):
        """Test nothing is copied when layouts match."""
        buffer = VoxelBuffer.volume(canonical)
        assert reorient_buffer(buffer, HOME_AXES, HOME_AXES) is buffer

    def test_label_buffer(self):
        """Test a label buffer keeps its kind."""
        buffer = VoxelBuffer.segment(np.ones((2, 3, 4)))
        result = reorient_buffer(buffer, AxisSpec(sign=(1, -1, 1)), HOME_AXES)

        assert result.is_label
        assert result.shape == (2, 3, 4)
