"""Tests for the luma waveform and RGB parade scopes."""

import math

import numpy as np
import pytest

from scopes.image import Image
from scopes.waveform import (
    LEVELS,
    Parade,
    Waveform,
    WaveformMode,
    compute_luma_waveform,
    compute_parade,
    _accumulate,
    compute_waveform,
)

pytestmark = pytest.mark.smoke


def _column_ramp(width: int, height: int) -> Image:
    """R = G = B = column index scaled across 0..255."""
    frame = np.zeros((height, width, 4), dtype=np.uint8)
    values = np.linspace(0, 255, width).astype(np.uint8)
    frame[:, :, :3] = values[None, :, None]
    return Image.from_array(frame)


class TestLumaWaveform:
    def test_grid_shape(self, random_image):
        result = compute_luma_waveform(random_image)
        assert result.width == random_image.width
        assert result.height == LEVELS
        assert result.data.shape == (random_image.width * LEVELS,)
        assert result.data.dtype == np.uint32

    def test_sum_equals_pixel_count(self, random_image):
        result = compute_luma_waveform(random_image)
        assert int(result.data.sum()) == random_image.pixel_count

    def test_single_white_pixel_on_top_row(self, solid_image):
        """Level 255 is row 0."""
        result = compute_luma_waveform(solid_image((255, 255, 255), width=1, height=1))
        assert result.data[0] == 1
        assert int(result.data.sum()) == 1
        assert result.cell(0, 255) == 1

    def test_single_black_pixel_on_bottom_row(self, solid_image):
        result = compute_luma_waveform(solid_image((0, 0, 0), width=1, height=1))
        assert result.data[255] == 1

    def test_counts_stay_in_their_column(self):
        image = _column_ramp(width=4, height=3)
        result = compute_luma_waveform(image)
        grid = result.data.reshape(LEVELS, 4)
        for x in range(4):
            assert int(grid[:, x].sum()) == 3

    def test_rec709_weights_rounded_half_up(self, solid_image):
        # 0.2126 * 255 = 54.213 -> 54
        result = compute_luma_waveform(solid_image((255, 0, 0), width=1, height=1))
        assert result.cell(0, 54) == 1
        # 0.7152 * 255 = 182.376 -> 182
        result = compute_luma_waveform(solid_image((0, 255, 0), width=1, height=1))
        assert result.cell(0, 182) == 1

    def test_matches_per_pixel_formula(self, random_image):
        frame = random_image.as_array()
        expected = np.zeros((LEVELS, random_image.width), dtype=np.int64)
        for row in frame:
            for x, px in enumerate(row):
                r, g, b = float(px[0]), float(px[1]), float(px[2])
                level = math.floor(0.2126 * r + 0.7152 * g + 0.0722 * b + 0.5)
                expected[255 - level, x] += 1
        result = compute_luma_waveform(random_image)
        np.testing.assert_array_equal(result.data.reshape(LEVELS, -1), expected)

    def test_to_dict(self, solid_image):
        data = compute_luma_waveform(solid_image((255, 255, 255), 1, 1)).to_dict()
        assert data["mode"] == "luma"
        assert data["width"] == 1
        assert data["height"] == 256
        assert len(data["data"]) == 256
        assert data["data"][0] == 1


class TestParade:
    def test_three_grids_same_geometry(self, random_image):
        result = compute_parade(random_image)
        for grid in (result.r, result.g, result.b):
            assert grid.shape == (random_image.width * LEVELS,)
            assert grid.dtype == np.uint32

    def test_each_grid_sums_to_pixel_count(self, random_image):
        result = compute_parade(random_image)
        for grid in (result.r, result.g, result.b):
            assert int(grid.sum()) == random_image.pixel_count

    def test_raw_samples_no_luma_mixing(self, solid_image):
        result = compute_parade(solid_image((255, 128, 0), width=1, height=1))
        assert result.r[255 - 255] == 1
        assert result.g[255 - 128] == 1
        assert result.b[255 - 0] == 1

    def test_column_placement(self):
        frame = np.zeros((2, 3, 4), dtype=np.uint8)
        frame[:, 0, 0] = 0
        frame[:, 1, 0] = 128
        frame[:, 2, 0] = 255
        result = compute_parade(Image.from_array(frame))
        width = 3
        assert result.r[(255 - 0) * width + 0] == 2
        assert result.r[(255 - 128) * width + 1] == 2
        assert result.r[(255 - 255) * width + 2] == 2

    def test_to_dict(self, random_image):
        data = compute_parade(random_image).to_dict()
        assert data["mode"] == "parade"
        assert data["height"] == 256
        for key in ("r", "g", "b"):
            assert len(data[key]) == random_image.width * 256


def test_default_mode_is_parade(random_image):
    assert isinstance(compute_waveform(random_image), Parade)


def test_luma_mode(random_image):
    assert isinstance(compute_waveform(random_image, WaveformMode.LUMA), Waveform)


def test_idempotent(random_image):
    a = compute_parade(random_image)
    b = compute_parade(random_image)
    np.testing.assert_array_equal(a.r, b.r)
    a = compute_luma_waveform(random_image)
    b = compute_luma_waveform(random_image)
    np.testing.assert_array_equal(a.data, b.data)


def test_out_of_range_levels_dropped():
    levels = np.array([[-1, 256, 0, 255]])
    grid = _accumulate(levels, 4).reshape(LEVELS, 4)
    assert grid.sum() == 2
    # level 255 lands on row 0, level 0 on the bottom row
    assert grid[0].sum() == 1
    assert grid[0, 3] == 1
    assert grid[LEVELS - 1].sum() == 1
    assert grid[LEVELS - 1, 2] == 1
