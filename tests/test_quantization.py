"""Tests for color quantization module."""

import numpy as np
import pytest

from rastertrace.quantization import (
    color_histogram,
    histogram_seeds,
    quantize_colors,
    refine_centroids,
    strided_sample,
)
from rastertrace.types import (
    DegenerateInputError,
    SamplingMode,
    TraceConfig,
)

from conftest import BLUE, RED, WHITE, filled, make_raster


class TestQuantizeColors:
    """Test cases for quantize_colors."""

    def test_exact_palette_for_few_colors(self, red_square_raster):
        """Test that few distinct colors are used as-is."""
        palette = quantize_colors(red_square_raster, TraceConfig(number_of_colors=2))

        assert [e.color for e in palette] == [(0, 0, 0, 0), RED]
        assert palette[0].coverage == pytest.approx(0.64)
        assert palette[1].coverage == pytest.approx(0.36)

    def test_palette_bound(self, noisy_raster):
        """Test that the palette never exceeds number_of_colors."""
        for n in (1, 2, 4, 8):
            palette = quantize_colors(noisy_raster, TraceConfig(number_of_colors=n))
            assert 1 <= len(palette) <= n

    def test_coverage_sums_to_one(self, noisy_raster):
        """Test that coverages partition the image."""
        palette = quantize_colors(noisy_raster, TraceConfig(number_of_colors=6))

        assert sum(e.coverage for e in palette) == pytest.approx(1.0)

    def test_sorted_by_coverage(self, noisy_raster):
        """Test that entries are ordered largest first."""
        palette = quantize_colors(noisy_raster, TraceConfig(number_of_colors=6))
        coverages = [e.coverage for e in palette]

        assert coverages == sorted(coverages, reverse=True)

    def test_noisy_bands_recovered(self, noisy_raster):
        """Test that clustering finds the four band colors."""
        palette = quantize_colors(noisy_raster, TraceConfig(number_of_colors=4))

        assert len(palette) == 4
        for entry in palette:
            assert entry.coverage == pytest.approx(0.25)

    @pytest.mark.parametrize("mode", [SamplingMode.PER_PIXEL, SamplingMode.HISTOGRAM])
    def test_deterministic(self, noisy_raster, mode):
        """Test that repeated runs give identical palettes."""
        config = TraceConfig(number_of_colors=5, color_sampling_mode=mode)

        assert quantize_colors(noisy_raster, config) == quantize_colors(noisy_raster, config)

    def test_fully_transparent(self):
        """Test that an image without opaque pixels is degenerate."""
        raster = make_raster(np.zeros((4, 4, 4), dtype=np.uint8))

        with pytest.raises(DegenerateInputError):
            quantize_colors(raster)

    def test_alpha_threshold(self):
        """Test that faint pixels count as transparent."""
        pixels = filled(4, 4, RED)
        pixels[:2, :, 3] = 10
        raster = make_raster(pixels)

        palette = quantize_colors(raster, TraceConfig(alpha_threshold=10))

        assert [e.color for e in palette] == [(0, 0, 0, 0), RED]
        assert all(e.coverage == pytest.approx(0.5) for e in palette)

    def test_small_colors_merged(self):
        """Test that colors under min_color_ratio are merged away."""
        pixels = filled(10, 10, RED)
        pixels[0, 0] = BLUE

        palette = quantize_colors(make_raster(pixels), TraceConfig(min_color_ratio=0.02))

        assert [e.color for e in palette] == [RED]
        assert palette[0].coverage == pytest.approx(1.0)

    def test_small_colors_kept_without_ratio(self):
        """Test that min_color_ratio 0 keeps every color."""
        pixels = filled(10, 10, RED)
        pixels[0, 0] = BLUE

        palette = quantize_colors(make_raster(pixels), TraceConfig(min_color_ratio=0.0))

        assert [e.color for e in palette] == [RED, BLUE]

    def test_fixed_palette(self):
        """Test that a fixed palette is used and unused entries dropped."""
        pixels = filled(4, 4, WHITE)
        pixels[:, :2] = (10, 10, 10, 255)
        config = TraceConfig(palette=[(0, 0, 0), (255, 255, 255), (255, 0, 0)])

        palette = quantize_colors(make_raster(pixels), config)

        assert sorted(e.color for e in palette) == [(0, 0, 0, 255), (255, 255, 255, 255)]

    def test_small_shape_on_transparent_canvas(self):
        """Test that the last visible color is never merged into transparency."""
        pixels = np.zeros((100, 100, 4), dtype=np.uint8)
        pixels[45:55, 45:55] = RED
        pixels[0, 0] = BLUE

        palette = quantize_colors(make_raster(pixels))

        assert [e.color for e in palette] == [(0, 0, 0, 0), RED]
        assert palette[1].coverage == pytest.approx(0.0101)

    def test_single_color_bound_with_transparency(self, red_square_raster):
        """Test that a one-color palette keeps the visible color."""
        palette = quantize_colors(red_square_raster, TraceConfig(number_of_colors=1))

        assert [e.color for e in palette] == [RED]
        assert palette[0].coverage == pytest.approx(1.0)

    def test_fixed_palette_reserves_transparent(self, red_square_raster):
        """Test that transparent pixels keep their own entry with a fixed palette."""
        config = TraceConfig(palette=[(0, 0, 0), (255, 255, 255)])

        palette = quantize_colors(red_square_raster, config)

        assert [e.color for e in palette] == [(0, 0, 0, 0), (0, 0, 0, 255)]
        assert palette[0].coverage == pytest.approx(0.64)
        assert palette[1].coverage == pytest.approx(0.36)


class TestSeeding:
    """Test cases for seeding helpers."""

    def test_color_histogram(self):
        """Test distinct colors and counts."""
        pixels = filled(2, 3, RED)
        pixels[0, 0] = BLUE

        colors, counts = color_histogram(pixels)

        assert len(colors) == 2
        assert sorted(counts.tolist()) == [1, 5]

    def test_histogram_seeds_prefer_populated_cells(self):
        """Test that the most populated cells seed first."""
        colors = np.array([[250, 0, 0, 255], [0, 0, 250, 255], [0, 250, 0, 255]], dtype=np.uint8)
        counts = np.array([5, 50, 1])

        seeds = histogram_seeds(colors, counts, 2)

        np.testing.assert_array_equal(seeds, [[0, 0, 250, 255], [250, 0, 0, 255]])

    def test_strided_sample(self):
        """Test that sampling caps the number of pixels."""
        pixels = np.arange(400).reshape(100, 4)

        assert len(strided_sample(pixels, 1000)) == 100
        assert len(strided_sample(pixels, 10)) == 10

    def test_refine_zero_cycles_returns_seeds(self):
        """Test that zero cycles keeps the seeds."""
        samples = np.array([[0, 0, 0, 255], [10, 10, 10, 255]], dtype=np.float64)
        seeds = np.array([[1.2, 1.6, 0, 255]])

        np.testing.assert_array_equal(refine_centroids(samples, seeds, 0), [[1, 2, 0, 255]])

    def test_refine_moves_to_mean(self):
        """Test that one Lloyd cycle moves a seed to its cluster mean."""
        samples = np.array([[0, 0, 0, 255], [10, 10, 10, 255]], dtype=np.float64)
        seeds = np.array([[3, 3, 3, 255]], dtype=np.float64)

        np.testing.assert_array_equal(refine_centroids(samples, seeds, 1), [[5, 5, 5, 255]])
