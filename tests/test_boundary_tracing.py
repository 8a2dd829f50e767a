"""Tests for boundary tracing module."""

import numpy as np
import pytest

from rastertrace.boundary_tracing import (
    signed_area,
    trace_layers,
    trace_outline,
    trace_regions,
)
from rastertrace.types import (
    IndexMap,
    InvalidOptionError,
    Palette,
    PaletteEntry,
    TraceConfig,
    TracingFailureError,
)

from conftest import disk_mask


def index_map_from(array) -> IndexMap:
    array = np.asarray(array, dtype=np.int32)
    return IndexMap(array, int(array.max()) + 1)


class TestTraceOutline:
    """Test cases for trace_outline."""

    def test_single_pixel(self):
        """Test the outline of one pixel runs clockwise from its top-left corner."""
        mask = np.zeros((3, 3), dtype=bool)
        mask[1, 1] = True

        outline = trace_outline(mask)

        assert outline.tolist() == [[1, 1], [2, 1], [2, 2], [1, 2]]
        assert signed_area(outline) == pytest.approx(1.0)

    def test_rectangle_points(self):
        """Test that every unit step along the boundary is recorded."""
        mask = np.zeros((4, 5), dtype=bool)
        mask[1:3, 1:4] = True

        outline = trace_outline(mask)

        assert len(outline) == 2 * (3 + 2)
        assert signed_area(outline) == pytest.approx(6.0)

    def test_diagonal_joined_for_8_connectivity(self):
        """Test that the walk passes through a diagonal contact."""
        mask = np.zeros((4, 4), dtype=bool)
        mask[1, 1] = mask[2, 2] = True

        outline = trace_outline(mask, connectivity=8)

        assert len(outline) == 8
        assert signed_area(outline) == pytest.approx(2.0)

    def test_empty_mask(self):
        """Test that an empty mask cannot be traced."""
        with pytest.raises(TracingFailureError):
            trace_outline(np.zeros((3, 3), dtype=bool))

    def test_invalid_connectivity(self):
        """Test that only 4 and 8 are accepted."""
        mask = np.zeros((3, 3), dtype=bool)
        mask[1, 1] = True

        with pytest.raises(InvalidOptionError):
            trace_outline(mask, connectivity=6)


class TestTraceRegions:
    """Test cases for trace_regions."""

    def test_square_region(self):
        """Test a solid square yields one rectangular outer contour."""
        array = np.zeros((10, 10))
        array[2:8, 2:8] = 1

        regions = trace_regions(index_map_from(array), 1)

        assert len(regions) == 1
        region = regions[0]
        assert region.area == 36
        assert region.holes == ()
        assert region.outer[0].tolist() == [2, 2]
        assert region.outer[:, 0].min() == 2 and region.outer[:, 0].max() == 8
        assert region.outer[:, 1].min() == 2 and region.outer[:, 1].max() == 8
        assert signed_area(region.outer) == pytest.approx(36.0)

    def test_region_with_hole(self):
        """Test that an enclosed block becomes a counter-clockwise hole."""
        array = np.zeros((10, 10))
        array[4:6, 4:6] = 1

        regions = trace_regions(index_map_from(array), 0)

        assert len(regions) == 1
        region = regions[0]
        assert region.area == 96
        assert len(region.holes) == 1
        hole = region.holes[0]
        assert hole[0].tolist() == [4, 4]
        assert signed_area(hole) == pytest.approx(-4.0)
        assert signed_area(region.outer) + signed_area(hole) == pytest.approx(96.0)

    def test_connectivity(self):
        """Test diagonal pixels split under 4- and join under 8-connectivity."""
        array = np.zeros((4, 4))
        array[1, 1] = array[2, 2] = 1
        index_map = index_map_from(array)

        assert len(trace_regions(index_map, 1, connectivity=4)) == 2
        joined = trace_regions(index_map, 1, connectivity=8)
        assert len(joined) == 1
        assert joined[0].area == 2

    def test_hole_uses_dual_connectivity(self):
        """Test that holes are labelled with the complementary connectivity."""
        array = np.ones((5, 5))
        array[1:4, 1:4] = 0
        array[0, 0] = 0
        index_map = index_map_from(array)

        # The interior touches the missing corner diagonally
        split = trace_regions(index_map, 1, connectivity=4)
        assert len(split) == 1
        assert split[0].area == 15
        assert split[0].holes == ()

        joined = trace_regions(index_map, 1, connectivity=8)
        assert len(joined) == 1
        assert len(joined[0].holes) == 1
        assert signed_area(joined[0].holes[0]) == pytest.approx(-9.0)

    def test_scan_order(self):
        """Test that regions come out in raster scan order."""
        array = np.zeros((6, 10))
        array[3:5, 1:3] = 1
        array[0:2, 6:9] = 1

        regions = trace_regions(index_map_from(array), 1)

        assert [r.outer[0].tolist() for r in regions] == [[6, 0], [1, 3]]

    def test_area_omission(self):
        """Test that components below the threshold are dropped."""
        array = np.zeros((10, 10))
        array[0:2, 0:2] = 1
        array[5:9, 5:9] = 1

        regions = trace_regions(index_map_from(array), 1, path_omit_threshold=8)

        assert [r.area for r in regions] == [16]

    def test_small_holes_omitted(self):
        """Test that holes below the threshold are dropped."""
        array = np.zeros((10, 10))
        array[4:6, 4:6] = 1

        regions = trace_regions(index_map_from(array), 0, path_omit_threshold=8)

        assert len(regions) == 1
        assert regions[0].holes == ()
        assert regions[0].area == 96

    def test_missing_index(self):
        """Test that an index with no pixels yields no regions."""
        index_map = IndexMap(np.zeros((3, 3), dtype=np.int32), 2)

        assert trace_regions(index_map, 1) == ()

    def test_disk_area(self):
        """Test the area invariant on a curved shape."""
        mask = disk_mask(32, 10)

        regions = trace_regions(index_map_from(mask.astype(int)), 1)

        assert len(regions) == 1
        assert regions[0].area == int(mask.sum())
        assert signed_area(regions[0].outer) == pytest.approx(mask.sum())


class TestTraceLayers:
    """Test cases for trace_layers."""

    def test_transparent_layer_not_traced(self):
        """Test that transparent entries keep an empty slot."""
        array = np.zeros((10, 10))
        array[2:8, 2:8] = 1
        palette = Palette((
            PaletteEntry((0, 0, 0, 0), 0.64),
            PaletteEntry((255, 0, 0, 255), 0.36),
        ))

        layers = trace_layers(index_map_from(array), palette, TraceConfig(path_omit_threshold=0))

        assert [layer.index for layer in layers] == [0, 1]
        assert layers[0].regions == ()
        assert len(layers[1].regions) == 1

    def test_custom_map_fn(self):
        """Test that per-layer tracing goes through the given map function."""
        array = np.zeros((10, 10))
        array[2:8, 2:8] = 1
        palette = Palette((
            PaletteEntry((0, 0, 0, 0), 0.64),
            PaletteEntry((255, 0, 0, 255), 0.36),
        ))
        calls = []

        def recording_map(fn, tasks):
            calls.append([task[1] for task in tasks])
            return map(fn, tasks)

        layers = trace_layers(
            index_map_from(array), palette, TraceConfig(path_omit_threshold=0), recording_map
        )

        assert calls == [[1]]
        assert layers[1].regions[0].area == 36
