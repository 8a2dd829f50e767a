"""Pytest configuration and fixtures."""

import numpy as np
import pytest
from PIL import Image

from rastertrace.types import Raster

RED = (255, 0, 0, 255)
BLUE = (0, 0, 255, 255)
WHITE = (255, 255, 255, 255)
BLACK = (0, 0, 0, 255)


def make_raster(pixels: np.ndarray) -> Raster:
    """Wrap an (H, W, 4) uint8 array as a Raster."""
    height, width = pixels.shape[:2]
    return Raster(width, height, pixels)


def filled(height: int, width: int, color) -> np.ndarray:
    """Solid (H, W, 4) image."""
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[:, :] = color
    return pixels


def disk_mask(size: int, radius: float) -> np.ndarray:
    """Boolean disk centered in a size x size grid."""
    yy, xx = np.mgrid[:size, :size]
    center = (size - 1) / 2.0
    return (xx - center) ** 2 + (yy - center) ** 2 <= radius ** 2


@pytest.fixture
def red_square_raster():
    """10x10 transparent raster with a 6x6 red square at (2, 2)."""
    pixels = np.zeros((10, 10, 4), dtype=np.uint8)
    pixels[2:8, 2:8] = RED
    return make_raster(pixels)


@pytest.fixture
def ring_raster():
    """10x10 red raster with a 2x2 blue block at (4, 4)."""
    pixels = filled(10, 10, RED)
    pixels[4:6, 4:6] = BLUE
    return make_raster(pixels)


@pytest.fixture
def disk_raster():
    """32x32 white raster with a black disk of radius 10."""
    pixels = filled(32, 32, WHITE)
    pixels[disk_mask(32, 10)] = BLACK
    return make_raster(pixels)


@pytest.fixture
def noisy_raster():
    """24x24 raster of four horizontal bands with per-pixel color noise."""
    rng = np.random.default_rng(0)
    pixels = filled(24, 24, WHITE).astype(np.int16)
    pixels[:6, :, :3] = (200, 40, 40)
    pixels[6:12, :, :3] = (40, 200, 40)
    pixels[12:18, :, :3] = (40, 40, 200)
    pixels[18:, :, :3] = (220, 220, 60)
    pixels[..., :3] += rng.integers(-12, 13, size=(24, 24, 3))
    return make_raster(np.clip(pixels, 0, 255).astype(np.uint8))


@pytest.fixture
def red_square_png(tmp_path, red_square_raster):
    """Path to a PNG of the red square raster."""
    path = tmp_path / "red_square.png"
    Image.fromarray(np.array(red_square_raster.pixels)).save(path)
    return path
