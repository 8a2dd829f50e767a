"""Raster image ingestion and preprocessing."""
from pathlib import Path
from typing import Union
import logging

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError
from scipy import ndimage

from rastertrace.types import Raster, InvalidInputError, InvalidOptionError

logger = logging.getLogger(__name__)


def load_raster(path: Union[str, Path]) -> Raster:
    """
    Load an image file as an RGBA raster.

    Args:
        path: Path to image file

    Returns:
        Raster with 8-bit RGBA pixels

    Raises:
        FileNotFoundError: If file doesn't exist
        InvalidInputError: If file cannot be decoded
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Image file not found: {path}")

    if not path.is_file():
        raise InvalidInputError(f"Path is not a file: {path}")

    try:
        with Image.open(path) as img:
            # Apply EXIF orientation transformation to handle rotation
            img = ImageOps.exif_transpose(img)
            if img.mode != 'RGBA':
                img = img.convert('RGBA')
            pixels = np.array(img, dtype=np.uint8)
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidInputError(f"Failed to load image {path}: {e}") from e

    height, width = pixels.shape[:2]
    logger.info(f"Loaded {path.name}: {width}x{height}")
    return Raster(width, height, pixels)


def raster_from_array(image: np.ndarray) -> Raster:
    """
    Create a Raster from a numpy array.

    Args:
        image: (H, W) grayscale, (H, W, 3) RGB or (H, W, 4) RGBA array,
            either uint8 or float in [0, 1]

    Returns:
        Raster
    """
    image = np.asarray(image)

    if image.size == 0:
        raise InvalidInputError("Image array is empty")

    if image.ndim == 2:
        # Grayscale - convert to RGB
        image = np.stack([image] * 3, axis=-1)

    if image.ndim != 3:
        raise InvalidInputError(f"Expected 2D or 3D array, got {image.ndim}D")

    if np.issubdtype(image.dtype, np.floating):
        image = np.clip(np.round(image * 255.0), 0, 255)
    image = image.astype(np.uint8)

    if image.shape[2] == 3:
        alpha = np.full(image.shape[:2] + (1,), 255, dtype=np.uint8)
        image = np.concatenate([image, alpha], axis=2)
    elif image.shape[2] != 4:
        raise InvalidInputError(f"Expected 3 or 4 channels, got {image.shape[2]}")

    height, width = image.shape[:2]
    return Raster(width, height, image)


def selective_blur(raster: Raster, radius: int, delta: float) -> Raster:
    """
    Box blur that leaves strong edges alone.

    A blurred pixel replaces the original only where the summed absolute
    RGBA difference between the two is at most ``delta``.

    Args:
        raster: Input raster
        radius: Blur radius in pixels (0 disables, max 5)
        delta: Maximum summed channel difference to accept the blurred value

    Returns:
        Blurred raster (the input itself when radius is 0)
    """
    if radius < 0 or radius > 5:
        raise InvalidOptionError(f"blur radius must be in 0..5, got {radius}")
    if radius == 0:
        return raster

    pixels = raster.pixels.astype(np.float64)
    size = 2 * radius + 1
    blurred = ndimage.uniform_filter(pixels, size=(size, size, 1), mode='nearest')

    difference = np.abs(blurred - pixels).sum(axis=2)
    keep = difference <= delta
    result = np.where(keep[..., None], np.round(blurred), pixels).astype(np.uint8)

    logger.debug(f"Selective blur r={radius}: {int(keep.sum())} pixels smoothed")
    return Raster(raster.width, raster.height, result)
