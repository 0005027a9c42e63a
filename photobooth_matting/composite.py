from __future__ import annotations

import numpy as np

from .config import PNG_COMPRESSION_LEVEL
from .errors import InvalidImageError, UnsupportedFormatError
from .io import check_raster, encode_png


def inject_alpha(rgb: np.ndarray, alpha: np.ndarray) -> np.ndarray:
    """
    Pixel-for-pixel copy of the RGB channels plus uint8 alpha as the 4th channel.

    An existing alpha channel on the input is replaced.
    """
    check_raster(rgb)
    if alpha.ndim != 2 or alpha.shape[:2] != rgb.shape[:2]:
        raise InvalidImageError(f"Alpha shape {alpha.shape} does not match RGB {rgb.shape[:2]}")
    if alpha.dtype != np.uint8:
        raise UnsupportedFormatError(f"Expected uint8 alpha, got {alpha.dtype}")
    return np.dstack([rgb[..., :3], alpha])


def encode_rgba_png(rgba: np.ndarray, compress_level: int = PNG_COMPRESSION_LEVEL) -> bytes:
    """
    Lossless RGBA PNG bytes.
    """
    check_raster(rgba)
    if rgba.shape[2] != 4:
        raise UnsupportedFormatError(f"Expected RGBA image (H,W,4), got {rgba.shape}")
    return encode_png(rgba, compress_level=compress_level)
