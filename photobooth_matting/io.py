from __future__ import annotations

import io
from pathlib import Path

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import InvalidImageError, UnsupportedFormatError

# Pillow modes that convert losslessly (or by design, for palettes / CMYK) to 8-bit RGB(A).
_RGB_MODES = {"1", "L", "P", "RGB", "CMYK", "YCbCr"}
_RGBA_MODES = {"LA", "PA", "RGBA", "RGBa"}
# Single-channel 16-bit greyscale (PNG opens as I;16 or I depending on the Pillow version).
_GRAY16_MODES = {"I", "I;16", "I;16B", "I;16L", "I;16N"}


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in _RGBA_MODES or (img.mode == "P" and "transparency" in img.info)


def _gray16_to_l(img: Image.Image) -> Image.Image:
    # Keep the high byte: 0..65535 -> 0..255.
    wide = np.clip(np.asarray(img), 0, 65535).astype(np.uint16)
    return Image.fromarray((wide >> 8).astype(np.uint8))


def to_array(img: Image.Image) -> np.ndarray:
    """
    Convert a decoded PIL image to uint8 ndarray of shape (H, W, 3) or (H, W, 4).
    """
    if img.mode in _GRAY16_MODES:
        img = _gray16_to_l(img)
    if img.mode not in _RGB_MODES and img.mode not in _RGBA_MODES:
        raise UnsupportedFormatError(f"Unsupported pixel format: {img.mode}")
    w, h = img.size
    if w < 1 or h < 1:
        raise InvalidImageError(f"Invalid image size: {(w, h)}")
    img = img.convert("RGBA" if _has_alpha(img) else "RGB")
    return np.array(img, dtype=np.uint8)


def from_array(arr: np.ndarray) -> Image.Image:
    check_raster(arr)
    return Image.fromarray(np.ascontiguousarray(arr))


def check_raster(arr: np.ndarray) -> None:
    """
    Validate the (H, W, C) uint8 layout every stage expects.
    """
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        raise UnsupportedFormatError(f"Expected RGB/RGBA image (H,W,3|4), got shape={arr.shape}")
    if arr.shape[0] < 1 or arr.shape[1] < 1:
        raise InvalidImageError(f"Invalid image size: {arr.shape[:2]}")
    if arr.dtype != np.uint8:
        raise UnsupportedFormatError(f"Expected uint8 pixels, got {arr.dtype}")


def decode_image(data: bytes) -> np.ndarray:
    """
    Decode encoded image bytes (PNG, JPEG, WebP, ...) to an RGB or RGBA ndarray.

    EXIF orientation is applied so the pixels match what a browser displays.
    """
    if not data:
        raise InvalidImageError("Empty image payload.")
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidImageError(f"Could not decode image: {e}") from e
    img = ImageOps.exif_transpose(img)
    return to_array(img)


def load_image(path: str | Path) -> np.ndarray:
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Could not read image: {p}")
    return decode_image(p.read_bytes())


def fit_cover(img: np.ndarray, width: int, height: int) -> np.ndarray:
    """
    Aspect-preserving "cover" resize: scale to fill (width, height), then center-crop
    the overflow. Lanczos resampling; channel count is preserved.
    """
    check_raster(img)
    if width < 1 or height < 1:
        raise InvalidImageError(f"Invalid target size: {(width, height)}")
    pil = from_array(img)
    fitted = ImageOps.fit(pil, (width, height), method=Image.Resampling.LANCZOS, centering=(0.5, 0.5))
    return np.array(fitted, dtype=np.uint8)


def extract_region(img: np.ndarray, x: int, y: int, width: int, height: int) -> np.ndarray:
    """Pixel-region copy; the caller is responsible for bounds."""
    return img[y : y + height, x : x + width].copy()


def encode_png(img: np.ndarray, compress_level: int = 6) -> bytes:
    """
    Deterministic PNG encoding. compress_level is a speed/size tradeoff only.
    """
    buf = io.BytesIO()
    from_array(img).save(buf, format="PNG", compress_level=int(compress_level), optimize=False)
    return buf.getvalue()


def save_png(data: bytes, path: str | Path) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(data)
