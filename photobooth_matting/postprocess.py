from __future__ import annotations

import math

import cv2
import numpy as np

from .config import FEATHER_RADIUS, MASK_GAMMA, MASK_THRESHOLD
from .errors import InvalidImageError, ModelContractError

# Output rows interpolated per step in remap_mask.
_REMAP_BAND_ROWS = 256


def _round_half_up(x: np.ndarray) -> np.ndarray:
    # np.rint rounds half to even; alpha values are rounded half up.
    return np.floor(x + 0.5)


def refine_mask(mask: np.ndarray, threshold: float = MASK_THRESHOLD, gamma: float = MASK_GAMMA) -> np.ndarray:
    """
    Clamp to [0,1], zero everything below threshold, gamma-correct the rest.

    Monotonic for fixed (threshold, gamma): a larger raw value never maps lower.
    """
    if mask.ndim != 2:
        raise ModelContractError(f"Expected 2D mask, got shape={mask.shape}")
    m = np.clip(mask.astype(np.float32, copy=True), 0.0, 1.0)
    out = np.where(m < np.float32(threshold), np.float32(0.0), np.power(m, np.float32(gamma)))
    return out.astype(np.float32, copy=False)


def remap_mask(mask: np.ndarray, target_width: int, target_height: int) -> np.ndarray:
    """
    Project a square model-space mask back onto the original image grid.

    Geometry:
      scale   = min(W/S, H/S)
      offset  = ((W - S*scale)/2, (H - S*scale)/2)
      mask_xy = ((x - offX)/scale, (y - offY)/scale)

    Target pixels whose mask coordinate lands inside [0, S-1] on both axes are bilinearly
    interpolated; everything else gets alpha 0.

    Returns uint8 alpha of shape (target_height, target_width).
    """
    if mask.ndim != 2 or mask.shape[0] != mask.shape[1]:
        raise ModelContractError(f"Expected square 2D mask, got shape={mask.shape}")
    if target_width < 1 or target_height < 1:
        raise InvalidImageError(f"Invalid target size: {(target_width, target_height)}")

    s = mask.shape[0]
    m = mask.astype(np.float32, copy=False)

    scale = min(target_width / s, target_height / s)
    offset_x = (target_width - s * scale) / 2.0
    offset_y = (target_height - s * scale) / 2.0

    mx = (np.arange(target_width, dtype=np.float64) - offset_x) / scale
    my = (np.arange(target_height, dtype=np.float64) - offset_y) / scale
    # Closed range: a coordinate of exactly S-1 still samples the last row/column.
    valid_x = (mx >= 0) & (mx <= s - 1)
    valid_y = (my >= 0) & (my <= s - 1)

    mx_c = np.clip(mx, 0, s - 1)
    my_c = np.clip(my, 0, s - 1)
    x1 = np.floor(mx_c).astype(np.intp)
    y1 = np.floor(my_c).astype(np.intp)
    x2 = np.minimum(x1 + 1, s - 1)
    y2 = np.minimum(y1 + 1, s - 1)
    fx = (mx_c - x1).astype(np.float32)
    fy = (my_c - y1).astype(np.float32)

    # Bilinear is separable: interpolate along x once per mask row (S, W), then
    # along y a band of output rows at a time so no (H, W) float buffer exists.
    rows = m[:, x1]
    rows *= 1.0 - fx
    right = m[:, x2]
    right *= fx
    rows += right
    del right

    alpha = np.zeros((target_height, target_width), dtype=np.uint8)
    for start in range(0, target_height, _REMAP_BAND_ROWS):
        stop = min(start + _REMAP_BAND_ROWS, target_height)
        band = rows[y1[start:stop]]
        band *= (1.0 - fy[start:stop])[:, None]
        lower = rows[y2[start:stop]]
        lower *= fy[start:stop, None]
        band += lower
        np.clip(band, 0.0, 1.0, out=band)
        band *= 255.0
        alpha[start:stop] = _round_half_up(band)

    alpha[~valid_y, :] = 0
    alpha[:, ~valid_x] = 0
    return alpha


def feather_kernel(radius: float) -> np.ndarray:
    """3x3 weights exp(-d^2 / (2 r^2)); the centre weight is 1."""
    k = np.empty((3, 3), dtype=np.float64)
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            d2 = dx * dx + dy * dy
            k[dy + 1, dx + 1] = 1.0 if d2 == 0 else math.exp(-d2 / (2.0 * radius * radius))
    return k


def feather_alpha(alpha: np.ndarray, radius: float = FEATHER_RADIUS) -> np.ndarray:
    """
    Smooth alpha only where it is partially transparent.

    Pixels at exactly 0 or 255 are left alone; every other pixel becomes the weighted
    mean of its in-bounds 3x3 neighbours, read from the unfeathered input.
    """
    if alpha.ndim != 2:
        raise InvalidImageError(f"Expected 2D alpha, got shape={alpha.shape}")
    out = alpha.astype(np.uint8, copy=True)
    if radius <= 0:
        return out

    edge = (alpha > 0) & (alpha < 255)
    if not edge.any():
        return out

    kernel = feather_kernel(radius)
    a = alpha.astype(np.float64)
    # Zero padding + the same filter over ones gives the in-bounds weight total,
    # so border pixels are normalized over the neighbours that exist.
    weighted = cv2.filter2D(a, cv2.CV_64F, kernel, borderType=cv2.BORDER_CONSTANT)
    weights = cv2.filter2D(np.ones_like(a), cv2.CV_64F, kernel, borderType=cv2.BORDER_CONSTANT)

    smoothed = _round_half_up(weighted / weights)
    out[edge] = np.clip(smoothed[edge], 0, 255).astype(np.uint8)
    return out


def postprocess_mask(
    mask: np.ndarray,
    target_width: int,
    target_height: int,
    *,
    threshold: float = MASK_THRESHOLD,
    gamma: float = MASK_GAMMA,
    feather_radius: float = FEATHER_RADIUS,
) -> np.ndarray:
    """
    Full post-processing:
      - refine (threshold + gamma) in model space
      - remap to original resolution
      - feather partially transparent edges

    Returns uint8 alpha (target_height, target_width).
    """
    refined = refine_mask(mask, threshold=threshold, gamma=gamma)
    alpha = remap_mask(refined, target_width, target_height)
    return feather_alpha(alpha, radius=feather_radius)
