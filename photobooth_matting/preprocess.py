from __future__ import annotations

import numpy as np

from .config import MODEL_INPUT_SIZE
from .errors import InvalidImageError, ModelContractError
from .io import check_raster, fit_cover


def encode_tensor(img: np.ndarray, target_size: int = MODEL_INPUT_SIZE) -> np.ndarray:
    """
    Cover-fit an RGB(A) uint8 image to (target_size, target_size) and normalize it to
    the float32 NCHW tensor the segmentation model expects: (1, 3, S, S) in [-1, 1].

    Alpha is dropped before normalization. The output is channel-planar (R plane,
    then G, then B); an interleaved buffer would still run but yields a garbage mask.
    """
    check_raster(img)
    if target_size < 1:
        raise InvalidImageError(f"Invalid target size: {target_size}")

    rgb = img[..., :3]
    fitted = fit_cover(np.ascontiguousarray(rgb), target_size, target_size)

    x = fitted.astype(np.float32) / 255.0
    x = (x - 0.5) / 0.5
    x = np.transpose(x, (2, 0, 1))  # CHW
    return np.ascontiguousarray(x[np.newaxis, ...], dtype=np.float32)  # NCHW


def decode_mask(raw_output: np.ndarray, target_size: int = MODEL_INPUT_SIZE) -> np.ndarray:
    """
    Reinterpret the model's raw output as an (S, S) float32 grid.

    Accepts (1,1,S,S), (1,S,S), (S,S) or a flat S*S buffer. Values are not touched;
    clamping belongs to mask refinement.
    """
    out = np.asarray(raw_output, dtype=np.float32)
    if out.size != target_size * target_size:
        raise ModelContractError(
            f"Model output has {out.size} values, expected {target_size}x{target_size} "
            f"(shape={tuple(out.shape)})"
        )
    return out.reshape(target_size, target_size)
