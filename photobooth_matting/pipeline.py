from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from .composite import encode_rgba_png, inject_alpha
from .config import GRID_CELL_SIZE, GRID_COLS, GRID_ROWS, PNG_COMPRESSION_LEVEL, MattingConfig
from .grid import compose_grid, split_grid
from .io import check_raster, decode_image, encode_png
from .model import LazyModel, ModelHandle, infer
from .postprocess import postprocess_mask
from .preprocess import decode_mask, encode_tensor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageTimings:
    preprocess_s: float
    inference_s: float
    postprocess_s: float
    composite_s: float
    total_s: float


class BackgroundRemover:
    """
    Single entry point for matting. Owns the model (loaded lazily, exactly once) and
    bounds how many inferences run at the same time.

    Deterministic, linear pipeline per image:
      1) Preprocess (cover-fit + normalize)
      2) Inference
      3) Post-process (refine, remap, feather)
      4) Composite + PNG encode
    """

    def __init__(
        self,
        config: Optional[MattingConfig] = None,
        model: Union[LazyModel, ModelHandle, None] = None,
    ):
        self.config = config or MattingConfig()
        if model is None:
            model = LazyModel(self.config.model_path, fallback_input_size=self.config.model_input_size)
        self._model = model
        self._inference_slots = threading.BoundedSemaphore(self.config.max_concurrent_inferences)

    @property
    def model(self) -> ModelHandle:
        if isinstance(self._model, ModelHandle):
            return self._model
        return self._model.get()

    def matte(self, img: np.ndarray) -> Tuple[np.ndarray, StageTimings]:
        """
        Compute the RGBA cutout of an RGB(A) uint8 image at its native resolution.
        """
        check_raster(img)
        h, w = img.shape[:2]
        handle = self.model
        s = handle.input_size
        t0 = time.perf_counter()

        x = encode_tensor(img, s)
        t1 = time.perf_counter()

        with self._inference_slots:
            raw = infer(handle, x)
        mask = decode_mask(raw, s)
        t2 = time.perf_counter()

        alpha = postprocess_mask(
            mask,
            w,
            h,
            threshold=self.config.mask_threshold,
            gamma=self.config.mask_gamma,
            feather_radius=self.config.feather_radius,
        )
        t3 = time.perf_counter()

        rgba = inject_alpha(img, alpha)
        t4 = time.perf_counter()

        timings = StageTimings(
            preprocess_s=t1 - t0,
            inference_s=t2 - t1,
            postprocess_s=t3 - t2,
            composite_s=t4 - t3,
            total_s=t4 - t0,
        )
        return rgba, timings

    def _encode(self, rgba: np.ndarray) -> Tuple[bytes, float]:
        t0 = time.perf_counter()
        data = encode_rgba_png(rgba, compress_level=self.config.png_compression_level)
        return data, time.perf_counter() - t0

    def remove_background_timed(self, image_bytes: bytes) -> Tuple[bytes, StageTimings]:
        img = decode_image(image_bytes)
        rgba, timings = self.matte(img)
        data, encode_s = self._encode(rgba)
        timings = StageTimings(
            preprocess_s=timings.preprocess_s,
            inference_s=timings.inference_s,
            postprocess_s=timings.postprocess_s,
            composite_s=timings.composite_s + encode_s,
            total_s=timings.total_s + encode_s,
        )
        logger.debug(
            "Matted %dx%d: total=%.3fs (pre=%.3fs inf=%.3fs post=%.3fs comp=%.3fs)",
            img.shape[1],
            img.shape[0],
            timings.total_s,
            timings.preprocess_s,
            timings.inference_s,
            timings.postprocess_s,
            timings.composite_s,
        )
        return data, timings

    def remove_background(self, image_bytes: bytes) -> bytes:
        """
        Encoded image in, RGBA PNG of the same width/height out.
        """
        data, _ = self.remove_background_timed(image_bytes)
        return data

    def remove_background_split_panels(
        self,
        image_bytes: bytes,
        rows: int = GRID_ROWS,
        cols: int = GRID_COLS,
    ) -> List[bytes]:
        """
        Split a generated grid into rows x cols panels and matte each one (row-major).
        """
        canvas = decode_image(image_bytes)
        panels = split_grid(canvas, rows, cols)
        logger.debug("Split %dx%d image into %d panels", canvas.shape[1], canvas.shape[0], len(panels))

        out = []
        for panel in panels:
            rgba, _ = self.matte(panel)
            data, _ = self._encode(rgba)
            out.append(data)
        return out


def compose_grid_png(
    images: Sequence[bytes],
    rows: int = GRID_ROWS,
    cols: int = GRID_COLS,
    cell_size: int = GRID_CELL_SIZE,
    compress_level: int = PNG_COMPRESSION_LEVEL,
) -> bytes:
    """
    Pack encoded reference images into one transparent grid PNG for an image generator.
    """
    decoded = [decode_image(b) for b in images]
    canvas = compose_grid(decoded, rows, cols, cell_size)
    return encode_png(canvas, compress_level=compress_level)
