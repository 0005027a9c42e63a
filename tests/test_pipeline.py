from __future__ import annotations

import io
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest
from PIL import Image

from photobooth_matting.config import MattingConfig
from photobooth_matting.errors import InvalidGridGeometryError, InvalidImageError
from photobooth_matting.grid import split_grid
from photobooth_matting.io import fit_cover
from photobooth_matting.model import ONNX, LazyModel, ModelHandle
from photobooth_matting.pipeline import BackgroundRemover, StageTimings, compose_grid_png


class _RedIsForeground:
    """Fake single-input/single-output session: foreground wherever the R plane is bright."""

    def run(self, output_names, feeds):
        x = feeds["input"]
        return [(x[:, :1] > 0.0).astype(np.float32)]


class _Constant:
    def __init__(self, value: float):
        self.value = value

    def run(self, output_names, feeds):
        x = feeds["input"]
        return [np.full((1, 1) + x.shape[2:], self.value, dtype=np.float32)]


def _handle(session, size: int = 64) -> ModelHandle:
    return ModelHandle("fake.onnx", ONNX, session, "input", "output", size)


def _png(arr: np.ndarray) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(arr).save(buf, format="PNG")
    return buf.getvalue()


def _decode(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def _red_square(h: int, w: int) -> np.ndarray:
    img = np.zeros((h, w, 3), dtype=np.uint8)
    img[h // 4 : 3 * h // 4, w // 4 : 3 * w // 4] = (255, 0, 0)
    return img


def test_remove_background_keeps_size_and_cuts_out_foreground():
    remover = BackgroundRemover(model=_handle(_RedIsForeground()))
    src = _red_square(64, 64)
    out = _decode(remover.remove_background(_png(src)))

    assert out.mode == "RGBA"
    assert out.size == (64, 64)
    rgba = np.array(out)
    np.testing.assert_array_equal(rgba[..., :3], src)
    expected = np.zeros((64, 64), dtype=np.uint8)
    expected[16:48, 16:48] = 255
    np.testing.assert_array_equal(rgba[..., 3], expected)


@pytest.mark.parametrize("w,h", [(96, 64), (64, 96), (33, 17), (1, 1)])
def test_remove_background_output_matches_input_dimensions(w, h):
    remover = BackgroundRemover(model=_handle(_RedIsForeground()))
    out = _decode(remover.remove_background(_png(_red_square(h, w))))
    assert out.size == (w, h)
    alpha = np.array(out)[..., 3]
    assert alpha.dtype == np.uint8
    assert alpha.min() >= 0 and alpha.max() <= 255


def test_rgba_input_alpha_is_replaced():
    src = np.dstack([_red_square(32, 32), np.full((32, 32), 9, dtype=np.uint8)])
    remover = BackgroundRemover(model=_handle(_RedIsForeground(), size=32))
    rgba = np.array(_decode(remover.remove_background(_png(src))))
    assert set(np.unique(rgba[..., 3]).tolist()) == {0, 255}


def test_solid_color_low_confidence_gives_empty_matte():
    # No contrast for the model to key on: every value below threshold.
    solid = np.full((1024, 1024, 3), (40, 120, 200), dtype=np.uint8)
    remover = BackgroundRemover(model=_handle(_Constant(0.3), size=1024))
    alpha = np.array(_decode(remover.remove_background(_png(solid))))[..., 3]
    assert alpha.shape == (1024, 1024)
    assert int(alpha.max()) == 0


def test_solid_color_uniform_confidence_gives_uniform_matte():
    solid = np.full((256, 256, 3), 200, dtype=np.uint8)
    remover = BackgroundRemover(model=_handle(_Constant(0.9), size=256))
    alpha = np.array(_decode(remover.remove_background(_png(solid))))[..., 3]
    # 0.9 ** 0.8 * 255 = 234.4
    assert int(alpha.min()) == int(alpha.max()) == 234


def test_config_threshold_and_gamma_are_applied():
    solid = np.full((32, 32, 3), 10, dtype=np.uint8)
    config = MattingConfig(mask_threshold=0.95, mask_gamma=1.0)
    remover = BackgroundRemover(config, model=_handle(_Constant(0.9), size=32))
    alpha = np.array(_decode(remover.remove_background(_png(solid))))[..., 3]
    assert int(alpha.max()) == 0


def test_sixteen_bit_grayscale_input_is_matted():
    wide = np.full((32, 32), 50000, dtype=np.uint16)
    remover = BackgroundRemover(model=_handle(_RedIsForeground(), size=32))
    out = _decode(remover.remove_background(_png(wide)))
    assert out.mode == "RGBA"
    assert out.size == (32, 32)
    rgba = np.array(out)
    assert np.all(rgba[..., :3] == 50000 >> 8)
    assert np.all(rgba[..., 3] == 255)


def test_undecodable_bytes():
    remover = BackgroundRemover(model=_handle(_RedIsForeground()))
    with pytest.raises(InvalidImageError):
        remover.remove_background(b"definitely not an image")


def test_timings_are_reported():
    remover = BackgroundRemover(model=_handle(_RedIsForeground()))
    data, timings = remover.remove_background_timed(_png(_red_square(40, 40)))
    assert isinstance(timings, StageTimings)
    assert data.startswith(b"\x89PNG")
    parts = timings.preprocess_s + timings.inference_s + timings.postprocess_s + timings.composite_s
    assert timings.total_s == pytest.approx(parts, abs=1e-6)


def test_split_panels_sizes_fold_remainder():
    remover = BackgroundRemover(model=_handle(_RedIsForeground(), size=32))
    panels = remover.remove_background_split_panels(_png(_red_square(101, 201)), rows=2, cols=2)
    sizes = [_decode(p).size for p in panels]
    assert sizes == [(100, 50), (101, 50), (100, 51), (101, 51)]
    assert all(_decode(p).mode == "RGBA" for p in panels)


def test_split_panels_match_single_image_matting_per_panel():
    remover = BackgroundRemover(model=_handle(_RedIsForeground(), size=32))
    canvas = _red_square(80, 120)
    panels = remover.remove_background_split_panels(_png(canvas), rows=2, cols=2)
    for raw, matted in zip(split_grid(canvas, 2, 2), panels):
        assert matted == remover.remove_background(_png(raw))


def test_split_panels_bad_geometry():
    remover = BackgroundRemover(model=_handle(_RedIsForeground()))
    with pytest.raises(InvalidGridGeometryError):
        remover.remove_background_split_panels(_png(_red_square(8, 8)), rows=0, cols=2)
    with pytest.raises(InvalidGridGeometryError):
        remover.remove_background_split_panels(_png(_red_square(1, 8)), rows=2, cols=2)


def test_model_is_loaded_lazily_once():
    calls = []

    def _loader(path, fallback_input_size):
        calls.append(path)
        return _handle(_RedIsForeground(), size=fallback_input_size)

    config = MattingConfig(model_path="models/booth.onnx", model_input_size=32)
    remover = BackgroundRemover(config, model=LazyModel(config.model_path, 32, loader=_loader))
    assert calls == []
    remover.remove_background(_png(_red_square(16, 16)))
    remover.remove_background(_png(_red_square(16, 16)))
    assert calls == ["models/booth.onnx"]


def test_concurrent_inferences_are_bounded():
    state = {"active": 0, "peak": 0}
    lock = threading.Lock()

    class _Slow(_RedIsForeground):
        def run(self, output_names, feeds):
            with lock:
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
            time.sleep(0.02)
            with lock:
                state["active"] -= 1
            return super().run(output_names, feeds)

    config = MattingConfig(max_concurrent_inferences=2)
    remover = BackgroundRemover(config, model=_handle(_Slow(), size=16))
    data = _png(_red_square(16, 16))
    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(lambda _: remover.remove_background(data), range(12)))

    assert len(set(results)) == 1
    assert 1 <= state["peak"] <= 2


def test_compose_grid_png_round_trip():
    rng = np.random.default_rng(3)
    sources = [rng.integers(0, 256, size=shape, dtype=np.uint8) for shape in ((40, 50, 3), (64, 32, 3), (20, 70, 3), (32, 32, 3))]
    grid = _decode(compose_grid_png([_png(s) for s in sources], rows=2, cols=2, cell_size=32))
    assert grid.mode == "RGBA"
    assert grid.size == (64, 64)

    panels = split_grid(np.array(grid), 2, 2)
    for src, panel in zip(sources, panels):
        np.testing.assert_array_equal(panel[..., :3], fit_cover(src, 32, 32))
        assert np.all(panel[..., 3] == 255)
