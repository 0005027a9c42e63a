from __future__ import annotations

import argparse
import logging
import os
import time
from pathlib import Path

from dotenv import load_dotenv
from tqdm import tqdm

from photobooth_matting.config import (
    DEFAULT_MODEL_PATH,
    FEATHER_RADIUS,
    GRID_COLS,
    GRID_ROWS,
    MASK_GAMMA,
    MASK_THRESHOLD,
    PNG_COMPRESSION_LEVEL,
    MattingConfig,
)
from photobooth_matting.io import save_png
from photobooth_matting.pipeline import BackgroundRemover


def _iter_images(input_dir: Path):
    exts = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tif", ".tiff"}
    for p in sorted(input_dir.rglob("*")):
        if p.is_file() and p.suffix.lower() in exts:
            yield p


def main() -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Photo booth background removal (CPU, float32, batch=1).")
    parser.add_argument("--input", required=True, type=str, help="Input directory containing images.")
    parser.add_argument("--output", required=True, type=str, help="Output directory for RGBA PNGs.")
    parser.add_argument(
        "--model",
        default=os.getenv("PHOTOBOOTH_MODEL_PATH", DEFAULT_MODEL_PATH),
        type=str,
        help="ONNX or TorchScript model path (default: $PHOTOBOOTH_MODEL_PATH or %(default)s).",
    )
    parser.add_argument("--split-panels", action="store_true", help="Treat each input as a generated pose grid.")
    parser.add_argument("--rows", default=GRID_ROWS, type=int, help="Grid rows for --split-panels.")
    parser.add_argument("--cols", default=GRID_COLS, type=int, help="Grid cols for --split-panels.")
    parser.add_argument("--threshold", default=MASK_THRESHOLD, type=float, help="Mask threshold in [0,1].")
    parser.add_argument("--gamma", default=MASK_GAMMA, type=float, help="Mask gamma (> 0).")
    parser.add_argument("--feather-radius", default=FEATHER_RADIUS, type=int, help="Edge feather radius (0 disables).")
    parser.add_argument("--compression", default=PNG_COMPRESSION_LEVEL, type=int, help="PNG compression level 0-9.")
    parser.add_argument("--verbose", action="store_true", help="Log per-stage timings from the library.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    input_dir = Path(args.input)
    output_dir = Path(args.output)
    if not input_dir.exists():
        raise FileNotFoundError(f"Input dir not found: {input_dir}")

    config = MattingConfig(
        model_path=args.model,
        mask_threshold=args.threshold,
        mask_gamma=args.gamma,
        feather_radius=args.feather_radius,
        png_compression_level=args.compression,
    )
    remover = BackgroundRemover(config)

    images = list(_iter_images(input_dir))
    if not images:
        print(f"No images found under {input_dir}")
        return 0

    total0 = time.perf_counter()
    for img_path in tqdm(images, desc="Processing", unit="img"):
        rel = img_path.relative_to(input_dir)
        data = img_path.read_bytes()

        if args.split_panels:
            t0 = time.perf_counter()
            panels = remover.remove_background_split_panels(data, rows=args.rows, cols=args.cols)
            for i, panel in enumerate(panels, start=1):
                out_path = output_dir / rel.parent / f"{rel.stem}_panel-{i}.png"
                save_png(panel, out_path)
            print(f"{img_path.name}: {len(panels)} panels in {time.perf_counter() - t0:.3f}s")
            continue

        out_path = (output_dir / rel).with_suffix(".png")
        png, timings = remover.remove_background_timed(data)
        save_png(png, out_path)

        print(
            f"{img_path.name}: total={timings.total_s:.3f}s "
            f"(pre={timings.preprocess_s:.3f}s inf={timings.inference_s:.3f}s "
            f"post={timings.postprocess_s:.3f}s comp={timings.composite_s:.3f}s)"
        )

    total1 = time.perf_counter()
    print(f"Done. {len(images)} images in {total1-total0:.2f}s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
