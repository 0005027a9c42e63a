from __future__ import annotations

import argparse
from pathlib import Path

from photobooth_matting.config import GRID_CELL_SIZE, GRID_COLS, GRID_ROWS, PNG_COMPRESSION_LEVEL
from photobooth_matting.grid import split_grid
from photobooth_matting.io import encode_png, load_image, save_png
from photobooth_matting.pipeline import compose_grid_png


def _compose(args) -> int:
    paths = [Path(p) for p in args.images]
    for p in paths:
        if not p.exists():
            raise FileNotFoundError(f"image not found: {p}")

    png = compose_grid_png(
        [p.read_bytes() for p in paths],
        rows=args.rows,
        cols=args.cols,
        cell_size=args.cell_size,
        compress_level=args.compression,
    )
    save_png(png, args.out)
    print(f"Composed {len(paths)} images into {args.out}")
    return 0


def _split(args) -> int:
    canvas = load_image(args.image)
    out_dir = Path(args.out_dir)
    stem = Path(args.image).stem
    panels = split_grid(canvas, args.rows, args.cols)
    for i, panel in enumerate(panels, start=1):
        out_path = out_dir / f"{stem}_panel-{i}.png"
        save_png(encode_png(panel, compress_level=args.compression), out_path)
        print(f"{out_path}: {panel.shape[1]}x{panel.shape[0]}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Pack pose images into a grid, or cut a generated grid apart.")
    sub = parser.add_subparsers(dest="command", required=True)

    p_compose = sub.add_parser("compose", help="Tile images (row-major) into one transparent PNG.")
    p_compose.add_argument("images", nargs="+", help="Input images, row-major order.")
    p_compose.add_argument("--out", required=True, type=str, help="Output PNG path.")
    p_compose.add_argument("--cell-size", default=GRID_CELL_SIZE, type=int, help="Square cell size in px.")
    p_compose.set_defaults(func=_compose)

    p_split = sub.add_parser("split", help="Cut a grid image into panel PNGs.")
    p_split.add_argument("image", type=str, help="Grid image.")
    p_split.add_argument("--out-dir", required=True, type=str, help="Output directory for panels.")
    p_split.set_defaults(func=_split)

    for p in (p_compose, p_split):
        p.add_argument("--rows", default=GRID_ROWS, type=int)
        p.add_argument("--cols", default=GRID_COLS, type=int)
        p.add_argument("--compression", default=PNG_COMPRESSION_LEVEL, type=int, help="PNG compression level 0-9.")

    args = parser.parse_args()
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
