from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from .errors import InvalidGridGeometryError
from .io import check_raster, extract_region, fit_cover

logger = logging.getLogger(__name__)

# Transparent white, the background the generator sees between poses.
CANVAS_BACKGROUND = (255, 255, 255, 0)


@dataclass(frozen=True)
class PanelBox:
    index: int
    row: int
    col: int
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class GridLayout:
    rows: int
    cols: int
    width: int
    height: int
    panels: Tuple[PanelBox, ...]


def _check_counts(rows: int, cols: int) -> None:
    if rows < 1 or cols < 1:
        raise InvalidGridGeometryError(f"rows and cols must be >= 1, got rows={rows} cols={cols}")


def plan_grid(width: int, height: int, rows: int, cols: int) -> GridLayout:
    """
    Partition a (width, height) canvas into rows x cols panels, row-major.

    Every panel is floor(width/cols) x floor(height/rows) except the last column and
    the last row, which absorb the remainder so the panels cover the canvas exactly.
    """
    _check_counts(rows, cols)
    panel_w = width // cols
    panel_h = height // rows
    if panel_w < 1 or panel_h < 1:
        raise InvalidGridGeometryError(f"Canvas {width}x{height} is too small for a {rows}x{cols} grid")

    last_w = width - panel_w * (cols - 1)
    last_h = height - panel_h * (rows - 1)

    panels = []
    for row in range(rows):
        for col in range(cols):
            x = col * panel_w
            y = row * panel_h
            w = last_w if col == cols - 1 else panel_w
            h = last_h if row == rows - 1 else panel_h
            if x < 0 or y < 0 or x + w > width or y + h > height:
                raise InvalidGridGeometryError(
                    f"Invalid extract area: x={x}, y={y}, w={w}, h={h}, canvas={width}x{height}"
                )
            panels.append(PanelBox(index=len(panels), row=row, col=col, x=x, y=y, width=w, height=h))

    return GridLayout(rows=rows, cols=cols, width=width, height=height, panels=tuple(panels))


def split_grid(canvas: np.ndarray, rows: int, cols: int) -> List[np.ndarray]:
    """
    Cut a composite image into rows x cols panels (row-major). Alpha is preserved.
    """
    check_raster(canvas)
    h, w = canvas.shape[:2]
    layout = plan_grid(w, h, rows, cols)
    out = []
    for box in layout.panels:
        logger.debug("Extracting panel %d: x=%d y=%d w=%d h=%d", box.index + 1, box.x, box.y, box.width, box.height)
        out.append(extract_region(canvas, box.x, box.y, box.width, box.height))
    return out


def compose_grid(images: Sequence[np.ndarray], rows: int, cols: int, cell_size: int) -> np.ndarray:
    """
    Tile images into one RGBA canvas of (rows*cell_size, cols*cell_size).

    Each image is cover-fit to cell_size x cell_size and placed at
    (col*cell_size, row*cell_size) in row-major order. Unfilled cells stay transparent.
    """
    _check_counts(rows, cols)
    if cell_size < 1:
        raise InvalidGridGeometryError(f"cell_size must be >= 1, got {cell_size}")
    if len(images) > rows * cols:
        raise InvalidGridGeometryError(f"{len(images)} images do not fit a {rows}x{cols} grid")

    canvas = np.empty((rows * cell_size, cols * cell_size, 4), dtype=np.uint8)
    canvas[...] = CANVAS_BACKGROUND

    for i, img in enumerate(images):
        row, col = divmod(i, cols)
        cell = fit_cover(img, cell_size, cell_size)
        if cell.shape[2] == 3:
            cell = np.dstack([cell, np.full(cell.shape[:2], 255, dtype=np.uint8)])
        y = row * cell_size
        x = col * cell_size
        canvas[y : y + cell_size, x : x + cell_size] = cell

    return canvas
