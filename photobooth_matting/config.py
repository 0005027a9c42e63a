"""
Centralized configuration for the background removal pipeline.

Ground rules:
- CPU + float32
- Batch size 1
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

# Square input resolution of the deployed RMBG-1.4 export. Only a fallback: the
# real value is read from the model's input shape when it is static.
MODEL_INPUT_SIZE = 1024

# Mask refinement. Tuned on the photo booth captures, not derived.
MASK_THRESHOLD = 0.4
MASK_GAMMA = 0.8

FEATHER_RADIUS = 2

# zlib level 0-9; lower is faster.
PNG_COMPRESSION_LEVEL = 6

# Multi-pose round trip: 2x2 grid of 512px reference poses.
GRID_ROWS = 2
GRID_COLS = 2
GRID_CELL_SIZE = 512

MAX_CONCURRENT_INFERENCES = 2

DEFAULT_MODEL_PATH = "models/rmbg-1.4-quantized.onnx"


class MattingConfig(BaseModel):
    # model_* field names are ours, not pydantic internals.
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_path: str = DEFAULT_MODEL_PATH
    model_input_size: int = Field(default=MODEL_INPUT_SIZE, ge=1)
    mask_threshold: float = Field(default=MASK_THRESHOLD, ge=0.0, le=1.0)
    mask_gamma: float = Field(default=MASK_GAMMA, gt=0.0)
    feather_radius: int = Field(default=FEATHER_RADIUS, ge=0)
    png_compression_level: int = Field(default=PNG_COMPRESSION_LEVEL, ge=0, le=9)
    max_concurrent_inferences: int = Field(default=MAX_CONCURRENT_INFERENCES, ge=1)
