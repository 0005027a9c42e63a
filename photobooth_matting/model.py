from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np
import onnxruntime as ort
import torch

from .config import MODEL_INPUT_SIZE
from .errors import ModelContractError, ModelNotFoundError

logger = logging.getLogger(__name__)

ONNX = "onnx"
TORCHSCRIPT = "torchscript"

_TORCHSCRIPT_SUFFIXES = {".pt", ".pth", ".torchscript", ".ts"}


@dataclass(frozen=True)
class ModelHandle:
    """A loaded segmentation model. Read-only after construction; safe to share across threads."""

    path: str
    backend: str
    session: Any
    input_name: str
    output_name: str
    input_size: int


def detect_backend(model_path: str) -> str:
    suffix = os.path.splitext(model_path)[1].lower()
    if suffix == ".onnx":
        return ONNX
    if suffix in _TORCHSCRIPT_SUFFIXES:
        return TORCHSCRIPT
    raise ModelContractError(f"Cannot infer model backend from file name: {model_path}")


def _static_input_size(shape, fallback: int) -> int:
    """
    Read S from a (1, 3, S, S) input shape. Dynamic axes come back from onnxruntime
    as strings or None, in which case the configured fallback is used.
    """
    if shape is not None and len(shape) == 4:
        h, w = shape[2], shape[3]
        if isinstance(h, int) and isinstance(w, int) and h == w and h > 0:
            return h
    return fallback


def _load_onnx(model_path: str, fallback_input_size: int) -> ModelHandle:
    opts = ort.SessionOptions()
    opts.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    try:
        session = ort.InferenceSession(model_path, sess_options=opts, providers=["CPUExecutionProvider"])
    except Exception as e:  # noqa: BLE001 - surface a typed error
        raise ModelContractError(f"Failed to create ONNX session for {model_path}: {e}") from e

    inputs = session.get_inputs()
    outputs = session.get_outputs()
    if len(inputs) != 1 or len(outputs) != 1:
        raise ModelContractError(
            f"Expected a single-input, single-output model; got {len(inputs)} inputs, {len(outputs)} outputs"
        )

    return ModelHandle(
        path=model_path,
        backend=ONNX,
        session=session,
        input_name=inputs[0].name,
        output_name=outputs[0].name,
        input_size=_static_input_size(inputs[0].shape, fallback_input_size),
    )


def _torchscript_io_names(module) -> Tuple[str, str]:
    schema = getattr(getattr(module, "forward", None), "schema", None)
    if schema is None:
        raise ModelContractError("TorchScript module exposes no forward schema.")
    args = [a.name for a in schema.arguments if a.name != "self"]
    if len(args) != 1:
        raise ModelContractError(f"Expected a single-input forward(), got arguments {args}")
    if len(schema.returns) != 1 or str(schema.returns[0].type) != "Tensor":
        raise ModelContractError(
            f"Expected forward() to return a single Tensor, got {[str(r.type) for r in schema.returns]}"
        )
    return args[0], schema.returns[0].name or "output"


def _load_torchscript(model_path: str, fallback_input_size: int) -> ModelHandle:
    """
    Load a TorchScript matting module (saved via torch.jit.save) for CPU inference.
    """
    try:
        module = torch.jit.load(model_path, map_location="cpu")
    except Exception as e:  # noqa: BLE001 - surface a typed error
        raise ModelContractError(
            "Failed to load model. TorchScript backends expect a module saved with torch.jit.save()."
        ) from e

    module.eval()
    for p in module.parameters():
        p.requires_grad_(False)
    module = module.to(dtype=torch.float32)

    input_name, output_name = _torchscript_io_names(module)
    return ModelHandle(
        path=model_path,
        backend=TORCHSCRIPT,
        session=module,
        input_name=input_name,
        output_name=output_name,
        input_size=fallback_input_size,
    )


def load_model(model_path: str, fallback_input_size: int = MODEL_INPUT_SIZE) -> ModelHandle:
    """
    Construct a ModelHandle. Expensive; prefer load_once() or LazyModel.
    """
    if not os.path.isfile(model_path):
        raise ModelNotFoundError(f"Model not found: {model_path}")

    backend = detect_backend(model_path)
    if backend == ONNX:
        handle = _load_onnx(model_path, fallback_input_size)
    else:
        handle = _load_torchscript(model_path, fallback_input_size)

    logger.info(
        "Loaded %s model %s (input=%r output=%r size=%d)",
        handle.backend,
        os.path.basename(model_path),
        handle.input_name,
        handle.output_name,
        handle.input_size,
    )
    return handle


_HANDLES: Dict[str, ModelHandle] = {}
_HANDLES_LOCK = threading.Lock()


def load_once(model_path: str, fallback_input_size: int = MODEL_INPUT_SIZE) -> ModelHandle:
    """
    Process-wide memoized load: one handle per resolved path, constructed exactly once
    even when several threads ask for it at the same time.
    """
    key = os.path.abspath(model_path)
    handle = _HANDLES.get(key)
    if handle is not None:
        return handle
    with _HANDLES_LOCK:
        handle = _HANDLES.get(key)
        if handle is None:
            handle = load_model(model_path, fallback_input_size)
            _HANDLES[key] = handle
    return handle


def clear_model_cache() -> None:
    with _HANDLES_LOCK:
        _HANDLES.clear()


class LazyModel:
    """
    Injectable holder for one model: loads on first get(), exactly once.

    Owned by whatever composes the pipeline, so tests and hosts can swap the loader
    or share one instance between services without touching module state.
    """

    def __init__(
        self,
        model_path: str,
        fallback_input_size: int = MODEL_INPUT_SIZE,
        loader: Callable[[str, int], ModelHandle] = load_model,
    ):
        self.model_path = model_path
        self.fallback_input_size = fallback_input_size
        self._loader = loader
        self._lock = threading.Lock()
        self._handle: Optional[ModelHandle] = None

    @property
    def loaded(self) -> bool:
        return self._handle is not None

    def get(self) -> ModelHandle:
        handle = self._handle
        if handle is not None:
            return handle
        with self._lock:
            if self._handle is None:
                self._handle = self._loader(self.model_path, self.fallback_input_size)
            return self._handle


def _forward_torchscript(module, x: np.ndarray) -> np.ndarray:
    with torch.no_grad():
        y = module(torch.from_numpy(x))
    if not isinstance(y, torch.Tensor):
        raise ModelContractError(f"Expected a single output tensor, got {type(y).__name__}")
    return y.detach().to("cpu").float().numpy()


def infer(handle: ModelHandle, tensor: np.ndarray) -> np.ndarray:
    """
    Synchronous, CPU-bound forward pass.

    Input must be float32 (1, 3, S, S) with S == handle.input_size. Returns the raw
    output array; use preprocess.decode_mask to view it as an (S, S) grid.
    """
    s = handle.input_size
    if not isinstance(tensor, np.ndarray) or tensor.dtype != np.float32:
        raise ModelContractError(f"Expected float32 ndarray input, got {getattr(tensor, 'dtype', type(tensor))}")
    if tensor.shape != (1, 3, s, s):
        raise ModelContractError(f"Expected input tensor (1,3,{s},{s}), got {tuple(tensor.shape)}")

    if handle.backend == ONNX:
        out = handle.session.run([handle.output_name], {handle.input_name: tensor})[0]
    elif handle.backend == TORCHSCRIPT:
        out = _forward_torchscript(handle.session, tensor)
    else:
        raise ModelContractError(f"Unknown model backend: {handle.backend}")

    out = np.asarray(out, dtype=np.float32)
    if out.size != s * s:
        raise ModelContractError(f"Expected output flattenable to {s}x{s}, got shape={tuple(out.shape)}")
    return out
