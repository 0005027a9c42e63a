from __future__ import annotations

import argparse
from pathlib import Path

import requests
from tqdm import tqdm

# Published ONNX exports; all take a (1,3,S,S) float32 input in [-1,1].
MODELS = {
    "rmbg-1.4": (
        "https://huggingface.co/briaai/RMBG-1.4/resolve/main/onnx/model.onnx",
        "rmbg-1.4.onnx",
    ),
    # INT8, ~40MB. Default for the booth: faster on CPU with near-identical mattes.
    "rmbg-1.4-quantized": (
        "https://huggingface.co/briaai/RMBG-1.4/resolve/main/onnx/model_quantized.onnx",
        "rmbg-1.4-quantized.onnx",
    ),
    "modnet-quantized": (
        "https://huggingface.co/Xenova/modnet/resolve/main/onnx/model_quantized.onnx",
        "modnet_quantized.onnx",
    ),
}

CHUNK_SIZE = 1 << 20


def download_model(url: str, out_path: Path, *, timeout_s: float = 30.0) -> Path:
    """
    Stream a model file to disk. Writes to a .part file first so an interrupted
    download never leaves a truncated model at out_path.
    """
    out_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = out_path.with_name(out_path.name + ".part")

    # requests follows the Hugging Face CDN redirects.
    with requests.get(url, stream=True, timeout=timeout_s, allow_redirects=True) as resp:
        resp.raise_for_status()
        total = int(resp.headers.get("content-length", 0)) or None
        with open(tmp_path, "wb") as fp, tqdm(
            total=total, unit="B", unit_scale=True, unit_divisor=1024, desc=out_path.name
        ) as bar:
            for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue
                fp.write(chunk)
                bar.update(len(chunk))

    tmp_path.replace(out_path)
    return out_path


def main() -> int:
    parser = argparse.ArgumentParser(description="Download a background removal ONNX model.")
    parser.add_argument(
        "--model",
        default="rmbg-1.4-quantized",
        choices=sorted(MODELS),
        help="Which published model to fetch (default: rmbg-1.4-quantized).",
    )
    parser.add_argument(
        "--out-dir",
        default=str(Path(__file__).parent / "models"),
        help="Destination directory (default: ./models).",
    )
    parser.add_argument("--force", action="store_true", help="Re-download even if the file exists.")
    args = parser.parse_args()

    url, file_name = MODELS[args.model]
    out_path = Path(args.out_dir) / file_name
    if out_path.exists() and not args.force:
        print(f"Already present: {out_path}")
        return 0

    print(f"Downloading {args.model} to {out_path}...")
    download_model(url, out_path)
    print(f"OK. Saved model to: {out_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
