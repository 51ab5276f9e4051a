from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from engine.buffer import PixelBuffer
from engine.catalog import apply_filter
from engine.io import load_image_rgba, save_image

logger = logging.getLogger(__name__)


def iter_images(folder: str) -> Iterable[Path]:
    exts = {".png", ".jpg", ".jpeg", ".bmp", ".webp", ".tif", ".tiff"}
    root = Path(folder)
    for p in sorted(root.iterdir()):
        if p.is_file() and p.suffix.lower() in exts:
            yield p


def batch_apply_filter(
    input_dir: str,
    output_dir: str,
    filter_name: str,
    suffix: str = "_edited",
    ext: str = ".png",
    **params,
) -> int:
    out_root = Path(output_dir)
    out_root.mkdir(parents=True, exist_ok=True)

    count = 0
    for src_path in iter_images(input_dir):
        src = PixelBuffer.from_pil(load_image_rgba(str(src_path)))
        out = apply_filter(filter_name, src, **params)
        out_img = out.to_pil()
        if ext.lower() in (".jpg", ".jpeg"):
            out_img = out_img.convert("RGB")
        out_name = f"{src_path.stem}{suffix}{ext}"
        save_image(str(out_root / out_name), out_img)
        logger.debug("%s -> %s", src_path.name, out_name)
        count += 1
    return count
