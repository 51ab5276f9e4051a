from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional


@dataclass
class EngineConfig:
    # History
    history_limit: int = 100

    # Heavy operations yield once before running (ms)
    heavy_op_delay_ms: int = 100

    # Layers
    duplicate_offset: int = 20
    default_text: str = "Lorem ipsum"
    checkerboard_cell: int = 10

    # Export
    jpeg_quality: float = 0.9

    # Frequency domain: False keeps the direct O(N^2) DFT
    use_fast_fft: bool = False

    # Segmentation colours; None draws from OS entropy
    segmentation_seed: Optional[int] = None

    log_level: str = "INFO"


def load_config(path: str) -> EngineConfig:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("config file must contain a JSON object")
    known = {f.name: f for f in fields(EngineConfig)}
    kwargs = {}
    for key, value in raw.items():
        if key in known:
            kwargs[key] = value
    return EngineConfig(**kwargs)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
