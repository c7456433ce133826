"""
Runtime configuration for the attendance pipeline.

Defaults live on the dataclass; a JSON file may override any known key:

    {
        "recognition_threshold": 0.55,
        "detector_model": "models/scrfd_2.5g_bnkps.onnx",
        "inference_timeout_s": 5
    }
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .errors import ConfigError

# Output names of scrfd_10g_bnkps.onnx as exported by InsightFace.
# Used only when the model declares neither matching names nor usable shapes.
DEFAULT_STRIDE_OUTPUTS: Dict[int, Tuple[str, str]] = {
    8: ("448", "451"),
    16: ("471", "474"),
    32: ("494", "497"),
}


@dataclass
class PipelineConfig:
    # models
    detector_model: Path = Path("models/scrfd_10g_bnkps.onnx")
    landmark_model: Path = Path("models/2d106det.onnx")
    embedding_model: Path = Path("models/glintr100.onnx")
    providers: List[str] = field(default_factory=lambda: ["CPUExecutionProvider"])
    inference_timeout_s: Optional[float] = 10.0

    # input sizes used when a model does not declare a static (W, H)
    detector_input_size: Tuple[int, int] = (640, 640)
    landmark_input_size: Tuple[int, int] = (192, 192)
    embedding_input_size: Tuple[int, int] = (112, 112)

    # detection
    score_threshold: float = 0.5
    nms_threshold: float = 0.4
    strides: Tuple[int, ...] = (8, 16, 32)
    anchors_per_cell: int = 2
    stride_outputs: Dict[int, Tuple[str, str]] = field(
        default_factory=lambda: dict(DEFAULT_STRIDE_OUTPUTS)
    )

    # landmarks / alignment
    num_landmarks: int = 106
    landmark_layout: str = "auto"  # auto | by_axis | by_point
    aligned_size: int = 112
    aligned_format: str = ".jpg"

    # embedding / matching
    embedding_dim: int = 512
    embedding_model_name: str = "arcface-glintr100"
    embedding_model_version: str = "1.0"
    recognition_threshold: float = 0.6

    # journal + notifications
    activity_log: Optional[Path] = Path("data/attendance_activity.txt")
    mqtt_broker: Optional[str] = None
    mqtt_port: int = 1883
    site_id: str = "default_site"

    debug: bool = False


_PATH_KEYS = {"detector_model", "landmark_model", "embedding_model", "activity_log"}
_SIZE_KEYS = {"detector_input_size", "landmark_input_size", "embedding_input_size"}


def _coerce(key: str, value):
    if value is None:
        return None
    if key in _PATH_KEYS:
        return Path(value)
    if key in _SIZE_KEYS:
        w, h = value
        return int(w), int(h)
    if key == "strides":
        return tuple(int(s) for s in value)
    if key == "stride_outputs":
        return {int(s): (str(names[0]), str(names[1])) for s, names in value.items()}
    return value


def load_config(path: Optional[Union[str, Path]] = None) -> PipelineConfig:
    """Build a config from defaults plus the JSON overrides in `path`, if it exists."""
    cfg = PipelineConfig()
    if path is None:
        return cfg

    path = Path(path)
    if not path.exists():
        return cfg

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")

    known = {f.name for f in fields(cfg)}
    for key, value in data.items():
        if key not in known:
            continue
        try:
            setattr(cfg, key, _coerce(key, value))
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigError(f"Invalid value for '{key}': {value!r}") from e
    return cfg
