"""
Image -> model tensor conversion shared by every stage.

Images are handled as OpenCV BGR uint8 arrays. Tensors are float32
(1, 3, H, W), RGB, normalized with (pixel - 127.5) / 128 as InsightFace
models expect.
"""

from __future__ import annotations
from typing import Tuple
import cv2
import numpy as np

from .errors import DecodeError
from .recognize.types import LetterboxMeta


def decode_image(data: bytes) -> np.ndarray:
    """Decode JPEG/PNG bytes to a BGR image. Raises DecodeError, never returns a blank."""
    if not data:
        raise DecodeError("Empty image buffer")
    buf = np.frombuffer(bytes(data), dtype=np.uint8)
    img = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if img is None or img.size == 0:
        raise DecodeError(f"Could not decode image ({len(data)} bytes)")
    return img


def encode_image(img_bgr: np.ndarray, ext: str = ".jpg") -> bytes:
    ok, enc = cv2.imencode(ext, img_bgr)
    if not ok:
        raise DecodeError(f"Could not encode image as {ext}")
    return enc.tobytes()


def _as_bgr(img: np.ndarray) -> np.ndarray:
    if img.ndim == 2:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
    if img.shape[2] == 4:
        return cv2.cvtColor(img, cv2.COLOR_BGRA2BGR)
    return img


def letterbox(img_bgr: np.ndarray, size: Tuple[int, int]) -> Tuple[np.ndarray, LetterboxMeta]:
    """
    Fit an image into a black (W, H) canvas, preserving aspect ratio and centering it.
    Returns the canvas and the metadata needed to map coordinates back.
    """
    img = _as_bgr(img_bgr)
    W, H = int(size[0]), int(size[1])
    ih, iw = img.shape[:2]

    r = min(W / iw, H / ih)
    new_w = min(W, max(1, int(round(iw * r))))
    new_h = min(H, max(1, int(round(ih * r))))
    dx = (W - new_w) // 2
    dy = (H - new_h) // 2

    canvas = np.zeros((H, W, 3), dtype=np.uint8)
    if (new_w, new_h) != (iw, ih):
        resized = cv2.resize(img, (new_w, new_h), interpolation=cv2.INTER_LINEAR)
    else:
        resized = img
    canvas[dy:dy + new_h, dx:dx + new_w] = resized

    meta = LetterboxMeta(scale_back=1.0 / r, dx=dx, dy=dy, orig_w=iw, orig_h=ih)
    return canvas, meta


def to_tensor(img_bgr: np.ndarray) -> np.ndarray:
    rgb = cv2.cvtColor(_as_bgr(img_bgr), cv2.COLOR_BGR2RGB).astype(np.float32)
    rgb = (rgb - 127.5) / 128.0
    x = np.transpose(rgb, (2, 0, 1))[None, ...]
    return np.ascontiguousarray(x, dtype=np.float32)


def preprocess(img_bgr: np.ndarray, size: Tuple[int, int]) -> Tuple[np.ndarray, LetterboxMeta]:
    """letterbox + to_tensor in one call."""
    canvas, meta = letterbox(img_bgr, size)
    return to_tensor(canvas), meta
