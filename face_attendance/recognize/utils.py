from __future__ import annotations
from typing import List, Sequence, Tuple
import numpy as np

from .types import FaceBox


def sigmoid(x: np.ndarray) -> np.ndarray:
    x = np.asarray(x, dtype=np.float32)
    # clip keeps np.exp from overflowing on extreme logits
    return (1.0 / (1.0 + np.exp(-np.clip(x, -88.0, 88.0)))).astype(np.float32)


def _clip_xyxy(x1: float, y1: float, x2: float, y2: float, W: int, H: int) -> Tuple[int, int, int, int]:
    """Integer crop rectangle inside a WxH image, never smaller than 1x1."""
    W = max(1, int(W))
    H = max(1, int(H))
    ix1 = min(max(0, int(np.floor(x1))), W - 1)
    iy1 = min(max(0, int(np.floor(y1))), H - 1)
    ix2 = min(W, int(np.floor(x2)))
    iy2 = min(H, int(np.floor(y2)))
    ix2 = max(ix2, ix1 + 1)
    iy2 = max(iy2, iy1 + 1)
    return ix1, iy1, ix2, iy2


def iou(a: FaceBox, b: FaceBox) -> float:
    x1 = max(a.x1, b.x1)
    y1 = max(a.y1, b.y1)
    x2 = min(a.x2, b.x2)
    y2 = min(a.y2, b.y2)

    inter = max(0.0, x2 - x1) * max(0.0, y2 - y1)
    union = a.area + b.area - inter
    if union <= 0:
        return 0.0
    return float(inter / union)


def _iou_one_to_many(box: np.ndarray, others: np.ndarray) -> np.ndarray:
    xx1 = np.maximum(box[0], others[:, 0])
    yy1 = np.maximum(box[1], others[:, 1])
    xx2 = np.minimum(box[2], others[:, 2])
    yy2 = np.minimum(box[3], others[:, 3])

    inter = np.maximum(0.0, xx2 - xx1) * np.maximum(0.0, yy2 - yy1)
    area_a = max(0.0, box[2] - box[0]) * max(0.0, box[3] - box[1])
    area_b = np.maximum(0.0, others[:, 2] - others[:, 0]) * np.maximum(0.0, others[:, 3] - others[:, 1])
    union = area_a + area_b - inter

    out = np.zeros_like(inter, dtype=np.float64)
    np.divide(inter, union, out=out, where=union > 0)
    return out


def nms(boxes: Sequence[FaceBox], iou_threshold: float) -> List[FaceBox]:
    """
    Greedy non-maximum suppression.
    Returns the kept boxes, highest score first. Equal scores keep input order.
    """
    if len(boxes) == 0:
        return []

    coords = np.array([b.xyxy() for b in boxes], dtype=np.float64)
    scores = np.array([b.score for b in boxes], dtype=np.float64)
    order = np.argsort(-scores, kind="stable")

    keep: List[int] = []
    while order.size > 0:
        i = int(order[0])
        keep.append(i)
        rest = order[1:]
        if rest.size == 0:
            break
        overlaps = _iou_one_to_many(coords[i], coords[rest])
        order = rest[overlaps <= iou_threshold]

    return [boxes[i] for i in keep]


def l2_normalize(v: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    """v / max(||v||, eps). A zero vector stays zero."""
    v = np.asarray(v, dtype=np.float32).reshape(-1)
    n = max(float(np.linalg.norm(v)), eps)
    return (v / n).astype(np.float32)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    a = np.asarray(a, dtype=np.float32).reshape(-1)
    b = np.asarray(b, dtype=np.float32).reshape(-1)
    if a.size == 0 or a.size != b.size:
        return 0.0
    na = float(np.linalg.norm(a))
    nb = float(np.linalg.norm(b))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(a, b) / (na * nb))
