"""
SCRFD face detector (scrfd_10g_bnkps.onnx and compatible exports).

The model emits, per stride in {8, 16, 32}, a score map and a box-distance
map over a (H/s) x (W/s) grid with 2 anchors per cell. Which output tensor
belongs to which stride is resolved once, when the model is loaded.
"""

from __future__ import annotations
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import numpy as np

from ..errors import ModelInferenceFailed
from ..preprocess import preprocess
from ..runtime import OnnxModel
from .types import FaceBox, LetterboxMeta
from .utils import nms, sigmoid

StrideOutputs = Dict[int, Tuple[str, str]]  # stride -> (score output, bbox output)


def _static_shape(shape: Sequence[Any]) -> Optional[Tuple[int, ...]]:
    if not shape or not all(isinstance(d, (int, np.integer)) and d > 0 for d in shape):
        return None
    return tuple(int(d) for d in shape)


def resolve_stride_outputs(
    outputs: Sequence[Tuple[str, Sequence[Any]]],
    input_size: Tuple[int, int],
    strides: Sequence[int] = (8, 16, 32),
    anchors_per_cell: int = 2,
    configured: Optional[Mapping[int, Tuple[str, str]]] = None,
) -> StrideOutputs:
    """
    Pick the (score, bbox) output pair for every stride.

    Order of preference:
      1. the configured names, if the model declares all of them
      2. declared shapes: (N, 1) scores and (N, 4) boxes with N = (H/s)(W/s)anchors
      3. InsightFace export order: all score maps, then all box maps
      4. the configured names as-is
    """
    names = [n for n, _ in outputs]
    configured = dict(configured or {})

    if configured and all(
        s in configured and configured[s][0] in names and configured[s][1] in names for s in strides
    ):
        return {s: (configured[s][0], configured[s][1]) for s in strides}

    W, H = input_size
    expected = {(H // s) * (W // s) * anchors_per_cell: s for s in strides}
    scores: Dict[int, str] = {}
    boxes: Dict[int, str] = {}
    for name, shape in outputs:
        st = _static_shape(shape)
        if st is None or len(st) < 2:
            continue
        rows = int(np.prod(st[:-1]))
        stride = expected.get(rows)
        if stride is None:
            continue
        if st[-1] == 1:
            scores.setdefault(stride, name)
        elif st[-1] == 4:
            boxes.setdefault(stride, name)
    if all(s in scores and s in boxes for s in strides):
        return {s: (scores[s], boxes[s]) for s in strides}

    fmc = len(strides)
    if len(names) in (2 * fmc, 3 * fmc):
        return {s: (names[i], names[i + fmc]) for i, s in enumerate(strides)}

    return {s: configured[s] for s in strides if s in configured}


def decode_outputs(
    outputs: Mapping[str, np.ndarray],
    stride_outputs: Mapping[int, Tuple[str, str]],
    input_size: Tuple[int, int],
    score_threshold: float,
    anchors_per_cell: int = 2,
    debug: bool = False,
) -> List[FaceBox]:
    """Decode every stride's score/box maps into tensor-space candidates (no NMS)."""
    W, _H = input_size
    candidates: List[FaceBox] = []
    decoded_any = False

    for stride in sorted(stride_outputs):
        score_name, bbox_name = stride_outputs[stride]
        if score_name not in outputs or bbox_name not in outputs:
            if debug:
                print(f"[detect] missing outputs for stride {stride}: {score_name}, {bbox_name}")
            continue
        decoded_any = True

        logits = np.asarray(outputs[score_name], dtype=np.float32).reshape(-1)
        dist = np.asarray(outputs[bbox_name], dtype=np.float32).reshape(-1)
        if dist.size != logits.size * 4:
            raise ModelInferenceFailed(
                f"Stride {stride}: {logits.size} scores but {dist.size} box values"
            )
        dist = dist.reshape(-1, 4)

        scores = sigmoid(logits)
        idx = np.nonzero(scores >= score_threshold)[0]
        if idx.size == 0:
            continue

        grid_w = max(1, W // stride)
        cell = idx // anchors_per_cell
        cx = (cell % grid_w) * stride + stride / 2.0
        cy = (cell // grid_w) * stride + stride / 2.0
        d = dist[idx] * stride

        x1 = cx - d[:, 0]
        y1 = cy - d[:, 1]
        x2 = cx + d[:, 2]
        y2 = cy + d[:, 3]
        for k in range(idx.size):
            candidates.append(
                FaceBox(float(x1[k]), float(y1[k]), float(x2[k]), float(y2[k]), float(scores[idx[k]]))
            )

    if not decoded_any:
        raise ModelInferenceFailed("Detector produced none of the expected stride outputs")
    return candidates


class ScrfdDetector:
    def __init__(
        self,
        model: OnnxModel,
        score_threshold: float = 0.5,
        nms_threshold: float = 0.4,
        strides: Sequence[int] = (8, 16, 32),
        anchors_per_cell: int = 2,
        stride_outputs: Optional[Mapping[int, Tuple[str, str]]] = None,
        debug: bool = False,
    ):
        self.model = model
        self.score_threshold = float(score_threshold)
        self.nms_threshold = float(nms_threshold)
        self.strides = tuple(int(s) for s in strides)
        self.anchors_per_cell = int(anchors_per_cell)
        self.configured_outputs = dict(stride_outputs or {})
        self.debug = bool(debug)
        self._stride_outputs: Optional[StrideOutputs] = None

    @property
    def stride_outputs(self) -> StrideOutputs:
        if self._stride_outputs is None:
            mapping = resolve_stride_outputs(
                self.model.outputs,
                self.model.input_size,
                strides=self.strides,
                anchors_per_cell=self.anchors_per_cell,
                configured=self.configured_outputs,
            )
            if self.debug:
                print("[detect] stride outputs:", mapping)
            self._stride_outputs = mapping
        return self._stride_outputs

    def detect(self, img_bgr: np.ndarray) -> Tuple[List[FaceBox], LetterboxMeta]:
        """All kept faces in tensor coordinates, best first, plus the letterbox meta."""
        size = self.model.input_size
        x, meta = preprocess(img_bgr, size)
        outputs = self.model.run(x)

        raw = decode_outputs(
            outputs,
            self.stride_outputs,
            size,
            self.score_threshold,
            anchors_per_cell=self.anchors_per_cell,
            debug=self.debug,
        )
        if self.debug:
            print(f"[detect] raw candidates: {len(raw)}")
        if not raw:
            return [], meta
        return nms(raw, self.nms_threshold), meta

    def detect_main_face(self, img_bgr: np.ndarray) -> Optional[FaceBox]:
        """Highest-scoring face in original-image coordinates, or None."""
        faces, meta = self.detect(img_bgr)
        if not faces:
            return None
        return meta.to_original(faces[0])
