"""
Face crop -> facial landmarks (2d106det.onnx) -> 112x112 aligned face.

Alignment is an aspect-preserving fit into the output square, black padded.
Landmarks are returned with the aligned face but are not used to warp it yet;
a similarity-transform warp can replace `align` without changing callers.
"""

from __future__ import annotations
from typing import Tuple
import numpy as np

from ..errors import LandmarkDecodeError
from ..preprocess import encode_image, letterbox, preprocess
from ..runtime import OnnxModel
from .types import AlignedFace, FaceBox
from .utils import _clip_xyxy

LAYOUTS = ("auto", "by_axis", "by_point")


def decode_landmarks(output: np.ndarray, num_points: int, layout: str = "auto") -> np.ndarray:
    """
    Model output -> (N,2) float32 normalized [0,1] points.

    by_axis:  [x1..xN, y1..yN]
    by_point: [x1, y1, x2, y2, ...]
    auto: by_point when the output's last axis has size 2, by_axis otherwise.
    """
    if layout not in LAYOUTS:
        raise ValueError(f"Unknown landmark layout: {layout}")

    arr = np.asarray(output, dtype=np.float32)
    flat = arr.reshape(-1)
    if flat.size != 2 * num_points:
        raise LandmarkDecodeError(
            f"Unexpected landmark output length {flat.size} (shape {arr.shape}), expected {2 * num_points}"
        )

    if layout == "auto":
        layout = "by_point" if arr.ndim >= 2 and arr.shape[-1] == 2 else "by_axis"

    if layout == "by_axis":
        return np.stack([flat[:num_points], flat[num_points:]], axis=1)
    return flat.reshape(num_points, 2).copy()


class LandmarkAligner:
    def __init__(
        self,
        model: OnnxModel,
        num_points: int = 106,
        layout: str = "auto",
        aligned_size: int = 112,
        aligned_format: str = ".jpg",
        debug: bool = False,
    ):
        if layout not in LAYOUTS:
            raise ValueError(f"Unknown landmark layout: {layout}")
        self.model = model
        self.num_points = int(num_points)
        self.layout = layout
        self.aligned_size = int(aligned_size)
        self.aligned_format = aligned_format
        self.debug = bool(debug)

    @staticmethod
    def crop_face(img_bgr: np.ndarray, box: FaceBox) -> Tuple[np.ndarray, Tuple[int, int, int, int]]:
        """Crop `box` (original coords) out of the image, clamped, at least 1x1."""
        H, W = img_bgr.shape[:2]
        x1, y1, x2, y2 = _clip_xyxy(box.x1, box.y1, box.x2, box.y2, W, H)
        return img_bgr[y1:y2, x1:x2].copy(), (x1, y1, x2, y2)

    def landmarks(self, crop_bgr: np.ndarray) -> np.ndarray:
        """(N,2) keypoints in crop pixel coordinates."""
        size = self.model.input_size
        x, meta = preprocess(crop_bgr, size)
        outputs = self.model.run(x)

        first = self.model.output_names[0]
        norm = decode_landmarks(outputs[first], self.num_points, self.layout)
        in_px = norm * np.array([size[0], size[1]], dtype=np.float32)
        pts = meta.points_to_original(in_px)

        if self.debug:
            print(f"[landmarks] {pts.shape[0]} points, crop={crop_bgr.shape[1]}x{crop_bgr.shape[0]}")
        return pts

    def align(self, crop_bgr: np.ndarray) -> np.ndarray:
        aligned, _ = letterbox(crop_bgr, (self.aligned_size, self.aligned_size))
        return aligned

    def align_face(self, img_bgr: np.ndarray, box: FaceBox) -> AlignedFace:
        crop, rect = self.crop_face(img_bgr, box)
        pts = self.landmarks(crop)
        aligned = self.align(crop)
        return AlignedFace(
            image=encode_image(aligned, self.aligned_format),
            box=box,
            crop=rect,
            landmarks=pts,
        )
