from __future__ import annotations
from typing import Union
import cv2
import numpy as np

from ..errors import EmbeddingExtractionError
from ..preprocess import decode_image, to_tensor
from ..runtime import OnnxModel
from .utils import l2_normalize


class ArcFaceEmbedderONNX:
    """
    ArcFace-style ONNX embedder (glintr100.onnx).
    Input: aligned 112x112 face, BGR array or encoded bytes
           -> internally RGB + (x-127.5)/128, NCHW float32.
    Output: (1,D) or (D,), returned L2-normalized.
    """
    def __init__(self, model: OnnxModel, embedding_dim: int = 512, debug: bool = False):
        self.model = model
        self.embedding_dim = int(embedding_dim)
        self.debug = bool(debug)

    def _preprocess(self, aligned_bgr: np.ndarray) -> np.ndarray:
        in_w, in_h = self.model.input_size
        img = aligned_bgr
        if img.shape[1] != in_w or img.shape[0] != in_h:
            img = cv2.resize(img, (in_w, in_h), interpolation=cv2.INTER_LINEAR)
        return to_tensor(img)

    def embed_raw(self, aligned: Union[bytes, np.ndarray]) -> np.ndarray:
        """Un-normalized model output as a flat (D,) vector."""
        img = decode_image(aligned) if isinstance(aligned, (bytes, bytearray)) else aligned
        x = self._preprocess(img)
        outputs = self.model.run(x)
        if not outputs:
            raise EmbeddingExtractionError("Embedding model returned no output")

        y = outputs[self.model.output_names[0]]
        v = np.asarray(y, dtype=np.float32).reshape(-1)
        if v.size != self.embedding_dim:
            raise EmbeddingExtractionError(
                f"Embedding output has {v.size} values (shape {np.shape(y)}), expected {self.embedding_dim}"
            )
        if not np.all(np.isfinite(v)):
            raise EmbeddingExtractionError("Embedding output contains NaN/Inf")

        if self.debug:
            print(f"[embed] dim={v.size} norm(before L2)={float(np.linalg.norm(v)):.3f}")
        return v

    def embed(self, aligned: Union[bytes, np.ndarray]) -> np.ndarray:
        return l2_normalize(self.embed_raw(aligned))
