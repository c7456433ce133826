"""
ONNX Runtime model handles.

Each model is loaded lazily, exactly once, the first time a stage needs it,
and is shared read-only afterwards. A failed load leaves the handle
unloaded so the next request can retry cleanly.
"""

from __future__ import annotations
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import numpy as np
import onnxruntime as ort

from .config import PipelineConfig
from .errors import InferenceTimeout, ModelInferenceFailed, ModelNotLoaded

SessionFactory = Callable[[Path, List[str]], Any]


def ort_session_factory(model_path: Path, providers: List[str]) -> ort.InferenceSession:
    if not model_path.exists():
        raise FileNotFoundError(f"Model file not found: {model_path}")
    return ort.InferenceSession(str(model_path), providers=providers)


def declared_input_size(shape: Sequence[Any], fallback: Tuple[int, int]) -> Tuple[int, int]:
    """(W, H) from an NCHW input shape; dynamic or missing dims -> fallback."""
    if shape is None or len(shape) != 4:
        return fallback
    h, w = shape[2], shape[3]
    if isinstance(h, (int, np.integer)) and isinstance(w, (int, np.integer)) and h > 0 and w > 0:
        return int(w), int(h)
    return fallback


class OnnxModel:
    def __init__(
        self,
        name: str,
        model_path: Path,
        fallback_input_size: Tuple[int, int],
        providers: Optional[List[str]] = None,
        timeout_s: Optional[float] = 10.0,
        session_factory: Optional[SessionFactory] = None,
        max_workers: int = 4,
        debug: bool = False,
    ):
        self.name = name
        self.model_path = Path(model_path)
        self.fallback_input_size = (int(fallback_input_size[0]), int(fallback_input_size[1]))
        self.providers = list(providers or ["CPUExecutionProvider"])
        self.timeout_s = timeout_s
        self.debug = bool(debug)
        self._factory = session_factory or ort_session_factory
        self._max_workers = max(1, int(max_workers))

        self._lock = threading.Lock()
        self._session = None
        self._input_name: Optional[str] = None
        self._input_size: Tuple[int, int] = self.fallback_input_size
        self._outputs: List[Tuple[str, Tuple[Any, ...]]] = []
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def loaded(self) -> bool:
        return self._session is not None

    def ensure_loaded(self):
        if self._session is not None:
            return self._session
        with self._lock:
            if self._session is None:
                self._load_locked()
        return self._session

    def _load_locked(self) -> None:
        try:
            sess = self._factory(self.model_path, self.providers)
            inputs = sess.get_inputs()
            outputs = sess.get_outputs()
        except Exception as e:
            raise ModelNotLoaded(f"Failed to load {self.name} model {self.model_path}: {e}") from e

        if not inputs or not outputs:
            raise ModelNotLoaded(f"{self.name} model {self.model_path} declares no inputs/outputs")

        input_name = inputs[0].name
        input_size = declared_input_size(inputs[0].shape, self.fallback_input_size)
        out_meta = [(o.name, tuple(o.shape) if o.shape is not None else ()) for o in outputs]

        if self.debug:
            print(f"[runtime] {self.name} model:", self.model_path)
            print(f"[runtime] {self.name} input:", input_name, inputs[0].shape, "-> (W,H) =", input_size)
            for n, s in out_meta:
                print(f"[runtime] {self.name} output:", n, s)

        # session is published last so a half-read model is never visible
        self._input_name = input_name
        self._input_size = input_size
        self._outputs = out_meta
        self._session = sess

    @property
    def input_size(self) -> Tuple[int, int]:
        self.ensure_loaded()
        return self._input_size

    @property
    def outputs(self) -> List[Tuple[str, Tuple[Any, ...]]]:
        self.ensure_loaded()
        return list(self._outputs)

    @property
    def output_names(self) -> List[str]:
        return [n for n, _ in self.outputs]

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix=f"onnx-{self.name}"
                )
            return self._executor

    def run(self, x: np.ndarray) -> Dict[str, np.ndarray]:
        """Run the model on one input tensor; returns {output_name: array}."""
        sess = self.ensure_loaded()
        feeds = {self._input_name: x}

        try:
            if self.timeout_s is None:
                raw = sess.run(None, feeds)
            else:
                future = self._get_executor().submit(sess.run, None, feeds)
                raw = future.result(timeout=self.timeout_s)
        except FutureTimeout as e:
            raise InferenceTimeout(f"{self.name} inference exceeded {self.timeout_s}s") from e
        except Exception as e:
            raise ModelInferenceFailed(f"{self.name} inference failed: {e}") from e

        names = [n for n, _ in self._outputs]
        if len(raw) != len(names):
            raise ModelInferenceFailed(
                f"{self.name} returned {len(raw)} outputs, expected {len(names)}"
            )
        return {n: np.asarray(v) for n, v in zip(names, raw)}

    def close(self) -> None:
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False)
                self._executor = None


class ModelRegistry:
    """The three pipeline models, built from one config and shared by every request."""

    def __init__(self, detector: OnnxModel, landmarks: OnnxModel, embedder: OnnxModel):
        self.detector = detector
        self.landmarks = landmarks
        self.embedder = embedder

    @classmethod
    def from_config(cls, cfg: PipelineConfig, session_factory: Optional[SessionFactory] = None) -> "ModelRegistry":
        def make(name: str, path: Path, size: Tuple[int, int]) -> OnnxModel:
            return OnnxModel(
                name=name,
                model_path=path,
                fallback_input_size=size,
                providers=cfg.providers,
                timeout_s=cfg.inference_timeout_s,
                session_factory=session_factory,
                debug=cfg.debug,
            )

        return cls(
            detector=make("detector", cfg.detector_model, cfg.detector_input_size),
            landmarks=make("landmarks", cfg.landmark_model, cfg.landmark_input_size),
            embedder=make("embedder", cfg.embedding_model, cfg.embedding_input_size),
        )

    def ensure_loaded(self) -> None:
        for m in (self.detector, self.landmarks, self.embedder):
            m.ensure_loaded()

    def close(self) -> None:
        for m in (self.detector, self.landmarks, self.embedder):
            m.close()
