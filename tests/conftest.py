"""
Fake ONNX Runtime sessions and image helpers.

The fake detector "sees" one face whenever the input tensor has any bright
pixel; the fake embedder turns the mean colour of the aligned face into a
vector, so differently coloured photos behave like different people.
"""

from __future__ import annotations
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import cv2
import numpy as np
import pytest

from face_attendance.config import PipelineConfig
from face_attendance.storage import InMemoryStore

DET_SIZE = 64
DET_STRIDES = (8, 16, 32)
# one face at stride 8, cell (row 3, col 3), anchor 0 -> box (12, 12, 44, 44)
FACE_INDEX = (3 * (DET_SIZE // 8) + 3) * 2
FACE_DIST = 2.0


class FakeIO:
    def __init__(self, name: str, shape: Sequence):
        self.name = name
        self.shape = list(shape)


class FakeSession:
    def __init__(self, inputs: List[FakeIO], outputs: List[FakeIO], fn: Callable[[np.ndarray], List[np.ndarray]]):
        self._inputs = inputs
        self._outputs = outputs
        self._fn = fn
        self.calls = 0
        self._lock = threading.Lock()

    def get_inputs(self):
        return self._inputs

    def get_outputs(self):
        return self._outputs

    def run(self, output_names, feeds: Dict[str, np.ndarray]):
        with self._lock:
            self.calls += 1
        x = feeds[self._inputs[0].name]
        return self._fn(x)


def detector_outputs(x: np.ndarray) -> List[np.ndarray]:
    """InsightFace order: scores for 8/16/32, then boxes for 8/16/32."""
    face = float(x.max()) > 0.0
    scores, boxes = [], []
    for s in DET_STRIDES:
        n = (DET_SIZE // s) ** 2 * 2
        logits = np.full((n, 1), -10.0, dtype=np.float32)
        dist = np.ones((n, 4), dtype=np.float32)
        if face and s == 8:
            logits[FACE_INDEX, 0] = 5.0
            dist[FACE_INDEX] = FACE_DIST
        scores.append(logits)
        boxes.append(dist)
    return scores + boxes


def make_detector_session() -> FakeSession:
    outs = []
    for s in DET_STRIDES:
        outs.append(FakeIO(f"score_{s}", [(DET_SIZE // s) ** 2 * 2, 1]))
    for s in DET_STRIDES:
        outs.append(FakeIO(f"bbox_{s}", [(DET_SIZE // s) ** 2 * 2, 4]))
    return FakeSession([FakeIO("input.1", [1, 3, DET_SIZE, DET_SIZE])], outs, detector_outputs)


def make_landmark_session(num_points: int = 106) -> FakeSession:
    def fn(x):
        return [np.full((1, 2 * num_points), 0.5, dtype=np.float32)]
    return FakeSession([FakeIO("data", [1, 3, 32, 32])], [FakeIO("fc1", [1, 2 * num_points])], fn)


def colour_embedding(x: np.ndarray, dim: int = 512) -> np.ndarray:
    v = np.zeros((1, dim), dtype=np.float32)
    v[0, :3] = x[0].reshape(3, -1).mean(axis=1)
    v[0, 3] = 1.0
    return v


def make_embedder_session(dim: int = 512, fn: Optional[Callable] = None) -> FakeSession:
    fn = fn or (lambda x: [colour_embedding(x, dim) * 7.0])
    return FakeSession([FakeIO("input.1", [1, 3, 112, 112])], [FakeIO("683", [1, dim])], fn)


class FakeSessionFactory:
    """session_factory(path, providers) picking a fake by model file name."""

    def __init__(self, embedder: Optional[FakeSession] = None):
        self.sessions = {
            "detector": make_detector_session(),
            "landmarks": make_landmark_session(),
            "embedder": embedder or make_embedder_session(),
        }
        self.loads: List[Path] = []

    def __call__(self, path: Path, providers):
        self.loads.append(Path(path))
        name = Path(path).name
        if "scrfd" in name:
            return self.sessions["detector"]
        if "2d106" in name:
            return self.sessions["landmarks"]
        if "glint" in name:
            return self.sessions["embedder"]
        raise FileNotFoundError(path)


class StepClock:
    def __init__(self, start: Optional[datetime] = None, step: timedelta = timedelta(minutes=1)):
        self.now = start or datetime(2024, 5, 6, 8, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        t = self.now
        self.now = self.now + self.step
        return t


def solid_png(bgr=(0, 0, 255), size: int = DET_SIZE) -> bytes:
    img = np.zeros((size, size, 3), dtype=np.uint8)
    img[:] = bgr
    ok, enc = cv2.imencode(".png", img)
    assert ok
    return enc.tobytes()


RED = (0, 0, 255)
BLUE = (255, 0, 0)
GREEN = (0, 255, 0)
BLACK = (0, 0, 0)


@pytest.fixture
def cfg() -> PipelineConfig:
    return PipelineConfig(
        activity_log=None,
        inference_timeout_s=5.0,
        aligned_format=".png",
    )


@pytest.fixture
def session_factory() -> FakeSessionFactory:
    return FakeSessionFactory()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()
