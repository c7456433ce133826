import threading
import time
from pathlib import Path

import numpy as np
import pytest

from face_attendance.errors import InferenceTimeout, ModelInferenceFailed, ModelNotLoaded
from face_attendance.runtime import ModelRegistry, OnnxModel, declared_input_size

from conftest import FakeIO, FakeSession, FakeSessionFactory


def _session(fn=None, shape=(1, 3, 8, 8)):
    fn = fn or (lambda x: [np.zeros((1, 4), dtype=np.float32)])
    return FakeSession([FakeIO("in", list(shape))], [FakeIO("out", [1, 4])], fn)


def test_declared_input_size():
    assert declared_input_size([1, 3, 640, 640], (1, 1)) == (640, 640)
    assert declared_input_size([1, 3, 480, 640], (1, 1)) == (640, 480)
    assert declared_input_size(["N", 3, "H", "W"], (112, 112)) == (112, 112)
    assert declared_input_size([1, 3, -1, -1], (192, 192)) == (192, 192)
    assert declared_input_size(None, (5, 6)) == (5, 6)


def test_model_loads_once_under_concurrency():
    loads = []

    def factory(path, providers):
        loads.append(path)
        time.sleep(0.05)
        return _session()

    model = OnnxModel("m", Path("m.onnx"), (8, 8), session_factory=factory)
    threads = [threading.Thread(target=model.ensure_loaded) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(loads) == 1
    assert model.loaded


def test_failed_load_leaves_model_unloaded_and_retryable():
    attempts = []

    def factory(path, providers):
        attempts.append(path)
        if len(attempts) == 1:
            raise RuntimeError("corrupt model")
        return _session()

    model = OnnxModel("m", Path("m.onnx"), (8, 8), session_factory=factory)
    with pytest.raises(ModelNotLoaded) as exc:
        model.ensure_loaded()
    assert isinstance(exc.value.__cause__, RuntimeError)
    assert not model.loaded

    model.ensure_loaded()
    assert model.loaded
    assert len(attempts) == 2


def test_missing_model_file_is_model_not_loaded(tmp_path):
    model = OnnxModel("m", tmp_path / "missing.onnx", (8, 8))
    with pytest.raises(ModelNotLoaded):
        model.run(np.zeros((1, 3, 8, 8), dtype=np.float32))
    assert not model.loaded


def test_run_returns_named_outputs_and_uses_declared_size():
    model = OnnxModel("m", Path("m.onnx"), (1, 1), session_factory=lambda p, pr: _session(shape=(1, 3, 16, 32)))
    out = model.run(np.zeros((1, 3, 16, 32), dtype=np.float32))
    assert set(out) == {"out"}
    assert model.input_size == (32, 16)


def test_inference_timeout():
    def slow(x):
        time.sleep(0.5)
        return [np.zeros((1, 4), dtype=np.float32)]

    model = OnnxModel("m", Path("m.onnx"), (8, 8), timeout_s=0.05, session_factory=lambda p, pr: _session(slow))
    try:
        with pytest.raises(InferenceTimeout):
            model.run(np.zeros((1, 3, 8, 8), dtype=np.float32))
    finally:
        model.close()


def test_inference_error_is_wrapped():
    def boom(x):
        raise RuntimeError("bad shape")

    model = OnnxModel("m", Path("m.onnx"), (8, 8), timeout_s=None, session_factory=lambda p, pr: _session(boom))
    with pytest.raises(ModelInferenceFailed):
        model.run(np.zeros((1, 3, 8, 8), dtype=np.float32))


def test_output_count_mismatch_is_reported():
    model = OnnxModel("m", Path("m.onnx"), (8, 8), timeout_s=None, session_factory=lambda p, pr: _session(lambda x: []))
    with pytest.raises(ModelInferenceFailed):
        model.run(np.zeros((1, 3, 8, 8), dtype=np.float32))


def test_registry_is_lazy(cfg):
    factory = FakeSessionFactory()
    registry = ModelRegistry.from_config(cfg, session_factory=factory)
    assert factory.loads == []
    assert not registry.detector.loaded

    registry.ensure_loaded()
    assert [p.name for p in factory.loads] == ["scrfd_10g_bnkps.onnx", "2d106det.onnx", "glintr100.onnx"]
    registry.close()
