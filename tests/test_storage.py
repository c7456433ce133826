from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from face_attendance.recognize.types import EventType
from face_attendance.storage import InMemoryStore

T0 = datetime(2024, 5, 6, 8, 0, tzinfo=timezone.utc)


def _filled():
    store = InMemoryStore()
    store.add_employee("E1", "Ana", area="Ops")
    store.add_employee("E2", "Luis")
    i1 = store.add_image("E1", data=b"\x89PNG-one")
    i2 = store.add_image("E2", uri="photos/luis.jpg")
    store.create_embedding(i1.id, np.array([3.0, 4.0]), model="m", version="1", norm=5.0)
    store.create_embedding(i2.id, np.array([0.0, 1.0]), model="m")
    store.create_event("E1", EventType.CHECK_IN, 0.91, T0)
    store.create_event("E1", EventType.CHECK_OUT, 0.88, T0 + timedelta(hours=8))
    return store


def test_ids_are_ordered_and_embeddings_sorted():
    store = _filled()
    ids = [e.id for e in store.list_active_embeddings()]
    assert ids == sorted(ids)
    assert ids[0] == "emb_00000001"


def test_inactive_employees_are_excluded_from_corpus():
    store = _filled()
    store.set_active("E2", False)
    assert {e.employee_id for e in store.list_active_embeddings()} == {"E1"}
    store.toggle_active("E2")
    assert store.get_employee("E2").active


def test_latest_event_and_filters():
    store = _filled()
    assert store.latest_event("E1").event_type == EventType.CHECK_OUT
    assert store.latest_event("E2") is None

    events = store.list_events("E1")
    assert [e.event_type for e in events] == [EventType.CHECK_OUT, EventType.CHECK_IN]
    assert len(store.list_events(start=T0 + timedelta(hours=1))) == 1
    assert len(store.list_events(end=T0)) == 1


def test_create_event_for_unknown_employee_fails():
    with pytest.raises(KeyError):
        InMemoryStore().create_event("X", EventType.CHECK_IN, 0.9, T0)


def test_add_image_needs_data_or_uri():
    store = InMemoryStore()
    store.add_employee("E1", "Ana")
    with pytest.raises(ValueError):
        store.add_image("E1")


def test_read_image_from_bytes_and_uri(tmp_path):
    store = InMemoryStore()
    store.add_employee("E1", "Ana")
    photo = tmp_path / "a.jpg"
    photo.write_bytes(b"abc")
    a = store.add_image("E1", data=b"xyz")
    b = store.add_image("E1", uri=str(photo))
    assert store.read_image(a) == b"xyz"
    assert store.read_image(b) == b"abc"


def test_remove_employee_cascades():
    store = _filled()
    store.remove_employee("E1")
    assert store.get_employee("E1") is None
    assert store.list_images("E1") == []
    assert store.list_embeddings("E1") == []
    assert store.list_events("E1") == []


def test_save_and_load(tmp_path):
    store = _filled()
    path = tmp_path / "db" / "attendance.npz"
    store.save(path)
    assert path.exists()
    assert path.with_suffix(".json").exists()

    loaded = InMemoryStore.load(path)
    assert loaded.get_employee("E1").area == "Ops"
    embs = loaded.list_active_embeddings()
    assert [e.id for e in embs] == [e.id for e in store.list_active_embeddings()]
    assert np.allclose(embs[0].vector, [3.0, 4.0])
    assert embs[0].norm == 5.0
    img = loaded.list_images("E1")[0]
    assert loaded.read_image(img) == b"\x89PNG-one"
    assert loaded.latest_event("E1").timestamp == T0 + timedelta(hours=8)

    # counters survive, so new ids never collide
    new = loaded.add_image("E2", data=b"z")
    assert new.id == "img_00000003"


def test_load_missing_file_gives_empty_store(tmp_path):
    store = InMemoryStore.load(tmp_path / "nothing.npz")
    assert store.list_employees() == []
