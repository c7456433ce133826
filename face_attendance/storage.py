"""
Storage collaborator.

The pipeline only talks to `AttendanceStore`. `InMemoryStore` is the
reference implementation used by the command-line tools and the tests; it
can be saved to / loaded from disk as an .npz of vectors plus a JSON sidecar.
"""

from __future__ import annotations
import base64
import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union
import numpy as np

from .recognize.types import (
    AttendanceEvent,
    Employee,
    EventType,
    ReferenceImage,
    StoredEmbedding,
)


class AttendanceStore(ABC):
    @abstractmethod
    def get_employee(self, employee_id: str) -> Optional[Employee]:
        ...

    @abstractmethod
    def list_employees(self) -> List[Employee]:
        ...

    @abstractmethod
    def list_active_embeddings(self) -> List[StoredEmbedding]:
        """Embeddings of active employees, ascending by embedding id."""

    @abstractmethod
    def latest_event(self, employee_id: str) -> Optional[AttendanceEvent]:
        ...

    @abstractmethod
    def create_event(self, employee_id: str, event_type: EventType, confidence: float,
                     timestamp: datetime) -> AttendanceEvent:
        ...

    @abstractmethod
    def list_images(self, employee_id: str) -> List[ReferenceImage]:
        ...

    @abstractmethod
    def embedded_image_ids(self, image_ids: Iterable[str]) -> Set[str]:
        """Subset of `image_ids` that already have a stored vector."""

    @abstractmethod
    def create_embedding(self, image_id: str, vector: np.ndarray, model: str,
                         version: Optional[str] = None, norm: Optional[float] = None) -> StoredEmbedding:
        ...

    @abstractmethod
    def read_image(self, image: ReferenceImage) -> bytes:
        ...


class InMemoryStore(AttendanceStore):
    def __init__(self):
        self._lock = threading.RLock()
        self._employees: Dict[str, Employee] = {}
        self._images: Dict[str, ReferenceImage] = {}
        self._image_data: Dict[str, bytes] = {}
        self._embeddings: Dict[str, StoredEmbedding] = {}
        self._events: List[AttendanceEvent] = []
        self._counters = {"img": 0, "emb": 0, "evt": 0}

    def _next_id(self, kind: str) -> str:
        self._counters[kind] += 1
        return f"{kind}_{self._counters[kind]:08d}"

    # -------------------------
    # Employees / images
    # -------------------------

    def add_employee(self, employee_id: str, name: str, area: Optional[str] = None,
                     active: bool = True) -> Employee:
        with self._lock:
            if employee_id in self._employees:
                raise ValueError(f"Employee already exists: {employee_id}")
            emp = Employee(id=employee_id, name=name, area=area, active=active)
            self._employees[employee_id] = emp
            return emp

    def set_active(self, employee_id: str, active: bool) -> Employee:
        with self._lock:
            emp = self._employees.get(employee_id)
            if emp is None:
                raise KeyError(f"Employee not found: {employee_id}")
            emp.active = bool(active)
            return emp

    def toggle_active(self, employee_id: str) -> Employee:
        with self._lock:
            emp = self._employees.get(employee_id)
            if emp is None:
                raise KeyError(f"Employee not found: {employee_id}")
            return self.set_active(employee_id, not emp.active)

    def remove_employee(self, employee_id: str) -> None:
        with self._lock:
            self._employees.pop(employee_id, None)
            for img_id in [i for i, img in self._images.items() if img.employee_id == employee_id]:
                self._images.pop(img_id)
                self._image_data.pop(img_id, None)
            for emb_id in [e for e, emb in self._embeddings.items() if emb.employee_id == employee_id]:
                self._embeddings.pop(emb_id)
            self._events = [ev for ev in self._events if ev.employee_id != employee_id]

    def add_image(self, employee_id: str, data: Optional[bytes] = None,
                  uri: Optional[str] = None) -> ReferenceImage:
        if data is None and uri is None:
            raise ValueError("add_image needs image bytes or a uri")
        with self._lock:
            if employee_id not in self._employees:
                raise KeyError(f"Employee not found: {employee_id}")
            img = ReferenceImage(id=self._next_id("img"), employee_id=employee_id, uri=uri)
            self._images[img.id] = img
            if data is not None:
                self._image_data[img.id] = bytes(data)
            return img

    def get_employee(self, employee_id: str) -> Optional[Employee]:
        with self._lock:
            return self._employees.get(employee_id)

    def list_employees(self) -> List[Employee]:
        with self._lock:
            return list(self._employees.values())

    def list_images(self, employee_id: str) -> List[ReferenceImage]:
        with self._lock:
            return [img for img in self._images.values() if img.employee_id == employee_id]

    def read_image(self, image: ReferenceImage) -> bytes:
        with self._lock:
            data = self._image_data.get(image.id)
        if data is not None:
            return data
        if image.uri is None:
            raise FileNotFoundError(f"No data stored for image {image.id}")
        return Path(image.uri).read_bytes()

    # -------------------------
    # Embeddings
    # -------------------------

    def embedded_image_ids(self, image_ids: Iterable[str]) -> Set[str]:
        wanted = set(image_ids)
        with self._lock:
            return {e.image_id for e in self._embeddings.values() if e.image_id in wanted}

    def create_embedding(self, image_id: str, vector: np.ndarray, model: str,
                         version: Optional[str] = None, norm: Optional[float] = None) -> StoredEmbedding:
        with self._lock:
            img = self._images.get(image_id)
            if img is None:
                raise KeyError(f"Image not found: {image_id}")
            emb = StoredEmbedding(
                id=self._next_id("emb"),
                image_id=image_id,
                employee_id=img.employee_id,
                vector=np.asarray(vector, dtype=np.float32).reshape(-1).copy(),
                model=model,
                version=version,
                norm=norm,
            )
            self._embeddings[emb.id] = emb
            return emb

    def list_embeddings(self, employee_id: str) -> List[StoredEmbedding]:
        with self._lock:
            return sorted(
                (e for e in self._embeddings.values() if e.employee_id == employee_id),
                key=lambda e: e.id,
            )

    def list_active_embeddings(self) -> List[StoredEmbedding]:
        with self._lock:
            active = {eid for eid, emp in self._employees.items() if emp.active}
            return sorted(
                (e for e in self._embeddings.values() if e.employee_id in active),
                key=lambda e: e.id,
            )

    # -------------------------
    # Attendance events
    # -------------------------

    def latest_event(self, employee_id: str) -> Optional[AttendanceEvent]:
        with self._lock:
            own = [ev for ev in self._events if ev.employee_id == employee_id]
        if not own:
            return None
        return max(own, key=lambda ev: (ev.timestamp, ev.id))

    def create_event(self, employee_id: str, event_type: EventType, confidence: float,
                     timestamp: datetime) -> AttendanceEvent:
        with self._lock:
            if employee_id not in self._employees:
                raise KeyError(f"Employee not found: {employee_id}")
            ev = AttendanceEvent(
                id=self._next_id("evt"),
                employee_id=employee_id,
                event_type=EventType(event_type),
                timestamp=timestamp,
                confidence=float(confidence),
            )
            self._events.append(ev)
            return ev

    def list_events(self, employee_id: Optional[str] = None, start: Optional[datetime] = None,
                    end: Optional[datetime] = None) -> List[AttendanceEvent]:
        """Events, newest first, optionally filtered by employee and [start, end]."""
        with self._lock:
            out = list(self._events)
        if employee_id is not None:
            out = [ev for ev in out if ev.employee_id == employee_id]
        if start is not None:
            out = [ev for ev in out if ev.timestamp >= start]
        if end is not None:
            out = [ev for ev in out if ev.timestamp <= end]
        return sorted(out, key=lambda ev: (ev.timestamp, ev.id), reverse=True)

    # -------------------------
    # Disk persistence
    # -------------------------

    @staticmethod
    def _meta_path(npz_path: Path) -> Path:
        return npz_path.with_suffix(".json")

    def save(self, path: Union[str, Path]) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            vectors = {e.id: e.vector.astype(np.float32) for e in self._embeddings.values()}
            meta = {
                "updated_at": datetime.now().isoformat(),
                "counters": dict(self._counters),
                "employees": [
                    {"id": e.id, "name": e.name, "area": e.area, "active": e.active}
                    for e in self._employees.values()
                ],
                "images": [
                    {
                        "id": i.id,
                        "employee_id": i.employee_id,
                        "uri": i.uri,
                        "data": base64.b64encode(self._image_data[i.id]).decode("ascii")
                        if i.id in self._image_data else None,
                    }
                    for i in self._images.values()
                ],
                "embeddings": [
                    {
                        "id": e.id,
                        "image_id": e.image_id,
                        "employee_id": e.employee_id,
                        "model": e.model,
                        "version": e.version,
                        "norm": e.norm,
                    }
                    for e in self._embeddings.values()
                ],
                "events": [
                    {
                        "id": ev.id,
                        "employee_id": ev.employee_id,
                        "event_type": ev.event_type.value,
                        "timestamp": ev.timestamp.isoformat(),
                        "confidence": ev.confidence,
                    }
                    for ev in self._events
                ],
                "note": "Embeddings are L2-normalized vectors. Matching uses cosine similarity.",
            }
        with open(path, "wb") as f:
            np.savez(f, **vectors)
        self._meta_path(path).write_text(json.dumps(meta, indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Union[str, Path]) -> "InMemoryStore":
        """Load a store saved with `save`. A missing file gives an empty store."""
        path = Path(path)
        store = cls()
        meta_path = cls._meta_path(path)
        if not meta_path.exists():
            return store

        meta = json.loads(meta_path.read_text(encoding="utf-8"))
        vectors: Dict[str, np.ndarray] = {}
        if path.exists():
            with np.load(str(path), allow_pickle=False) as data:
                vectors = {k: np.asarray(data[k], dtype=np.float32).reshape(-1) for k in data.files}

        store._counters.update(meta.get("counters", {}))
        for e in meta.get("employees", []):
            store._employees[e["id"]] = Employee(
                id=e["id"], name=e["name"], area=e.get("area"), active=bool(e.get("active", True))
            )
        for i in meta.get("images", []):
            store._images[i["id"]] = ReferenceImage(id=i["id"], employee_id=i["employee_id"], uri=i.get("uri"))
            if i.get("data"):
                store._image_data[i["id"]] = base64.b64decode(i["data"])
        for e in meta.get("embeddings", []):
            if e["id"] not in vectors:
                continue
            store._embeddings[e["id"]] = StoredEmbedding(
                id=e["id"],
                image_id=e["image_id"],
                employee_id=e["employee_id"],
                vector=vectors[e["id"]],
                model=e["model"],
                version=e.get("version"),
                norm=e.get("norm"),
            )
        for ev in meta.get("events", []):
            store._events.append(
                AttendanceEvent(
                    id=ev["id"],
                    employee_id=ev["employee_id"],
                    event_type=EventType(ev["event_type"]),
                    timestamp=datetime.fromisoformat(ev["timestamp"]),
                    confidence=float(ev["confidence"]),
                )
            )
        return store
