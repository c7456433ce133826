import threading

import pytest

from face_attendance.attendance import AttendanceDecider, next_event_type
from face_attendance.recognize.lock_manager import EmployeeLockManager
from face_attendance.recognize.logger import ActivityLogger
from face_attendance.recognize.types import EventType, MatchResult, Reason


def _match(employee_id="E1", sim=0.9):
    return MatchResult(employee_id=employee_id, similarity=sim, accepted=True, embedding_id="emb_1")


def test_next_event_type_table(store, clock):
    store.add_employee("E1", "Ana")
    assert next_event_type(None) == EventType.CHECK_IN
    ev_in = store.create_event("E1", EventType.CHECK_IN, 0.9, clock())
    assert next_event_type(ev_in) == EventType.CHECK_OUT
    ev_out = store.create_event("E1", EventType.CHECK_OUT, 0.9, clock())
    assert next_event_type(ev_out) == EventType.CHECK_IN


def test_events_alternate_per_employee(store, clock):
    store.add_employee("E1", "Ana")
    store.add_employee("E2", "Luis")
    decider = AttendanceDecider(store, clock=clock)

    types_e1 = [decider.decide(_match("E1")).event_type for _ in range(4)]
    first_e2 = decider.decide(_match("E2"))

    assert types_e1 == [EventType.CHECK_IN, EventType.CHECK_OUT, EventType.CHECK_IN, EventType.CHECK_OUT]
    assert first_e2.event_type == EventType.CHECK_IN
    assert first_e2.employee_name == "Luis"


def test_result_carries_event_fields(store, clock):
    store.add_employee("E1", "Ana")
    result = AttendanceDecider(store, clock=clock).decide(_match(sim=0.83))

    assert result.matched
    assert result.confidence == pytest.approx(0.83)
    assert result.event_id == store.latest_event("E1").id
    d = result.to_dict()
    assert d["event_type"] == "ENTRADA"
    assert d["timestamp"].startswith("2024-05-06T08:00")


def test_inactive_employee_is_rejected_without_write(store, clock):
    store.add_employee("E1", "Ana", active=False)
    result = AttendanceDecider(store, clock=clock).decide(_match())

    assert not result.matched
    assert result.reason == Reason.EMPLOYEE_INACTIVE
    assert store.list_events() == []


def test_missing_employee_is_rejected_without_write(store, clock):
    result = AttendanceDecider(store, clock=clock).decide(_match("GONE"))
    assert result.reason == Reason.EMPLOYEE_NOT_FOUND
    assert store.list_events() == []


def test_unaccepted_match_is_unrecognized(store):
    result = AttendanceDecider(store).decide(MatchResult(None, 0.3, False))
    assert result.reason == Reason.UNRECOGNIZED_FACE
    assert result.to_dict() == {"matched": False, "reason": "unrecognized_face", "message": "Face not recognized"}


def test_concurrent_decisions_never_repeat_a_type(store):
    store.add_employee("E1", "Ana")
    decider = AttendanceDecider(store, lock_manager=EmployeeLockManager())
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        decider.decide(_match())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    events = sorted(store.list_events("E1"), key=lambda e: e.id)
    assert len(events) == 8
    for prev, cur in zip(events, events[1:]):
        assert prev.event_type != cur.event_type
    assert events[0].event_type == EventType.CHECK_IN


def test_lock_manager_hands_out_one_lock_per_employee():
    locks = EmployeeLockManager()
    assert locks.lock_for("E1") is locks.lock_for("E1")
    assert locks.lock_for("E1") is not locks.lock_for("E2")
    with locks.hold("E1"):
        assert locks.is_locked("E1")
        assert not locks.is_locked("E2")
    assert not locks.is_locked("E1")
    assert locks.known_employees() == {"E1", "E2"}


class RecordingPublisher:
    def __init__(self):
        self.events = []

    def publish_event(self, event, employee=None):
        self.events.append((event, employee))
        return True


def test_recorded_events_are_journaled_and_published(store, clock, tmp_path):
    store.add_employee("E1", "Ana")
    journal = tmp_path / "activity.txt"
    publisher = RecordingPublisher()
    decider = AttendanceDecider(
        store, clock=clock, activity_logger=ActivityLogger(str(journal), echo=False), publisher=publisher
    )

    decider.decide(_match())
    decider.decide(MatchResult(None, 0.2, False))

    lines = journal.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert "Ana (E1): ENTRADA" in lines[0]
    assert "rejected: unrecognized_face" in lines[1]
    assert len(publisher.events) == 1
    assert publisher.events[0][1].name == "Ana"
