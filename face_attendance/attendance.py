"""
Attendance decision: turn an accepted match into the next ENTRADA / SALIDA
record for that employee.

The decider re-reads the employee at decision time. An employee that was
deleted or deactivated after its embeddings were loaded gets a rejection
and nothing is written.
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Callable, Optional

from .mqtt_manager import AttendancePublisher
from .recognize.lock_manager import EmployeeLockManager
from .recognize.logger import ActivityLogger
from .recognize.types import (
    AttendanceEvent,
    EventType,
    IdentificationResult,
    MatchResult,
    Reason,
)
from .storage import AttendanceStore

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def next_event_type(last_event: Optional[AttendanceEvent]) -> EventType:
    """No history or last SALIDA -> ENTRADA; last ENTRADA -> SALIDA."""
    if last_event is None or last_event.event_type == EventType.CHECK_OUT:
        return EventType.CHECK_IN
    return EventType.CHECK_OUT


class AttendanceDecider:
    def __init__(
        self,
        store: AttendanceStore,
        lock_manager: Optional[EmployeeLockManager] = None,
        clock: Optional[Clock] = None,
        activity_logger: Optional[ActivityLogger] = None,
        publisher: Optional[AttendancePublisher] = None,
        debug: bool = False,
    ):
        self.store = store
        self.locks = lock_manager or EmployeeLockManager()
        self.clock = clock or utc_now
        self.activity_logger = activity_logger
        self.publisher = publisher
        self.debug = bool(debug)

    def _reject(self, reason: Reason, employee_id: Optional[str] = None,
                confidence: Optional[float] = None) -> IdentificationResult:
        if self.activity_logger is not None:
            self.activity_logger.log_rejection(reason, employee_id=employee_id, confidence=confidence)
        return IdentificationResult.rejected(reason, employee_id=employee_id, confidence=confidence)

    def decide(self, match: MatchResult) -> IdentificationResult:
        if not match.accepted or match.employee_id is None:
            return self._reject(Reason.UNRECOGNIZED_FACE, confidence=match.similarity)

        employee_id = match.employee_id
        with self.locks.hold(employee_id):
            employee = self.store.get_employee(employee_id)
            if employee is None:
                return self._reject(Reason.EMPLOYEE_NOT_FOUND, employee_id, match.similarity)
            if not employee.active:
                return self._reject(Reason.EMPLOYEE_INACTIVE, employee_id, match.similarity)

            event_type = next_event_type(self.store.latest_event(employee_id))
            event = self.store.create_event(
                employee_id=employee_id,
                event_type=event_type,
                confidence=match.similarity,
                timestamp=self.clock(),
            )

        if self.debug:
            print(f"[attendance] {employee_id} -> {event.event_type.value} sim={match.similarity:.3f}")
        if self.activity_logger is not None:
            self.activity_logger.log_attendance(event, employee_name=employee.name)
        if self.publisher is not None:
            self.publisher.publish_event(event, employee)

        return IdentificationResult(
            matched=True,
            employee_id=employee_id,
            employee_name=employee.name,
            confidence=event.confidence,
            event_type=event.event_type,
            timestamp=event.timestamp,
            event_id=event.id,
        )
