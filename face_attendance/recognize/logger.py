import threading
import time
from pathlib import Path
from typing import Optional

from .types import AttendanceEvent, Reason


class ActivityLogger:
    """
    Attendance journal: one human-readable line per recorded event,
    rejected identification or failed enrollment photo.
    """
    def __init__(self, log_file_path: str = "data/attendance_activity.txt", echo: bool = True):
        self.log_file_path = Path(log_file_path)
        self.log_file_path.parent.mkdir(parents=True, exist_ok=True)
        self.echo = bool(echo)
        self._lock = threading.Lock()

    def log_activity(self, subject: str, activity: str):
        """Log an activity with timestamp to the file."""
        timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
        log_entry = f"[{timestamp}] {subject}: {activity}\n"

        try:
            with self._lock:
                with open(self.log_file_path, "a", encoding="utf-8") as f:
                    f.write(log_entry)
        except OSError as e:
            print(f"[ActivityLogger] Error writing to log: {e}")

        if self.echo:
            print(f"[Activity Log] {subject}: {activity}")

    def log_attendance(self, event: AttendanceEvent, employee_name: Optional[str] = None):
        who = f"{employee_name} ({event.employee_id})" if employee_name else event.employee_id
        self.log_activity(
            who,
            f"{event.event_type.value} at {event.timestamp.isoformat()} (confidence {event.confidence:.3f})",
        )

    def log_rejection(self, reason: Reason, employee_id: Optional[str] = None, confidence: Optional[float] = None):
        conf = f" (best similarity {confidence:.3f})" if confidence is not None else ""
        self.log_activity(employee_id or "unknown", f"rejected: {reason.value}{conf}")

    def log_enrollment_failure(self, employee_id: str, image_id: str, reason: str):
        self.log_activity(employee_id, f"enrollment failed for image {image_id}: {reason}")
