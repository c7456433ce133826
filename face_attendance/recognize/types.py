from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import numpy as np


@dataclass
class FaceBox:
    x1: float
    y1: float
    x2: float
    y2: float
    score: float

    @property
    def width(self) -> float:
        return max(0.0, self.x2 - self.x1)

    @property
    def height(self) -> float:
        return max(0.0, self.y2 - self.y1)

    @property
    def area(self) -> float:
        return self.width * self.height

    def xyxy(self) -> Tuple[float, float, float, float]:
        return (self.x1, self.y1, self.x2, self.y2)


@dataclass(frozen=True)
class LetterboxMeta:
    """How an image was fitted into a model tensor, and how to undo it."""
    scale_back: float  # 1 / r
    dx: int
    dy: int
    orig_w: int
    orig_h: int

    def to_original(self, box: FaceBox) -> FaceBox:
        """Map a tensor-space box to original-image space, clamped to the image."""
        x1 = (box.x1 - self.dx) * self.scale_back
        y1 = (box.y1 - self.dy) * self.scale_back
        x2 = (box.x2 - self.dx) * self.scale_back
        y2 = (box.y2 - self.dy) * self.scale_back
        return FaceBox(
            x1=float(min(max(x1, 0.0), self.orig_w)),
            y1=float(min(max(y1, 0.0), self.orig_h)),
            x2=float(min(max(x2, 0.0), self.orig_w)),
            y2=float(min(max(y2, 0.0), self.orig_h)),
            score=box.score,
        )

    def points_to_original(self, pts: np.ndarray) -> np.ndarray:
        """(N,2) tensor-space points -> original space, clamped."""
        out = np.asarray(pts, dtype=np.float32).reshape(-1, 2).copy()
        out[:, 0] = np.clip((out[:, 0] - self.dx) * self.scale_back, 0, self.orig_w)
        out[:, 1] = np.clip((out[:, 1] - self.dy) * self.scale_back, 0, self.orig_h)
        return out


@dataclass
class AlignedFace:
    image: bytes  # encoded aligned_size x aligned_size face
    box: FaceBox  # original-image coords
    crop: Tuple[int, int, int, int]  # integer x1, y1, x2, y2 actually cropped
    landmarks: np.ndarray  # (N,2) float32 in crop pixel coords


@dataclass
class MatchResult:
    employee_id: Optional[str]
    similarity: float
    accepted: bool
    embedding_id: Optional[str] = None

    @property
    def distance(self) -> float:
        return 1.0 - self.similarity


class EventType(str, Enum):
    CHECK_IN = "ENTRADA"
    CHECK_OUT = "SALIDA"


class Reason(str, Enum):
    NO_FACE_DETECTED = "no_face_detected"
    UNRECOGNIZED_FACE = "unrecognized_face"
    EMPLOYEE_NOT_FOUND = "employee_not_found"
    EMPLOYEE_INACTIVE = "employee_inactive"


REASON_MESSAGES = {
    Reason.NO_FACE_DETECTED: "No face detected",
    Reason.UNRECOGNIZED_FACE: "Face not recognized",
    Reason.EMPLOYEE_NOT_FOUND: "Employee not found",
    Reason.EMPLOYEE_INACTIVE: "Employee inactive",
}


@dataclass
class Employee:
    id: str
    name: str
    area: Optional[str] = None
    active: bool = True


@dataclass
class ReferenceImage:
    id: str
    employee_id: str
    uri: Optional[str] = None


@dataclass
class StoredEmbedding:
    id: str
    image_id: str
    employee_id: str
    vector: np.ndarray  # (D,) float32, L2-normalized
    model: str
    version: Optional[str] = None
    norm: Optional[float] = None  # L2 norm before normalization


@dataclass(frozen=True)
class AttendanceEvent:
    id: str
    employee_id: str
    event_type: EventType
    timestamp: datetime
    confidence: float


@dataclass
class IdentificationResult:
    matched: bool
    reason: Optional[Reason] = None
    employee_id: Optional[str] = None
    employee_name: Optional[str] = None
    confidence: Optional[float] = None
    event_type: Optional[EventType] = None
    timestamp: Optional[datetime] = None
    event_id: Optional[str] = None

    @classmethod
    def rejected(cls, reason: Reason, employee_id: Optional[str] = None,
                 confidence: Optional[float] = None) -> "IdentificationResult":
        return cls(matched=False, reason=reason, employee_id=employee_id, confidence=confidence)

    def to_dict(self) -> Dict[str, Any]:
        if not self.matched:
            assert self.reason is not None
            return {
                "matched": False,
                "reason": self.reason.value,
                "message": REASON_MESSAGES[self.reason],
            }
        return {
            "matched": True,
            "employee_id": self.employee_id,
            "employee_name": self.employee_name,
            "confidence": self.confidence,
            "event_type": self.event_type.value if self.event_type else None,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "event_id": self.event_id,
        }


@dataclass
class EnrollmentReport:
    employee_id: str
    processed: int = 0
    created: int = 0
    skipped: int = 0
    failed: List[Tuple[str, str]] = field(default_factory=list)  # (image_id, reason)

    @property
    def failed_image_ids(self) -> List[str]:
        return [image_id for image_id, _ in self.failed]
