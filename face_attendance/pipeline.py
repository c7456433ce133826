"""
End-to-end identification:

image bytes -> SCRFD main face -> crop + 106 landmarks -> aligned 112x112
-> ArcFace embedding -> cosine match against active employees
-> ENTRADA / SALIDA decision.

One pipeline instance is shared by every request. Models load lazily on the
first call that needs them; the pipeline holds no per-request state.
"""

from __future__ import annotations
from typing import Optional, Tuple
import numpy as np

from .attendance import AttendanceDecider, Clock
from .config import PipelineConfig
from .mqtt_manager import AttendancePublisher
from .preprocess import decode_image
from .recognize.detector import ScrfdDetector
from .recognize.embedder import ArcFaceEmbedderONNX
from .recognize.landmarks import LandmarkAligner
from .recognize.lock_manager import EmployeeLockManager
from .recognize.logger import ActivityLogger
from .recognize.matcher import FaceDBMatcher
from .recognize.types import AlignedFace, IdentificationResult, Reason
from .recognize.utils import l2_normalize
from .runtime import ModelRegistry, SessionFactory
from .storage import AttendanceStore


class IdentificationPipeline:
    def __init__(
        self,
        registry: ModelRegistry,
        store: AttendanceStore,
        cfg: Optional[PipelineConfig] = None,
        decider: Optional[AttendanceDecider] = None,
    ):
        self.cfg = cfg or PipelineConfig()
        self.registry = registry
        self.store = store
        debug = self.cfg.debug

        self.detector = ScrfdDetector(
            registry.detector,
            score_threshold=self.cfg.score_threshold,
            nms_threshold=self.cfg.nms_threshold,
            strides=self.cfg.strides,
            anchors_per_cell=self.cfg.anchors_per_cell,
            stride_outputs=self.cfg.stride_outputs,
            debug=debug,
        )
        self.aligner = LandmarkAligner(
            registry.landmarks,
            num_points=self.cfg.num_landmarks,
            layout=self.cfg.landmark_layout,
            aligned_size=self.cfg.aligned_size,
            aligned_format=self.cfg.aligned_format,
            debug=debug,
        )
        self.embedder = ArcFaceEmbedderONNX(
            registry.embedder,
            embedding_dim=self.cfg.embedding_dim,
            debug=debug,
        )
        self.matcher = FaceDBMatcher(threshold=self.cfg.recognition_threshold)
        self.decider = decider or AttendanceDecider(store, debug=debug)

    @classmethod
    def from_config(
        cls,
        cfg: PipelineConfig,
        store: AttendanceStore,
        session_factory: Optional[SessionFactory] = None,
        clock: Optional[Clock] = None,
        publisher: Optional[AttendancePublisher] = None,
    ) -> "IdentificationPipeline":
        registry = ModelRegistry.from_config(cfg, session_factory=session_factory)
        activity_logger = ActivityLogger(str(cfg.activity_log), echo=cfg.debug) if cfg.activity_log else None
        if publisher is None and cfg.mqtt_broker:
            publisher = AttendancePublisher(cfg.mqtt_broker, cfg.mqtt_port, site_id=cfg.site_id)
        decider = AttendanceDecider(
            store,
            lock_manager=EmployeeLockManager(),
            clock=clock,
            activity_logger=activity_logger,
            publisher=publisher,
            debug=cfg.debug,
        )
        return cls(registry, store, cfg=cfg, decider=decider)

    def ensure_loaded(self) -> None:
        self.registry.ensure_loaded()

    def close(self) -> None:
        self.registry.close()
        if self.decider.publisher is not None:
            self.decider.publisher.stop()

    def detect_and_align(self, image: bytes) -> Optional[AlignedFace]:
        """Aligned main face of the image, or None when no face is found."""
        img = decode_image(image)
        box = self.detector.detect_main_face(img)
        if box is None:
            if self.cfg.debug:
                print("[pipeline] no face")
            return None
        return self.aligner.align_face(img, box)

    def embed_reference(self, image: bytes) -> Optional[Tuple[np.ndarray, float]]:
        """(L2-normalized embedding, raw norm) of the main face, or None when no face is found."""
        aligned = self.detect_and_align(image)
        if aligned is None:
            return None
        raw = self.embedder.embed_raw(aligned.image)
        return l2_normalize(raw), float(np.linalg.norm(raw))

    def identify(self, image: bytes) -> IdentificationResult:
        aligned = self.detect_and_align(image)
        if aligned is None:
            if self.decider.activity_logger is not None:
                self.decider.activity_logger.log_rejection(Reason.NO_FACE_DETECTED)
            return IdentificationResult.rejected(Reason.NO_FACE_DETECTED)

        query = self.embedder.embed(aligned.image)
        match = self.matcher.match(query, self.store.list_active_embeddings())
        if self.cfg.debug:
            print(f"[pipeline] best={match.employee_id} sim={match.similarity:.3f} accepted={match.accepted}")
        return self.decider.decide(match)
