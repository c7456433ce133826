# face_attendance/enroll.py
"""
enroll.py
Enrollment tool: computes one stored embedding per reference image of an
employee, using the same pipeline as identification:
SCRFD detection -> 106pt landmarks + crop -> aligned 112x112 -> ArcFace embedding

Re-enroll behavior:
- Images that already have a stored embedding are skipped, so running the
  tool again only processes newly added photos.
- A photo without a usable face is reported as failed; the rest continue.

Run:
python -m face_attendance.enroll --db data/db/attendance.npz --employee E1
python -m face_attendance.enroll --db data/db/attendance.npz --employee E1 --name "Ana" --images a.jpg b.jpg
python -m face_attendance.enroll --db data/db/attendance.npz            (all active employees)

Outputs:
- data/db/attendance.npz (embedding id -> vector)
- data/db/attendance.json (employees, images, embedding metadata, events)
"""

from __future__ import annotations
import argparse
from pathlib import Path
from typing import List, Optional

from .config import PipelineConfig, load_config
from .errors import EnrollmentError, FaceAttendanceError
from .pipeline import IdentificationPipeline
from .recognize.logger import ActivityLogger
from .recognize.types import EnrollmentReport, Reason
from .storage import AttendanceStore, InMemoryStore


class Enroller:
    def __init__(
        self,
        pipeline: IdentificationPipeline,
        store: AttendanceStore,
        cfg: Optional[PipelineConfig] = None,
        activity_logger: Optional[ActivityLogger] = None,
    ):
        self.pipeline = pipeline
        self.store = store
        self.cfg = cfg or pipeline.cfg
        self.activity_logger = activity_logger

    def _fail(self, report: EnrollmentReport, image_id: str, reason: str) -> None:
        report.failed.append((image_id, reason))
        if self.activity_logger is not None:
            self.activity_logger.log_enrollment_failure(report.employee_id, image_id, reason)
        if self.cfg.debug:
            print(f"[enroll] {report.employee_id}/{image_id} failed: {reason}")

    def enroll_employee(self, employee_id: str) -> EnrollmentReport:
        employee = self.store.get_employee(employee_id)
        if employee is None:
            raise EnrollmentError(f"Employee not found: {employee_id}")

        images = self.store.list_images(employee_id)
        report = EnrollmentReport(employee_id=employee_id)
        done = self.store.embedded_image_ids(img.id for img in images)

        for img in images:
            if img.id in done:
                report.skipped += 1
                continue
            report.processed += 1

            try:
                data = self.store.read_image(img)
                result = self.pipeline.embed_reference(data)
            except (FaceAttendanceError, OSError) as e:
                self._fail(report, img.id, f"{type(e).__name__}: {e}")
                continue

            if result is None:
                self._fail(report, img.id, Reason.NO_FACE_DETECTED.value)
                continue

            vector, norm = result
            self.store.create_embedding(
                img.id,
                vector,
                model=self.cfg.embedding_model_name,
                version=self.cfg.embedding_model_version,
                norm=norm,
            )
            report.created += 1

        if self.cfg.debug:
            print(
                f"[enroll] {employee_id}: processed={report.processed} created={report.created} "
                f"skipped={report.skipped} failed={len(report.failed)}"
            )
        return report

    def enroll_all(self) -> List[EnrollmentReport]:
        return [self.enroll_employee(e.id) for e in self.store.list_employees() if e.active]


def print_report(report: EnrollmentReport) -> None:
    print(
        f"{report.employee_id}: processed={report.processed} created={report.created} "
        f"skipped={report.skipped} failed={len(report.failed)}"
    )
    for image_id, reason in report.failed:
        print(f"  - {image_id}: {reason}")


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Compute reference embeddings for employees.")
    p.add_argument("--db", type=Path, default=Path("data/db/attendance.npz"), help="store file (.npz + .json sidecar)")
    p.add_argument("--config", type=Path, default=None, help="JSON config overrides")
    p.add_argument("--employee", default=None, help="employee id; all active employees when omitted")
    p.add_argument("--name", default=None, help="create the employee with this name if missing")
    p.add_argument("--area", default=None)
    p.add_argument("--images", nargs="*", type=Path, default=[], help="reference photos to register first")
    p.add_argument("--debug", action="store_true")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    cfg = load_config(args.config)
    cfg.debug = cfg.debug or args.debug

    store = InMemoryStore.load(args.db)

    if args.employee and store.get_employee(args.employee) is None and args.name:
        store.add_employee(args.employee, args.name, area=args.area)
        print(f"Created employee {args.employee} ({args.name})")

    if args.images:
        if not args.employee:
            print("--images needs --employee")
            return 2
        if store.get_employee(args.employee) is None:
            print(f"Employee not found: {args.employee} (pass --name to create it)")
            return 2
        for path in args.images:
            img = store.add_image(args.employee, uri=str(path))
            print(f"Registered {path} as {img.id}")

    activity_logger = ActivityLogger(str(cfg.activity_log), echo=cfg.debug) if cfg.activity_log else None
    pipeline = IdentificationPipeline.from_config(cfg, store)
    enroller = Enroller(pipeline, store, cfg, activity_logger=activity_logger)

    try:
        if args.employee:
            reports = [enroller.enroll_employee(args.employee)]
        else:
            reports = enroller.enroll_all()
    except FaceAttendanceError as e:
        print(f"[Error] {e}")
        return 1
    finally:
        pipeline.close()

    for r in reports:
        print_report(r)

    store.save(args.db)
    print(f"Saved store to {args.db}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
