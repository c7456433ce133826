"""
Attendance identification from still images:
SCRFD -> 106pt landmarks + crop -> aligned 112x112 -> ArcFace ONNX embedding
-> cosine similarity to stored embeddings -> ENTRADA / SALIDA record.

Run:
python -m face_attendance.recognise --db data/db/attendance.npz photo1.jpg [photo2.jpg ...]

Each image prints one JSON result. Recorded events are written back to the
store file, so a second run for the same employee alternates the event type.
"""

from __future__ import annotations
import argparse
import json
from pathlib import Path
from typing import List, Optional

from .config import load_config
from .errors import FaceAttendanceError
from .pipeline import IdentificationPipeline
from .storage import InMemoryStore


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Identify employees in images and record attendance.")
    p.add_argument("images", nargs="+", type=Path)
    p.add_argument("--db", type=Path, default=Path("data/db/attendance.npz"))
    p.add_argument("--config", type=Path, default=None, help="JSON config overrides")
    p.add_argument("--threshold", type=float, default=None, help="override recognition threshold")
    p.add_argument("--debug", action="store_true")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    cfg = load_config(args.config)
    cfg.debug = cfg.debug or args.debug
    if args.threshold is not None:
        cfg.recognition_threshold = args.threshold

    store = InMemoryStore.load(args.db)
    pipeline = IdentificationPipeline.from_config(cfg, store)

    status = 0
    try:
        for path in args.images:
            try:
                result = pipeline.identify(path.read_bytes())
            except (FaceAttendanceError, OSError) as e:
                print(json.dumps({"image": str(path), "error": type(e).__name__, "detail": str(e)}))
                status = 1
                continue
            out = {"image": str(path)}
            out.update(result.to_dict())
            print(json.dumps(out))
    finally:
        pipeline.close()

    store.save(args.db)
    return status


if __name__ == "__main__":
    raise SystemExit(main())
