from __future__ import annotations
from typing import Iterable, Optional
import numpy as np

from .types import MatchResult, StoredEmbedding
from .utils import cosine_similarity


class FaceDBMatcher:
    """
    Brute-force cosine matcher over the stored embeddings of active employees.

    Entries are scanned in ascending embedding id; on equal similarity the
    first entry wins. A match needs similarity >= threshold; threshold=None
    accepts the best entry whatever its score.
    """
    def __init__(self, threshold: Optional[float] = 0.6):
        self.threshold = None if threshold is None else float(threshold)

    def match(self, query: np.ndarray, corpus: Iterable[StoredEmbedding]) -> MatchResult:
        entries = sorted(corpus, key=lambda e: e.id)
        if not entries:
            return MatchResult(employee_id=None, similarity=0.0, accepted=False)

        q = np.asarray(query, dtype=np.float32).reshape(-1)
        sims = np.array([cosine_similarity(q, e.vector) for e in entries], dtype=np.float64)
        best_i = int(np.argmax(sims))  # first occurrence of the maximum
        best_sim = float(sims[best_i])
        best = entries[best_i]

        ok = self.threshold is None or best_sim >= self.threshold
        return MatchResult(
            employee_id=best.employee_id if ok else None,
            similarity=best_sim,
            accepted=bool(ok),
            embedding_id=best.id if ok else None,
        )
