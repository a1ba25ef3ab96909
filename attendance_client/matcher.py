from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from typing import Any, Iterable

import numpy as np

from .distance import as_vector
from .types import EnrolledIdentity, MatchResult, Roster

DEFAULT_THRESHOLD = 0.6


@dataclass(frozen=True)
class _DimensionBlock:
    matrix: np.ndarray
    owners: tuple[EnrolledIdentity, ...]


class RosterIndex:
    """Roster embeddings stacked into one matrix per dimensionality.

    Rows keep roster iteration order (identity order, then enrolment order
    within an identity), so ``argmin`` picks the first-encountered candidate
    when distances tie.
    """

    def __init__(self, roster: Roster) -> None:
        self.roster = roster
        rows: dict[int, list[np.ndarray]] = {}
        owners: dict[int, list[EnrolledIdentity]] = {}
        for identity in roster:
            for embedding in identity.embeddings or ():
                vector = as_vector(embedding)
                if vector is None:
                    continue
                dim = int(vector.size)
                rows.setdefault(dim, []).append(vector)
                owners.setdefault(dim, []).append(identity)

        self._blocks: dict[int, _DimensionBlock] = {
            dim: _DimensionBlock(matrix=np.vstack(vectors), owners=tuple(owners[dim]))
            for dim, vectors in rows.items()
        }

    @property
    def size(self) -> int:
        return sum(len(block.owners) for block in self._blocks.values())

    def nearest(self, probe: Any) -> MatchResult | None:
        query = as_vector(probe)
        if query is None:
            return None
        block = self._blocks.get(int(query.size))
        if block is None:
            return None

        diff = block.matrix - query
        squared = np.einsum("ij,ij->i", diff, diff)
        # NaN rows never win.
        squared = np.where(np.isnan(squared), np.inf, squared)
        idx = int(np.argmin(squared))
        best = float(squared[idx])
        if math.isinf(best):
            return None
        return MatchResult(identity=block.owners[idx], distance=math.sqrt(best))


def accept_candidate(candidate: MatchResult | None, threshold: float) -> MatchResult | None:
    if candidate is None or not candidate.distance < threshold:
        return None
    return candidate


def find_best_match(probe: Any, roster: Roster, threshold: float = DEFAULT_THRESHOLD) -> MatchResult | None:
    """Closest enrolled identity whose distance is strictly below ``threshold``.

    Returns ``None`` for an empty roster, an unusable probe, or when the
    nearest embedding is not close enough. A non-positive threshold can never
    be satisfied.
    """
    return accept_candidate(RosterIndex(roster).nearest(probe), threshold)


class RosterMatcher:
    """Matches probes against a roster snapshot, reusing the index between calls."""

    def __init__(self, threshold: float = DEFAULT_THRESHOLD) -> None:
        self.threshold = threshold
        self._lock = threading.Lock()
        self._index: RosterIndex | None = None

    def _index_for(self, roster: Roster) -> RosterIndex:
        with self._lock:
            if self._index is None or self._index.roster is not roster:
                self._index = RosterIndex(roster)
            return self._index

    def invalidate(self) -> None:
        with self._lock:
            self._index = None

    def nearest(self, probe: Any, roster: Roster) -> MatchResult | None:
        return self._index_for(roster).nearest(probe)

    def match(self, probe: Any, roster: Roster, threshold: float | None = None) -> MatchResult | None:
        limit = self.threshold if threshold is None else threshold
        return accept_candidate(self.nearest(probe, roster), limit)

    def match_many(
        self,
        probes: Iterable[Any],
        roster: Roster,
        threshold: float | None = None,
    ) -> list[MatchResult | None]:
        limit = self.threshold if threshold is None else threshold
        index = self._index_for(roster)
        return [accept_candidate(index.nearest(probe), limit) for probe in probes]
