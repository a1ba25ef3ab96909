from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Iterable, Iterator, Sequence

# Immutable face descriptor. Dimensionality is whatever the extractor produces.
Embedding = tuple[float, ...]


def as_embedding(values: Any) -> Embedding | None:
    """Return an immutable copy of ``values`` or ``None`` when it is not a usable vector."""
    if values is None or isinstance(values, (str, bytes, dict)):
        return None
    try:
        vector = tuple(float(item) for item in values)
    except (TypeError, ValueError):
        return None
    if not vector or not all(math.isfinite(item) for item in vector):
        return None
    return vector


@dataclass(frozen=True)
class EnrolledIdentity:
    identity_id: str
    name: str
    embeddings: tuple[Embedding, ...] = ()

    @classmethod
    def from_descriptors(cls, identity_id: Any, name: str, descriptors: Iterable[Any] | None) -> "EnrolledIdentity":
        embeddings: list[Embedding] = []
        for raw in descriptors or ():
            embedding = as_embedding(raw)
            if embedding is not None:
                embeddings.append(embedding)
        return cls(identity_id=str(identity_id), name=name, embeddings=tuple(embeddings))


@dataclass(frozen=True)
class Roster:
    """Read-only snapshot of the enrolled identities.

    Iteration order is the order the server returned the identities in, and
    the matcher breaks distance ties by that order.
    """

    identities: tuple[EnrolledIdentity, ...] = ()
    fetched_at: float = field(default_factory=time.time)

    def __len__(self) -> int:
        return len(self.identities)

    def __iter__(self) -> Iterator[EnrolledIdentity]:
        return iter(self.identities)

    @property
    def is_empty(self) -> bool:
        return not self.identities

    def get(self, identity_id: str) -> EnrolledIdentity | None:
        for identity in self.identities:
            if identity.identity_id == identity_id:
                return identity
        return None


@dataclass(frozen=True)
class MatchResult:
    identity: EnrolledIdentity
    distance: float

    @property
    def confidence_percent(self) -> float:
        value = (1.0 - self.distance) * 100.0
        if not math.isfinite(value):
            return value
        # Half away from zero on the exact binary value, not round-half-even.
        return float(Decimal(value).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


class DetectionOutcome(str, Enum):
    EMBEDDING = "embedding"
    NO_FACE = "no_face"
    ERROR = "error"


@dataclass(frozen=True)
class EmbeddingResult:
    outcome: DetectionOutcome
    embedding: Embedding | None = None
    reason: str | None = None

    @classmethod
    def face(cls, embedding: Sequence[float]) -> "EmbeddingResult":
        vector = as_embedding(embedding)
        if vector is None:
            return cls.failure("Extractor returned an unusable descriptor")
        return cls(outcome=DetectionOutcome.EMBEDDING, embedding=vector)

    @classmethod
    def no_face(cls) -> "EmbeddingResult":
        return cls(outcome=DetectionOutcome.NO_FACE)

    @classmethod
    def failure(cls, reason: str) -> "EmbeddingResult":
        return cls(outcome=DetectionOutcome.ERROR, reason=reason)


@dataclass(frozen=True)
class ConfirmationRecord:
    identity_id: str
    name: str
    date: str
    time: str


@dataclass(frozen=True)
class AuthenticatedUser:
    user_id: str
    username: str
    name: str | None = None
    role: str | None = None
