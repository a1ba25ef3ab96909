from .distance import INFINITE_DISTANCE, euclidean_distance
from .matcher import RosterMatcher, find_best_match
from .types import EmbeddingResult, EnrolledIdentity, MatchResult, Roster

__all__ = [
    "INFINITE_DISTANCE",
    "EmbeddingResult",
    "EnrolledIdentity",
    "MatchResult",
    "Roster",
    "RosterMatcher",
    "euclidean_distance",
    "find_best_match",
]
