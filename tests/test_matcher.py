import numpy as np
import pytest

from attendance_client.distance import euclidean_distance
from attendance_client.matcher import RosterMatcher, find_best_match
from attendance_client.types import EnrolledIdentity, MatchResult, Roster

QUERY = (0.0, 0.0)


def test_closest_identity_within_threshold(roster):
    result = find_best_match(QUERY, roster, threshold=0.6)

    assert result is not None
    assert result.identity.identity_id == "1"
    assert result.distance == pytest.approx(0.3)
    assert result.confidence_percent == 70.0


@pytest.mark.parametrize("distance, percent", [(0.9375, 6.3), (0.8125, 18.8), (0.25, 75.0), (0.0, 100.0)])
def test_confidence_rounds_half_away_from_zero(distance, percent):
    alice = EnrolledIdentity("1", "Alice", ((0.0,),))

    assert MatchResult(identity=alice, distance=distance).confidence_percent == percent


def test_nearest_not_below_threshold_is_no_match(roster):
    assert find_best_match(QUERY, roster, threshold=0.2) is None


def test_distance_equal_to_threshold_is_rejected():
    roster = Roster(identities=(EnrolledIdentity("1", "Alice", ((0.5, 0.0),)),))
    assert find_best_match(QUERY, roster, threshold=0.5) is None


def test_default_threshold_is_point_six(roster):
    far = Roster(identities=(EnrolledIdentity("9", "Far", ((0.61, 0.0),)),))
    assert find_best_match(QUERY, roster).identity.identity_id == "1"
    assert find_best_match(QUERY, far) is None


def test_empty_roster_never_matches():
    assert find_best_match(QUERY, Roster()) is None
    assert find_best_match([0.1] * 128, Roster(), threshold=10.0) is None


@pytest.mark.parametrize("threshold", [0.0, -1.0])
def test_non_positive_threshold_never_matches(threshold):
    roster = Roster(identities=(EnrolledIdentity("1", "Alice", (QUERY,)),))
    assert find_best_match(QUERY, roster, threshold=threshold) is None


def test_identities_without_usable_embeddings_are_skipped():
    roster = Roster(
        identities=(
            EnrolledIdentity("0", "Nobody"),
            EnrolledIdentity.from_descriptors("x", "Broken", [["a", "b"], None, {"0": 1}]),
            EnrolledIdentity("3", "WrongDim", ((0.0, 0.0, 0.0),)),
            EnrolledIdentity("4", "Carol", ((0.1, 0.0),)),
        )
    )

    result = find_best_match(QUERY, roster)

    assert result.identity.identity_id == "4"
    assert roster.identities[1].embeddings == ()


def test_best_sample_across_multiple_embeddings_wins():
    roster = Roster(
        identities=(
            EnrolledIdentity("1", "Alice", ((0.5, 0.0), (0.4, 0.0))),
            EnrolledIdentity("2", "Bob", ((0.9, 0.0), (0.0, 0.2))),
        )
    )

    result = find_best_match(QUERY, roster)

    assert result.identity.identity_id == "2"
    assert result.distance == pytest.approx(0.2)


def test_ties_go_to_first_encountered():
    shared = (0.25, 0.0)
    roster = Roster(
        identities=(
            EnrolledIdentity("first", "First", ((0.0, 0.25), shared)),
            EnrolledIdentity("second", "Second", (shared,)),
        )
    )

    for _ in range(3):
        assert find_best_match(QUERY, roster).identity.identity_id == "first"


def test_query_of_other_dimensionality_does_not_match(roster):
    assert find_best_match((0.0, 0.0, 0.0), roster, threshold=100.0) is None
    assert find_best_match(None, roster) is None


def test_agrees_with_pairwise_distance():
    rng = np.random.default_rng(3)
    identities = tuple(
        EnrolledIdentity(str(i), f"Person {i}", tuple(tuple(rng.normal(scale=0.1, size=128)) for _ in range(3)))
        for i in range(25)
    )
    roster = Roster(identities=identities)
    query = tuple(rng.normal(scale=0.1, size=128))

    expected_distance, expected_id = min(
        (euclidean_distance(query, emb), identity.identity_id)
        for identity in identities
        for emb in identity.embeddings
    )
    result = find_best_match(query, roster, threshold=10.0)

    assert result.identity.identity_id == expected_id
    assert result.distance == pytest.approx(expected_distance, rel=1e-9)


def test_widening_threshold_never_loses_or_changes_a_match():
    rng = np.random.default_rng(5)
    identities = tuple(
        EnrolledIdentity(str(i), f"Person {i}", (tuple(rng.uniform(-1, 1, size=16)),)) for i in range(10)
    )
    roster = Roster(identities=identities)
    query = tuple(rng.uniform(-1, 1, size=16))

    previous = None
    for threshold in np.linspace(0.05, 10.0, 60):
        result = find_best_match(query, roster, threshold=float(threshold))
        if previous is not None:
            assert result is not None
            assert result.identity.identity_id == previous.identity.identity_id
        previous = result or previous
    assert previous is not None


def test_matcher_follows_roster_swaps(roster):
    matcher = RosterMatcher(threshold=0.6)
    assert matcher.match(QUERY, roster).identity.identity_id == "1"

    replacement = Roster(identities=(EnrolledIdentity("7", "Grace", ((0.0, 0.1),)),))
    assert matcher.match(QUERY, replacement).identity.identity_id == "7"
    assert matcher.match(QUERY, roster, threshold=0.2) is None


def test_match_many_scores_each_probe(roster):
    matcher = RosterMatcher()

    results = matcher.match_many([QUERY, (0.75, 0.0), (5.0, 5.0)], roster)

    assert [r.identity.identity_id if r else None for r in results] == ["1", "2", None]


def test_nearest_ignores_threshold(roster):
    matcher = RosterMatcher(threshold=0.1)

    nearest = matcher.nearest(QUERY, roster)

    assert nearest.identity.identity_id == "1"
    assert matcher.match(QUERY, roster) is None
