import math

import numpy as np
import pytest

from attendance_client.distance import INFINITE_DISTANCE, euclidean_distance, squared_distance


def test_distance_to_self_is_zero():
    vector = np.random.default_rng(7).normal(size=128).tolist()
    assert euclidean_distance(vector, vector) == 0.0


def test_distance_is_symmetric():
    rng = np.random.default_rng(11)
    for _ in range(20):
        a = rng.normal(size=128).tolist()
        b = rng.normal(size=128).tolist()
        assert euclidean_distance(a, b) == euclidean_distance(b, a)


def test_known_distance():
    assert euclidean_distance([0.0, 0.0], [3.0, 4.0]) == pytest.approx(5.0)
    assert squared_distance((1.0, 2.0, 3.0), (1.0, 2.0, 5.0)) == pytest.approx(4.0)


@pytest.mark.parametrize(
    "a, b",
    [
        ([1.0, 2.0], [1.0, 2.0, 3.0]),
        (None, [1.0]),
        ([1.0], None),
        (None, None),
        ([], []),
        ("abc", "abc"),
        ([[1.0, 2.0]], [[1.0, 2.0]]),
        (["x", "y"], [1.0, 2.0]),
    ],
)
def test_unusable_inputs_yield_infinite_distance(a, b):
    distance = euclidean_distance(a, b)
    assert distance == INFINITE_DISTANCE
    assert distance > 1e308


def test_infinite_sentinel_is_not_finite():
    assert math.isinf(INFINITE_DISTANCE)
