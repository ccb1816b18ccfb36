"""Tests for the sufficient-statistics combiner."""

import numpy as np
import pytest

from blockrec.errors import ConfigurationError
from blockrec.model.als.contributions import (
    Contribution,
    UpdateCombiner,
    build_contributions,
    contribution_from_observation,
    split_partitions
)
from blockrec.model.als.embeddings import FeatureMatrix


K = 3


def random_contributions(n, seed=0):
    rng = np.random.default_rng(seed)
    result = []
    for _ in range(n):
        v = rng.normal(size=K)
        result.append(contribution_from_observation(v, rng.uniform(1, 5)))
    return result


def assert_contribution_close(actual, expected):
    np.testing.assert_allclose(actual.A, expected.A, rtol=1e-10, atol=1e-12)
    np.testing.assert_allclose(actual.b, expected.b, rtol=1e-10, atol=1e-12)
    assert actual.count == expected.count


@pytest.mark.parametrize('num_features', [0, -1, None, 2.0])
def test_invalid_num_features(num_features):
    with pytest.raises(ConfigurationError):
        UpdateCombiner(num_features)


def test_combine_is_elementwise_sum():
    contributions = random_contributions(5)
    combined = UpdateCombiner(K).combine(1, contributions)

    np.testing.assert_allclose(combined.A, sum(c.A for c in contributions))
    np.testing.assert_allclose(combined.b, sum(c.b for c in contributions))
    assert combined.count == 5


def test_combine_empty_is_identity():
    combined = UpdateCombiner(K).combine(1, [])
    assert_contribution_close(combined, Contribution.zeros(K))


def test_combine_of_partial_combines_equals_direct_combine():
    combiner = UpdateCombiner(K)
    contributions = random_contributions(12, seed=1)
    direct = combiner.combine(7, contributions)

    rng = np.random.default_rng(2)
    for _ in range(5):
        labels = rng.integers(0, 4, size=len(contributions))
        groups = [[c for c, g in zip(contributions, labels) if g == label] for label in range(4)]
        partials = [combiner.combine(7, group) for group in groups]
        assert_contribution_close(combiner.combine(7, partials), direct)
        assert_contribution_close(combiner.combine(7, list(reversed(partials))), direct)


def test_combine_rejects_wrong_rank():
    with pytest.raises(ValueError):
        UpdateCombiner(K).combine(1, [Contribution.zeros(K + 1)])


def test_contribution_shape_validation():
    with pytest.raises(ValueError):
        Contribution(np.zeros((2, 3)), np.zeros(2))
    with pytest.raises(ValueError):
        Contribution.zeros(2) + Contribution.zeros(3)


def test_observation_contribution():
    c = contribution_from_observation([1.0, 2.0], 3.0)
    np.testing.assert_array_equal(c.A, [[1.0, 2.0], [2.0, 4.0]])
    np.testing.assert_array_equal(c.b, [3.0, 6.0])
    assert c.count == 1


def test_combine_partitioned_matches_single_reduction():
    contributions = random_contributions(30, seed=3)
    pairs = [(i % 4, c) for i, c in enumerate(contributions)]
    combiner = UpdateCombiner(K)

    expected = combiner.combine_by_key(pairs)
    for workers in (1, 3):
        actual = combiner.combine_partitioned(split_partitions(pairs, 5), num_workers=workers)
        assert sorted(actual) == sorted(expected)
        for key in expected:
            assert_contribution_close(actual[key], expected[key])


def test_build_contributions_skips_unknown_counterparts():
    items = FeatureMatrix([10, 11], [[1.0, 0.0], [0.0, 1.0]])
    pairs = list(build_contributions({1: {10: 4.0, 99: 1.0}, 2: {11: 2.0}}, items))

    assert [key for key, _ in pairs] == [1, 2]
    np.testing.assert_array_equal(pairs[0][1].b, [4.0, 0.0])


def test_combine_of_single_contribution_equals_it():
    c = contribution_from_observation([1.0, 2.0, 3.0], 4.0)
    combined = UpdateCombiner(K).combine(1, [c])

    assert combined == c
    assert combined != Contribution.zeros(K)
    assert combined != "not a contribution"


def test_allclose_tolerates_summation_order():
    combiner = UpdateCombiner(K)
    contributions = random_contributions(20, seed=5)

    forward = combiner.combine(3, contributions)
    backward = combiner.combine(3, reversed(contributions))

    assert forward.allclose(backward)
    assert not forward.allclose(Contribution(forward.A, forward.b, forward.count + 1))
