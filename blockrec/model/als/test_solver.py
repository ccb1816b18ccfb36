"""Tests for the normal-equation solve and the refinement pass."""

import numpy as np
import pytest

from blockrec.config import FactorizationConfig
from blockrec.errors import ConfigurationError
from blockrec.logging_utils import RunMetrics
from blockrec.model.als.contributions import Contribution
from blockrec.model.als.embeddings import FeatureMatrix
from blockrec.model.als.solver import refine_features, solve_contribution


@pytest.fixture
def items():
    rng = np.random.default_rng(0)
    return FeatureMatrix(np.arange(8), rng.normal(size=(8, 3)))


def test_refine_recovers_exact_factors_without_regularization(items):
    true_users = {1: np.array([1.0, -2.0, 0.5]), 2: np.array([0.3, 0.3, 3.0])}
    ratings = {
        u: {int(i): float(items.vector(i) @ vec) for i in items.ids}
        for u, vec in true_users.items()
    }
    config = FactorizationConfig(num_features=3, lambda_=0.0, num_partitions=3, num_workers=2)
    metrics = RunMetrics()

    refined = refine_features(ratings, items, config, metrics)

    for u, vec in true_users.items():
        np.testing.assert_allclose(refined.vector(u), vec, atol=1e-8)
    assert metrics.get('entities_refined') == 2


def test_regularization_shrinks_solution(items):
    ratings = {1: {int(i): 4.0 for i in items.ids}}
    loose = refine_features(ratings, items, FactorizationConfig(num_features=3, lambda_=0.0))
    tight = refine_features(ratings, items, FactorizationConfig(num_features=3, lambda_=10.0))
    assert np.linalg.norm(tight.vector(1)) < np.linalg.norm(loose.vector(1))


def test_singular_system_falls_back_to_least_squares():
    contribution = Contribution(np.zeros((2, 2)), np.zeros(2), 0)
    np.testing.assert_allclose(solve_contribution(contribution, 0.0), [0.0, 0.0])


def test_rank_mismatch_and_invalid_config(items):
    with pytest.raises(ValueError):
        refine_features({}, items, FactorizationConfig(num_features=4))
    with pytest.raises(ConfigurationError):
        refine_features({}, items, FactorizationConfig(num_features=0))
    with pytest.raises(ConfigurationError):
        refine_features({}, items, FactorizationConfig(num_features=3, lambda_=-1.0))
