"""
Normal-equation solve and the refinement pass built on it.

The solve turns a combined Contribution into a refined feature vector:

    (A + lambda * n * I) x = b

with n the number of observations (ALS-WR weighting). Cholesky is tried
first since the regularized Gram matrix is symmetric positive definite; a
least-squares solve handles the degenerate case lambda = 0 with a singular A.
"""

import logging
from typing import Dict, Optional

import numpy as np
from scipy.linalg import LinAlgError, cho_factor, cho_solve

from ...config import FactorizationConfig
from ...logging_utils import RunMetrics
from .contributions import UpdateCombiner, build_contributions, split_partitions
from .embeddings import FeatureMatrix

logger = logging.getLogger(__name__)


def solve_contribution(contribution, lambda_: float) -> np.ndarray:
    """
    Solve the regularized normal equations of one entity.

    Args:
        contribution: Combined Contribution of the entity
        lambda_: Regularization weight

    Returns:
        Feature vector (k,)
    """
    k = contribution.num_features
    A = contribution.A + lambda_ * max(contribution.count, 1) * np.eye(k)

    try:
        factor = cho_factor(A, lower=True, check_finite=True)
        return cho_solve(factor, contribution.b)
    except LinAlgError:
        logger.debug("Gram matrix not positive definite, falling back to least squares")
        return np.linalg.lstsq(A, contribution.b, rcond=None)[0]


def refine_features(rating_vectors: Dict[int, Dict[int, float]],
                    fixed_features: FeatureMatrix,
                    config: FactorizationConfig,
                    metrics: Optional[RunMetrics] = None) -> FeatureMatrix:
    """
    One refinement pass for one side of the factorization.

    map (per-observation contributions) -> partitioned combine -> solve

    Args:
        rating_vectors: Entity id -> {counterpart id: rating}
        fixed_features: Counterpart features held fixed
        config: Factorization options (validated here)
        metrics: Per-run metrics sink

    Returns:
        FeatureMatrix of the refined entities (entities without any usable
        observation are left out)
    """
    config.validate()
    if fixed_features.num_features != config.num_features:
        raise ValueError(
            f"Fixed features have rank {fixed_features.num_features}, "
            f"numFeatures is {config.num_features}"
        )

    combiner = UpdateCombiner(config.num_features)
    partitions = split_partitions(
        build_contributions(rating_vectors, fixed_features), config.num_partitions
    )
    combined = combiner.combine_partitioned(partitions, num_workers=config.num_workers)

    solved = {key: solve_contribution(c, config.lambda_) for key, c in combined.items()}

    if metrics is not None:
        metrics.increment('entities_refined', len(solved))

    logger.info(
        f"Refined {len(solved):,} feature vectors "
        f"(rank={config.num_features}, lambda={config.lambda_:.4g}, "
        f"partitions={config.num_partitions})"
    )
    return FeatureMatrix.from_dict(solved, num_features=config.num_features)
