"""
ALS Block Recommendation Module

This module contains the ALS-side components:
- Feature matrices (embeddings.py)
- Sufficient-statistics combiner for factor refinement (contributions.py)
- Normal-equation solve and refinement pass (solver.py)
- Top-N scoring and block prediction tasks (recommender.py)
- Block-parallel job controller (block_job.py)
- Command line entry point (run_block_recommender.py)

Usage:
    >>> from blockrec.config import RecommenderConfig
    >>> from blockrec.model.als import BlockRecommenderJob, FeatureMatrix
    >>>
    >>> U = FeatureMatrix.load('model/U.npz')
    >>> V = FeatureMatrix.load('model/V.npz')
    >>> job = BlockRecommenderJob(RecommenderConfig(max_rating=5.0, num_blocks=8))
    >>> results = job.run(rating_partitions=partitions, item_features=V,
    ...                   user_features=U, output_dir='out/recommendations')
    >>>
    >>> # Refinement pass: combine per-record contributions, then solve
    >>> from blockrec.config import FactorizationConfig
    >>> U_new = refine_features(user_vectors, V, FactorizationConfig(num_features=20))
"""

from .embeddings import (
    FeatureMatrix,
    save_block_features,
    load_block_features
)

from .contributions import (
    Contribution,
    UpdateCombiner,
    contribution_from_observation,
    build_contributions,
    split_partitions
)

from .solver import (
    solve_contribution,
    refine_features
)

from .recommender import (
    TopNScorer,
    BlockInput,
    BlockResult,
    BlockTask,
    BlockPredictor,
    RecommendationList
)

from .block_job import BlockRecommenderJob

__all__ = [
    # Feature matrices
    'FeatureMatrix',
    'save_block_features',
    'load_block_features',

    # Sufficient statistics
    'Contribution',
    'UpdateCombiner',
    'contribution_from_observation',
    'build_contributions',
    'split_partitions',

    # Solve
    'solve_contribution',
    'refine_features',

    # Scoring
    'TopNScorer',
    'BlockInput',
    'BlockResult',
    'BlockTask',
    'BlockPredictor',
    'RecommendationList',

    # Controller
    'BlockRecommenderJob'
]
