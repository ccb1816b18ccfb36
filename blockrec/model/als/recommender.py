"""
Block Recommendation Generation

This module scores users of one block against the shared item features:
- Top-N scoring: dot products, clipped to the max rating, best N kept
- Deterministic ordering: score descending, item id ascending on ties
- Exclusion of recommend-filter items and of items the user already rated
- Per-user degradation: a user without features is logged and skipped
- Multithreaded scoring inside a block
- Translation back to external long ids

The controller drives blocks through the ``BlockTask.run`` interface.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import CancelledError, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from ...data.processing.id_mapping import IDIndex
from ...errors import ConfigurationError, MissingFeatureError
from ...logging_utils import MISSING_FEATURES, USERS_SCORED, RunMetrics
from .embeddings import FeatureMatrix

logger = logging.getLogger(__name__)


RecommendationList = List[Tuple[int, float]]


class TopNScorer:
    """
    Score every candidate item for a user vector and keep the best N.

    Attributes:
        item_features: Shared item feature matrix (read-only)
        max_rating: Scores above this value are capped to it
        num_recommendations: N

    Example:
        >>> scorer = TopNScorer(item_features, max_rating=5.0, num_recommendations=3)
        >>> scorer.score(user_vector, exclude={17})
        [(4, 5.0), (9, 5.0), (2, 4.31)]
    """

    def __init__(self, item_features: FeatureMatrix, max_rating: float, num_recommendations: int):
        if num_recommendations <= 0:
            raise ConfigurationError(f"numRecommendations must be positive, got {num_recommendations}")
        self.item_features = item_features
        self.max_rating = float(max_rating)
        self.num_recommendations = num_recommendations

    def compute_scores(self, user_vector: np.ndarray) -> np.ndarray:
        """Clipped scores for all items, aligned with ``item_features.ids``."""
        u = np.asarray(user_vector, dtype=np.float64).reshape(-1)
        if u.shape[0] != self.item_features.num_features:
            raise ValueError(
                f"User vector has {u.shape[0]} features, items have {self.item_features.num_features}"
            )
        scores = self.item_features.factors @ u
        # Upper cap only; no lower bound is applied
        return np.minimum(scores, self.max_rating)

    def select_top_n(self, scores: np.ndarray, item_ids: np.ndarray) -> RecommendationList:
        """
        Best N (item, score) pairs, score descending then item id ascending.

        Every item tied with the N-th score is kept as a candidate before the
        final sort, so the tie-break never depends on partition order.
        """
        valid = ~np.isnan(scores)
        scores, item_ids = scores[valid], item_ids[valid]

        n = self.num_recommendations
        if len(scores) > n:
            kth = len(scores) - n
            threshold = np.partition(scores, kth)[kth]
            keep = scores >= threshold
            scores, item_ids = scores[keep], item_ids[keep]

        order = np.lexsort((item_ids, -scores))[:n]
        return [(int(item_ids[i]), float(scores[i])) for i in order]

    def score(self, user_vector: np.ndarray, exclude: Optional[Set[int]] = None) -> RecommendationList:
        scores = self.compute_scores(user_vector)
        item_ids = self.item_features.ids

        if exclude:
            mask = ~np.isin(item_ids, np.fromiter(exclude, dtype=np.int64, count=len(exclude)))
            scores, item_ids = scores[mask], item_ids[mask]

        return self.select_top_n(scores, item_ids)


# ============================================================================
# Block Task Interface
# ============================================================================

@dataclass
class BlockInput:
    """
    Everything one block prediction needs besides the shared item data.

    Attributes:
        block_id: Block being processed
        user_ratings: Merged rating vectors of the block's users
        user_features: The block's slice of the user feature matrix
        user_index: The block's user ID index (long-ID runs only)
    """
    block_id: int
    user_ratings: Dict[int, Dict[int, float]]
    user_features: FeatureMatrix
    user_index: Optional[IDIndex] = None

    @property
    def user_ids(self) -> List[int]:
        return sorted(self.user_ratings)


@dataclass
class BlockResult:
    """
    Output of one block prediction.

    Attributes:
        block_id: Block processed
        recommendations: User id -> ranked (item id, score) list, ids external
            when indexes were supplied
        num_users: Users with a recommendation list
        num_missing: Users skipped for lack of a feature vector
        wall_time_seconds: Task duration
    """
    block_id: int
    recommendations: Dict[int, RecommendationList] = field(default_factory=dict)
    num_users: int = 0
    num_missing: int = 0
    wall_time_seconds: float = 0.0


class BlockTask(ABC):
    """A unit of block work invoked directly by the controller."""

    @abstractmethod
    def run(self, block_input: BlockInput) -> BlockResult:
        """Process one block; raise to report failure."""


class BlockPredictor(BlockTask):
    """
    Generate top-N recommendations for every user of a block.

    One instance is shared by all blocks of a run: it only holds read-only
    data (item features, item index, filter sets) and per-run counters.

    Attributes:
        scorer: TopNScorer over the shared item features
        num_threads: Worker threads across the users of one block
        item_index: Item ID index (long-ID runs only)
        recommend_filter: User id -> item ids never to recommend
        exclude_rated: Skip items present in the user's rating vector
        metrics: Per-run metrics sink
        cancel_event: When set, running blocks stop at the next user
    """

    def __init__(self,
                 item_features: FeatureMatrix,
                 max_rating: float,
                 num_recommendations: int,
                 num_threads: int = 1,
                 item_index: Optional[IDIndex] = None,
                 recommend_filter: Optional[Dict[int, Set[int]]] = None,
                 exclude_rated: bool = True,
                 metrics: Optional[RunMetrics] = None,
                 cancel_event: Optional[threading.Event] = None):
        if num_threads <= 0:
            raise ConfigurationError(f"numThreads must be positive, got {num_threads}")
        self.scorer = TopNScorer(item_features, max_rating, num_recommendations)
        self.num_threads = num_threads
        self.item_index = item_index
        self.recommend_filter = recommend_filter or {}
        self.exclude_rated = exclude_rated
        self.metrics = metrics if metrics is not None else RunMetrics()
        self.cancel_event = cancel_event or threading.Event()

        logger.info(
            f"BlockPredictor initialized: items={len(item_features)}, "
            f"factors={item_features.num_features}, N={num_recommendations}, "
            f"max_rating={max_rating}, threads={num_threads}, "
            f"filtered_users={len(self.recommend_filter)}"
        )

    def excluded_items(self, user_id: int, ratings: Optional[Dict[int, float]]) -> Set[int]:
        excluded = set(self.recommend_filter.get(user_id, ()))
        if self.exclude_rated and ratings:
            excluded.update(ratings)
        return excluded

    def recommend_user(self, block_input: BlockInput, user_id: int) -> RecommendationList:
        """
        Top-N list of one user, internal ids.

        Raises:
            MissingFeatureError: If the user is absent from the block's features
        """
        user_vector = block_input.user_features.get(user_id)
        if user_vector is None:
            raise MissingFeatureError(user_id, block_input.block_id)
        exclude = self.excluded_items(user_id, block_input.user_ratings.get(user_id))
        return self.scorer.score(user_vector, exclude=exclude)

    def _translate(self, block_input: BlockInput, user_id: int,
                   items: RecommendationList) -> Tuple[int, RecommendationList]:
        if block_input.user_index is not None:
            user_id = block_input.user_index.to_external(user_id)
        if self.item_index is not None:
            items = [(self.item_index.to_external(item), score) for item, score in items]
        return user_id, items

    def _process_users(self, block_input: BlockInput,
                       user_ids: Sequence[int]) -> Tuple[List[Tuple[int, RecommendationList]], int]:
        results = []
        missing = 0
        for user_id in user_ids:
            if self.cancel_event.is_set():
                raise CancelledError(f"Block {block_input.block_id} cancelled")
            try:
                items = self.recommend_user(block_input, user_id)
            except MissingFeatureError as e:
                logger.warning(f"Skipping user: {e}")
                self.metrics.increment(MISSING_FEATURES)
                missing += 1
                continue
            results.append((user_id, items))
            self.metrics.increment(USERS_SCORED)
        return results, missing

    def run(self, block_input: BlockInput) -> BlockResult:
        """
        Score all users of the block.

        Returns:
            BlockResult with recommendation lists in ascending internal user order
        """
        start = time.time()
        user_ids = block_input.user_ids
        logger.info(f"Block {block_input.block_id}: scoring {len(user_ids):,} users")

        if self.num_threads > 1 and len(user_ids) > 1:
            chunks = [user_ids[i::self.num_threads] for i in range(self.num_threads)]
            with ThreadPoolExecutor(max_workers=self.num_threads,
                                    thread_name_prefix=f'block{block_input.block_id}') as executor:
                partials = list(executor.map(lambda c: self._process_users(block_input, c), chunks))
        else:
            partials = [self._process_users(block_input, user_ids)]

        scored: Dict[int, RecommendationList] = {}
        missing = 0
        for results, chunk_missing in partials:
            missing += chunk_missing
            scored.update(results)

        # Strided chunks interleave users; restore ascending user order
        recommendations = dict(
            self._translate(block_input, user_id, scored[user_id])
            for user_id in sorted(scored)
        )

        elapsed = time.time() - start
        logger.info(
            f"Block {block_input.block_id} finished: {len(recommendations):,} users, "
            f"{missing} missing features, {elapsed:.2f}s"
        )
        return BlockResult(
            block_id=block_input.block_id,
            recommendations=recommendations,
            num_users=len(recommendations),
            num_missing=missing,
            wall_time_seconds=elapsed
        )
