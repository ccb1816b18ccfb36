"""
ALS Sufficient-Statistics Combiner

Each observation r_ui of an entity u against a counterpart with fixed feature
vector v contributes

    A += v v^T        (k x k Gram matrix)
    b += r_ui * v     (k right-hand side)

to u's normal equations. Contributions form a commutative monoid under
element-wise addition with the zero matrices as identity, so they can be
pre-reduced per input partition and reduced again per key, in any grouping
and order, before the final solve:

    combine(k, [combine(k, xs), combine(k, ys)]) == combine(k, xs + ys)

Besides A and b every contribution carries the number of observations it
summarizes, which the solver uses for ALS-WR regularization.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

import numpy as np

from ...errors import ConfigurationError
from .embeddings import FeatureMatrix

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Contribution:
    """
    Partial normal equations of one entity.

    Equality is exact; use ``allclose`` to compare sums accumulated in a
    different order.

    Attributes:
        A: Gram matrix (k, k), symmetric
        b: Right-hand side (k,)
        count: Number of observations summarized
    """
    A: np.ndarray
    b: np.ndarray
    count: int = 0

    def __post_init__(self):
        self.A = np.asarray(self.A, dtype=np.float64)
        self.b = np.asarray(self.b, dtype=np.float64).reshape(-1)
        k = self.b.shape[0]
        if self.A.shape != (k, k):
            raise ValueError(f"A must have shape ({k}, {k}), got {self.A.shape}")

    @classmethod
    def zeros(cls, num_features: int) -> 'Contribution':
        return cls(np.zeros((num_features, num_features)), np.zeros(num_features), 0)

    @property
    def num_features(self) -> int:
        return self.b.shape[0]

    def __eq__(self, other) -> bool:
        if not isinstance(other, Contribution):
            return NotImplemented
        return (self.count == other.count
                and np.array_equal(self.A, other.A)
                and np.array_equal(self.b, other.b))

    def allclose(self, other: 'Contribution', rtol: float = 1e-9, atol: float = 1e-12) -> bool:
        return (self.count == other.count
                and self.A.shape == other.A.shape
                and np.allclose(self.A, other.A, rtol=rtol, atol=atol)
                and np.allclose(self.b, other.b, rtol=rtol, atol=atol))

    def __add__(self, other: 'Contribution') -> 'Contribution':
        if other.num_features != self.num_features:
            raise ValueError(
                f"Cannot add contributions of rank {self.num_features} and {other.num_features}"
            )
        return Contribution(self.A + other.A, self.b + other.b, self.count + other.count)


def contribution_from_observation(features: np.ndarray, rating: float) -> Contribution:
    """Contribution of a single rating against a fixed feature vector."""
    v = np.asarray(features, dtype=np.float64).reshape(-1)
    return Contribution(np.outer(v, v), float(rating) * v, 1)


class UpdateCombiner:
    """
    Sum contributions per key.

    Used both as the local pre-aggregation of an input partition and as the
    final per-key aggregation; both use the same operator.

    Example:
        >>> combiner = UpdateCombiner(num_features=3)
        >>> total = combiner.combine(42, contributions)
        >>> total.A.shape
        (3, 3)
    """

    def __init__(self, num_features: int):
        if isinstance(num_features, bool) or not isinstance(num_features, int) or num_features <= 0:
            raise ConfigurationError(f"numFeatures must be greater than 0, got {num_features!r}")
        self.num_features = num_features

    def combine(self, key: int, contributions: Iterable[Contribution]) -> Contribution:
        """
        Element-wise sum of ``contributions``.

        Args:
            key: Entity the contributions belong to
            contributions: Contributions to add; may be empty

        Returns:
            Contribution whose A, b and count are the sums of the inputs

        Raises:
            ValueError: If a contribution has a different rank
        """
        A = np.zeros((self.num_features, self.num_features))
        b = np.zeros(self.num_features)
        count = 0

        for contribution in contributions:
            if contribution.num_features != self.num_features:
                raise ValueError(
                    f"Contribution for key {key} has rank {contribution.num_features}, "
                    f"expected {self.num_features}"
                )
            A += contribution.A
            b += contribution.b
            count += contribution.count

        return Contribution(A, b, count)

    def combine_by_key(self, pairs: Iterable[Tuple[int, Contribution]]) -> Dict[int, Contribution]:
        """Group a keyed stream and combine every group."""
        grouped: Dict[int, List[Contribution]] = {}
        for key, contribution in pairs:
            grouped.setdefault(key, []).append(contribution)
        return {key: self.combine(key, values) for key, values in grouped.items()}

    def combine_partitioned(self,
                            partitions: Sequence[Iterable[Tuple[int, Contribution]]],
                            num_workers: int = 1) -> Dict[int, Contribution]:
        """
        Pre-reduce every partition, then reduce the partial results per key.

        Args:
            partitions: Keyed contribution streams, split arbitrarily
            num_workers: Threads for the partition pre-reductions

        Returns:
            Final contribution per key
        """
        if num_workers > 1 and len(partitions) > 1:
            with ThreadPoolExecutor(max_workers=num_workers) as executor:
                partials = list(executor.map(self.combine_by_key, partitions))
        else:
            partials = [self.combine_by_key(p) for p in partitions]

        logger.debug(
            f"Pre-reduced {len(partitions)} partitions into "
            f"{sum(len(p) for p in partials):,} partial contributions"
        )
        return self.combine_by_key(
            (key, contribution) for partial in partials for key, contribution in partial.items()
        )


def build_contributions(rating_vectors: Dict[int, Dict[int, float]],
                        fixed_features: FeatureMatrix) -> Iterator[Tuple[int, Contribution]]:
    """
    Map step of a refinement pass.

    Yields one contribution per observation whose counterpart has a feature
    vector; observations against unknown counterparts are skipped.

    Args:
        rating_vectors: Entity id -> {counterpart id: rating}
        fixed_features: Features of the counterparts, held fixed this pass
    """
    for entity_id, vector in rating_vectors.items():
        for counterpart, rating in vector.items():
            features = fixed_features.get(counterpart)
            if features is None:
                continue
            yield entity_id, contribution_from_observation(features, rating)


def split_partitions(pairs: Iterable[Tuple[int, Contribution]],
                     num_partitions: int) -> List[List[Tuple[int, Contribution]]]:
    """Round-robin a keyed stream into ``num_partitions`` lists."""
    partitions: List[List[Tuple[int, Contribution]]] = [[] for _ in range(num_partitions)]
    for i, pair in enumerate(pairs):
        partitions[i % num_partitions].append(pair)
    return partitions
