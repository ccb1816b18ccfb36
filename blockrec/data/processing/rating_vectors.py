"""
Rating Vector Merging

Turns (user, item, rating) triples into one sparse rating vector per user and
routes each vector to its user's block:

1. Map: every triple becomes a single-entry partial vector
2. Combine: partial vectors of one input partition are pre-merged locally
3. Merge: pre-merged vectors from all partitions are colocated by user and
   merged again with the same union operator
4. Route: the final vector goes to ``sink[assign_block(user)]``

Union is associative and commutative as long as keys never collide. A
colliding key means the same observation arrived twice, which is reported as
DataIntegrityError instead of being overwritten.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from scipy.sparse import csr_matrix

from ...errors import DataIntegrityError
from ...logging_utils import NUM_USERS, RunMetrics
from .block_store import BlockSink
from .blocks import assign_block, validate_num_blocks

logger = logging.getLogger(__name__)


SparseRatingVector = Dict[int, float]
Triple = Tuple[int, int, float]


def merge_vectors(entity_id: int,
                  left: SparseRatingVector,
                  right: SparseRatingVector) -> SparseRatingVector:
    """
    Pointwise union of two partial vectors of the same entity.

    Args:
        entity_id: Entity both vectors belong to (for error reporting)
        left: First partial vector
        right: Second partial vector

    Returns:
        New vector holding the entries of both inputs

    Raises:
        DataIntegrityError: If both inputs contain the same counterpart id
    """
    overlap = left.keys() & right.keys()
    if overlap:
        raise DataIntegrityError(
            f"Duplicate ratings for entity {entity_id}: counterpart ids {sorted(overlap)}",
            entity_id=entity_id,
            keys=overlap
        )
    merged = dict(left)
    merged.update(right)
    return merged


def merge_into(entity_id: int,
               target: SparseRatingVector,
               vector: SparseRatingVector) -> SparseRatingVector:
    """
    Add the entries of ``vector`` to ``target`` in place.

    Same union as ``merge_vectors``; ``target`` is left unchanged when a key
    collides.

    Raises:
        DataIntegrityError: If ``vector`` shares a counterpart id with ``target``
    """
    overlap = [key for key in vector if key in target]
    if overlap:
        raise DataIntegrityError(
            f"Duplicate ratings for entity {entity_id}: counterpart ids {sorted(overlap)}",
            entity_id=entity_id,
            keys=overlap
        )
    target.update(vector)
    return target


def partial_vectors(triples: Iterable[Triple],
                    by: str = 'user') -> Iterable[Tuple[int, SparseRatingVector]]:
    """
    Map step: one single-entry vector per triple.

    Args:
        triples: (user_id, item_id, rating) triples
        by: 'user' keys vectors by user, 'item' by item (transposed ratings)
    """
    if by not in ('user', 'item'):
        raise ValueError(f"Unknown vector orientation: {by}")

    for user_id, item_id, rating in triples:
        if by == 'user':
            yield int(user_id), {int(item_id): float(rating)}
        else:
            yield int(item_id), {int(user_id): float(rating)}


def sequential(vector: SparseRatingVector) -> SparseRatingVector:
    """Same vector with keys in ascending order."""
    return {k: vector[k] for k in sorted(vector)}


class RatingVectorMerger:
    """
    Merge partial rating vectors into one vector per entity, routed by block.

    Attributes:
        num_blocks: Number of user blocks
        metrics: Per-run metrics sink, counts distinct entities merged

    Example:
        >>> merger = RatingVectorMerger(num_blocks=4, metrics=RunMetrics())
        >>> sink = merger.merge_triples([partition_a, partition_b])
        >>> sink.block(assign_block(42, 4))[42]
        {3: 5.0, 17: 2.0}
    """

    def __init__(self, num_blocks: int, metrics: Optional[RunMetrics] = None):
        self.num_blocks = validate_num_blocks(num_blocks)
        self.metrics = metrics if metrics is not None else RunMetrics()

    def combine(self,
                pairs: Iterable[Tuple[int, SparseRatingVector]]) -> Dict[int, SparseRatingVector]:
        """
        Local pre-merge of one input partition.

        Each entity gets one accumulator that partial vectors are added to in
        place, so the cost is linear in the number of entries.

        Returns:
            Dict mapping entity id to its partially merged vector

        Raises:
            DataIntegrityError: On a counterpart id seen twice for one entity
        """
        combined: Dict[int, SparseRatingVector] = {}
        for entity_id, vector in pairs:
            current = combined.get(entity_id)
            if current is None:
                combined[entity_id] = dict(vector)
            else:
                merge_into(entity_id, current, vector)
        return combined

    def merge(self,
              partitions: Sequence[Iterable[Tuple[int, SparseRatingVector]]],
              sink: Optional[BlockSink] = None) -> BlockSink:
        """
        Merge partial vectors from all partitions and write them by block.

        Args:
            partitions: Input partitions of (entity_id, partial vector) pairs
            sink: Target sink (a new one is created if omitted)

        Returns:
            BlockSink with one merged vector per entity

        Raises:
            DataIntegrityError: On a duplicate observation
        """
        if sink is None:
            sink = BlockSink(self.num_blocks)
        elif sink.num_blocks != self.num_blocks:
            raise ValueError(
                f"Sink has {sink.num_blocks} blocks, merger expects {self.num_blocks}"
            )

        # Colocate the pre-merged output of every partition by entity
        colocated: Dict[int, List[SparseRatingVector]] = {}
        for partition in partitions:
            for entity_id, vector in self.combine(partition).items():
                colocated.setdefault(entity_id, []).append(vector)

        for entity_id, vectors in colocated.items():
            merged = self.combine((entity_id, v) for v in vectors)[entity_id]
            sink.write(assign_block(entity_id, self.num_blocks), entity_id, sequential(merged))
            self.metrics.increment(NUM_USERS)

        logger.info(
            f"Merged rating vectors: {len(colocated):,} entities "
            f"from {len(partitions)} partitions into {self.num_blocks} blocks"
        )
        return sink

    def merge_triples(self,
                      partitions: Sequence[Iterable[Triple]],
                      sink: Optional[BlockSink] = None,
                      by: str = 'user') -> BlockSink:
        """Map each partition of triples to partial vectors, then ``merge``."""
        return self.merge([partial_vectors(p, by=by) for p in partitions], sink=sink)


def to_csr(vectors: Dict[int, SparseRatingVector],
           num_columns: Optional[int] = None) -> Tuple[np.ndarray, csr_matrix]:
    """
    Export rating vectors as a CSR matrix.

    Args:
        vectors: Entity id -> rating vector
        num_columns: Matrix width (default: max counterpart id + 1)

    Returns:
        Tuple of (row entity ids ascending, csr_matrix of shape (rows, num_columns))
    """
    row_ids = np.array(sorted(vectors), dtype=np.int64)
    rows, cols, data = [], [], []
    for row, entity_id in enumerate(row_ids):
        for counterpart, rating in vectors[int(entity_id)].items():
            rows.append(row)
            cols.append(counterpart)
            data.append(rating)

    if num_columns is None:
        num_columns = (max(cols) + 1) if cols else 0

    matrix = csr_matrix(
        (np.array(data, dtype=np.float64), (np.array(rows, dtype=np.int64), np.array(cols, dtype=np.int64))),
        shape=(len(row_ids), num_columns)
    )
    return row_ids, matrix
