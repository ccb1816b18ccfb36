"""
Feature matrices produced by the factorization.

A FeatureMatrix maps entity ids to dense vectors of the factorization rank k.
It is read-only during serving; the item matrix is shared by every worker of
every block, user matrices are sliced per block.

Storage: ``.npz`` with arrays ``ids`` (int64, n) and ``factors`` (float, n x k).
A block-partitioned user matrix is a directory of ``<block>.npz`` files.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import numpy as np

from ...data.processing.blocks import assign_block, validate_num_blocks

logger = logging.getLogger(__name__)


class FeatureMatrix:
    """
    Entity id -> feature vector.

    Attributes:
        ids: Entity ids, one per row
        factors: Feature vectors (num_entities, k)

    Example:
        >>> V = FeatureMatrix(np.array([10, 11]), np.array([[1.0, 0.0], [0.5, 0.5]]))
        >>> V.vector(11)
        array([0.5, 0.5])
    """

    def __init__(self, ids, factors):
        ids = np.asarray(ids, dtype=np.int64).reshape(-1)
        factors = np.asarray(factors, dtype=np.float64)
        if factors.ndim != 2:
            raise ValueError(f"factors must be 2-D, got shape {factors.shape}")
        if factors.shape[0] != ids.shape[0]:
            raise ValueError(
                f"ids ({ids.shape[0]}) and factors ({factors.shape[0]}) row counts differ"
            )

        self.ids = ids.view()
        self.factors = factors.view()
        self._rows: Dict[int, int] = {int(entity_id): row for row, entity_id in enumerate(ids)}
        if len(self._rows) != len(ids):
            raise ValueError("Duplicate entity ids in feature matrix")

        # Shared by worker threads; read-only views leave the caller's arrays writable
        self.ids.setflags(write=False)
        self.factors.setflags(write=False)

    @classmethod
    def from_dict(cls, vectors: Dict[int, Iterable[float]], num_features: Optional[int] = None) -> 'FeatureMatrix':
        ids = sorted(vectors)
        if not ids:
            return cls(np.zeros(0, dtype=np.int64), np.zeros((0, num_features or 0)))
        return cls(np.array(ids), np.array([np.asarray(vectors[i], dtype=np.float64) for i in ids]))

    @property
    def num_features(self) -> int:
        return self.factors.shape[1]

    def vector(self, entity_id: int) -> np.ndarray:
        return self.factors[self._rows[int(entity_id)]]

    def get(self, entity_id: int) -> Optional[np.ndarray]:
        row = self._rows.get(int(entity_id))
        return None if row is None else self.factors[row]

    def __contains__(self, entity_id) -> bool:
        return int(entity_id) in self._rows

    def __len__(self) -> int:
        return len(self.ids)

    def subset(self, entity_ids: Iterable[int]) -> 'FeatureMatrix':
        """Rows of the given ids that are present, in the given order."""
        rows = [self._rows[int(e)] for e in entity_ids if int(e) in self._rows]
        return FeatureMatrix(self.ids[rows], self.factors[rows])

    def partition(self, num_blocks: int) -> Dict[int, 'FeatureMatrix']:
        """Split rows by ``assign_block``; every block gets a (possibly empty) slice."""
        validate_num_blocks(num_blocks)
        blocks: Dict[int, List[int]] = {b: [] for b in range(num_blocks)}
        for row, entity_id in enumerate(self.ids):
            blocks[assign_block(int(entity_id), num_blocks)].append(row)
        return {
            b: FeatureMatrix(self.ids[rows], self.factors[rows].reshape(len(rows), self.num_features))
            for b, rows in blocks.items()
        }

    def save(self, path: str) -> str:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        np.savez(path, ids=self.ids, factors=self.factors)
        return str(path)

    @classmethod
    def load(cls, path: str) -> 'FeatureMatrix':
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Feature matrix not found: {path}")
        with np.load(path) as data:
            matrix = cls(data['ids'], data['factors'])
        logger.debug(f"Loaded feature matrix {path}: {len(matrix):,} x {matrix.num_features}")
        return matrix

    def __repr__(self) -> str:
        return f"FeatureMatrix(num_entities={len(self)}, num_features={self.num_features})"


def save_block_features(matrix: FeatureMatrix, output_dir: str, num_blocks: int) -> str:
    """Write ``matrix`` as one ``<block>.npz`` file per block."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    for block_id, block in matrix.partition(num_blocks).items():
        block.save(output_dir / f'{block_id}.npz')
    logger.info(f"Saved {len(matrix):,} feature vectors in {num_blocks} blocks to {output_dir}")
    return str(output_dir)


def load_block_features(path: str, block_id: int, num_blocks: int) -> FeatureMatrix:
    """
    Load the user feature slice of one block.

    Args:
        path: Directory of ``<block>.npz`` files, or a single ``.npz`` file
            that is sliced with ``assign_block``
        block_id: Block to load
        num_blocks: Number of user blocks
    """
    path = Path(path)
    if path.is_dir():
        return FeatureMatrix.load(path / f'{block_id}.npz')
    return FeatureMatrix.load(path).partition(num_blocks)[block_id]
