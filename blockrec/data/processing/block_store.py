"""
Block-keyed storage.

- BlockSink: in-memory output indexed by block id, written to directly
- save_block_ratings / load_block_ratings: per-block rating vectors on disk
- RecommendationWriter: staged per-block recommendation output, committed
  only when every block succeeded

On-disk layout under an output directory:
    userRatingsByUserBlock/<block>.pkl
    <block>/part-00000          (one line per user)
"""

import logging
import os
import pickle
import shutil
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from ...errors import DataIntegrityError
from .blocks import validate_num_blocks

logger = logging.getLogger(__name__)


USER_RATINGS_DIR = 'userRatingsByUserBlock'
PART_FILE = 'part-00000'


class BlockSink:
    """
    Keyed output with one partition per block.

    Example:
        >>> sink = BlockSink(num_blocks=3)
        >>> sink.write(1, 7, {10: 4.0})
        >>> sink.block(1)
        {7: {10: 4.0}}
    """

    def __init__(self, num_blocks: int):
        self.num_blocks = validate_num_blocks(num_blocks)
        self._blocks: Dict[int, Dict[Any, Any]] = {b: {} for b in range(num_blocks)}

    def _check_block(self, block_id: int):
        if not 0 <= block_id < self.num_blocks:
            raise ValueError(f"Block {block_id} out of range [0, {self.num_blocks})")

    def write(self, block_id: int, key: Any, value: Any):
        self._check_block(block_id)
        partition = self._blocks[block_id]
        if key in partition:
            raise DataIntegrityError(
                f"Key {key} written twice to block {block_id}", entity_id=key
            )
        partition[key] = value

    def block(self, block_id: int) -> Dict[Any, Any]:
        self._check_block(block_id)
        return self._blocks[block_id]

    def block_ids(self) -> List[int]:
        return list(range(self.num_blocks))

    def items(self) -> Iterator[Tuple[int, Dict[Any, Any]]]:
        for block_id in range(self.num_blocks):
            yield block_id, self._blocks[block_id]

    def __len__(self) -> int:
        return sum(len(p) for p in self._blocks.values())

    def __repr__(self) -> str:
        sizes = [len(self._blocks[b]) for b in range(self.num_blocks)]
        return f"BlockSink(num_blocks={self.num_blocks}, sizes={sizes})"


# ============================================================================
# Block Rating Vectors
# ============================================================================

def save_block_ratings(sink: BlockSink, output_dir: str) -> str:
    """
    Save every block of a rating sink as ``userRatingsByUserBlock/<block>.pkl``.

    Returns:
        str: Directory holding the block files
    """
    ratings_dir = Path(output_dir) / USER_RATINGS_DIR
    ratings_dir.mkdir(parents=True, exist_ok=True)

    for block_id, vectors in sink.items():
        with open(ratings_dir / f'{block_id}.pkl', 'wb') as f:
            pickle.dump(vectors, f, protocol=pickle.HIGHEST_PROTOCOL)

    logger.info(f"Saved {len(sink):,} rating vectors in {sink.num_blocks} blocks to {ratings_dir}")
    return str(ratings_dir)


def load_block_ratings(output_dir: str, block_id: int) -> Dict[int, Dict[int, float]]:
    path = Path(output_dir) / USER_RATINGS_DIR / f'{block_id}.pkl'
    if not path.exists():
        raise FileNotFoundError(f"Block ratings not found: {path}")
    with open(path, 'rb') as f:
        return pickle.load(f)


# ============================================================================
# Recommendation Output
# ============================================================================

def format_recommendations(user_id: Any, items: Sequence[Tuple[Any, float]]) -> str:
    """
    Render one user's list as ``user\\t[item:score,item:score]``.

    Example:
        >>> format_recommendations(7, [(3, 4.5), (1, 4.0)])
        '7\\t[3:4.5,1:4.0]'
    """
    rendered = ",".join(f"{item}:{float(score)}" for item, score in items)
    return f"{user_id}\t[{rendered}]"


def parse_recommendations(line: str) -> Tuple[str, List[Tuple[str, float]]]:
    """Inverse of ``format_recommendations``; ids are returned as strings."""
    user_id, rendered = line.rstrip('\n').split('\t', 1)
    body = rendered.strip()[1:-1]
    items = []
    if body:
        for entry in body.split(','):
            item, score = entry.rsplit(':', 1)
            items.append((item, float(score)))
    return user_id, items


class RecommendationWriter:
    """
    Write per-block recommendation files into a staging directory and move
    them into place on ``commit``.

    ``abort`` discards everything staged, so a failed run never leaves a mix
    of complete and partial block outputs behind.

    Example:
        >>> writer = RecommendationWriter('out/recommendations')
        >>> writer.write_block(0, {7: [(3, 4.5)]})
        >>> writer.commit()
    """

    def __init__(self, output_dir: str, run_id: Optional[str] = None):
        self.output_dir = Path(output_dir)
        suffix = run_id or str(os.getpid())
        self.staging_dir = self.output_dir.parent / f'.{self.output_dir.name}.staging-{suffix}'
        self._written: List[int] = []

    def write_block(self, block_id: int, recommendations: Dict[Any, Iterable[Tuple[Any, float]]]) -> str:
        block_dir = self.staging_dir / str(block_id)
        block_dir.mkdir(parents=True, exist_ok=True)
        path = block_dir / PART_FILE

        with open(path, 'w', encoding='utf-8') as f:
            for user_id, items in recommendations.items():
                f.write(format_recommendations(user_id, list(items)))
                f.write('\n')

        self._written.append(block_id)
        logger.debug(f"Staged {len(recommendations):,} recommendation lists for block {block_id}")
        return str(path)

    def commit(self) -> str:
        """Replace ``output_dir`` with the staged blocks."""
        self.staging_dir.mkdir(parents=True, exist_ok=True)
        if self.output_dir.exists():
            logger.info(f"Overwriting existing output {self.output_dir}")
            shutil.rmtree(self.output_dir)
        os.replace(self.staging_dir, self.output_dir)
        logger.info(f"Committed {len(self._written)} block outputs to {self.output_dir}")
        return str(self.output_dir)

    def abort(self):
        if self.staging_dir.exists():
            shutil.rmtree(self.staging_dir)
            logger.info(f"Discarded staged output {self.staging_dir}")
        self._written = []


def read_recommendations(output_dir: str) -> Dict[int, Dict[str, List[Tuple[str, float]]]]:
    """Read a committed output directory back, keyed by block id."""
    result = {}
    for block_dir in sorted(Path(output_dir).iterdir()):
        part = block_dir / PART_FILE
        if not block_dir.is_dir() or not part.exists():
            continue
        with open(part, 'r', encoding='utf-8') as f:
            result[int(block_dir.name)] = dict(parse_recommendations(line) for line in f if line.strip())
    return result
