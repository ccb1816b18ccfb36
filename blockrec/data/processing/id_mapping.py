"""
ID Index for long-ID translation.

Maps external long ids (as found in raw logs) to the contiguous internal int
ids used by the factor matrices, and back. An index is built once by the
upstream pipeline and read-only afterwards; the prediction stage only uses it
to translate recommendation output back to external ids.

Storage format (JSON):
    {
        "metadata": {"created_at": ..., "num_ids": ...},
        "idx_to_id": {"0": 900123, "1": 900456, ...}
    }

A block-partitioned user index is a directory with one ``<block>.json`` file
per block; the item index is a single file.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Optional

from ...errors import DataIntegrityError

logger = logging.getLogger(__name__)


class IDIndex:
    """
    Bijective mapping between external long ids and internal int ids.

    Example:
        >>> index = IDIndex.from_long_ids([900456, 900123])
        >>> index.to_internal(900123)
        0
        >>> index.to_external(1)
        900456
    """

    def __init__(self, idx_to_id: Dict[int, int]):
        self.idx_to_id = {int(k): int(v) for k, v in idx_to_id.items()}
        self.id_to_idx = {v: k for k, v in self.idx_to_id.items()}
        self.validate()

    @classmethod
    def from_long_ids(cls, long_ids: Iterable[int]) -> 'IDIndex':
        """Assign contiguous internal ids to the sorted unique long ids."""
        unique_ids = sorted({int(x) for x in long_ids})
        return cls({idx: long_id for idx, long_id in enumerate(unique_ids)})

    def validate(self):
        """
        Check the mapping is bijective.

        Raises:
            DataIntegrityError: If two internal ids share one external id
        """
        if len(self.id_to_idx) != len(self.idx_to_id):
            seen: Dict[int, int] = {}
            duplicates = set()
            for idx, long_id in self.idx_to_id.items():
                if long_id in seen:
                    duplicates.add(long_id)
                seen[long_id] = idx
            raise DataIntegrityError(
                f"ID index is not bijective, duplicated external ids: {sorted(duplicates)[:10]}",
                keys=duplicates
            )

    def to_internal(self, long_id: int) -> int:
        if long_id not in self.id_to_idx:
            raise KeyError(f"External id {long_id} not found in index")
        return self.id_to_idx[long_id]

    def to_external(self, idx: int) -> int:
        if idx not in self.idx_to_id:
            raise KeyError(f"Internal id {idx} not found in index")
        return self.idx_to_id[idx]

    def __len__(self) -> int:
        return len(self.idx_to_id)

    def __contains__(self, idx: int) -> bool:
        return idx in self.idx_to_id

    def save_json(self, path: str, metadata: Optional[Dict] = None) -> str:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            'metadata': {
                'created_at': datetime.now().isoformat(),
                'num_ids': len(self),
                **(metadata or {})
            },
            'idx_to_id': {str(k): v for k, v in sorted(self.idx_to_id.items())}
        }
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2)
        logger.info(f"Saved ID index with {len(self):,} entries to {path}")
        return str(path)

    @classmethod
    def load_json(cls, path: str) -> 'IDIndex':
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"ID index not found: {path}")
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict) or not isinstance(data.get('idx_to_id'), dict):
            raise ValueError(f"Malformed ID index {path}: expected an 'idx_to_id' mapping")
        index = cls(data['idx_to_id'])
        logger.debug(f"Loaded ID index with {len(index):,} entries from {path}")
        return index

    def __repr__(self) -> str:
        return f"IDIndex(num_ids={len(self)})"


def load_block_index(path: str, block_id: int) -> IDIndex:
    """
    Load the user index of one block.

    Args:
        path: Directory with ``<block>.json`` files, or a single index file
            shared by all blocks
        block_id: Block to load
    """
    path = Path(path)
    if path.is_dir():
        return IDIndex.load_json(path / f'{block_id}.json')
    return IDIndex.load_json(path)
