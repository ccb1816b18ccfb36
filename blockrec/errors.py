"""
Error types for the block-parallel recommender.

Propagation rules:
- ConfigurationError: raised eagerly, before any work is scheduled
- DataIntegrityError: fatal for the merge unit that detected it
- MissingFeatureError: absorbed per user, the user is skipped and logged
- PartialFailureError: raised once by the controller after all blocks finished
"""

from typing import Dict, Iterable, List, Optional


class BlockRecError(Exception):
    """Base class for all recommender errors."""


class ConfigurationError(BlockRecError, ValueError):
    """Invalid or missing required option."""


class DataIntegrityError(BlockRecError):
    """Duplicate or conflicting observations."""

    def __init__(self, message: str, entity_id: Optional[int] = None,
                 keys: Optional[Iterable[int]] = None):
        super().__init__(message)
        self.entity_id = entity_id
        self.keys = sorted(keys) if keys is not None else []


class MissingFeatureError(BlockRecError, KeyError):
    """A user has no feature vector in its block's slice."""

    def __init__(self, user_id: int, block_id: Optional[int] = None):
        super().__init__(user_id)
        self.user_id = user_id
        self.block_id = block_id

    def __str__(self) -> str:
        where = f" in block {self.block_id}" if self.block_id is not None else ""
        return f"No feature vector for user {self.user_id}{where}"


class PartialFailureError(BlockRecError, RuntimeError):
    """One or more block prediction tasks failed."""

    def __init__(self, errors: Dict[int, BaseException]):
        self.errors = dict(errors)
        self.failed_blocks: List[int] = sorted(self.errors)
        details = "; ".join(
            f"block {b}: {type(self.errors[b]).__name__}: {self.errors[b]}"
            for b in self.failed_blocks
        )
        super().__init__(
            f"{len(self.failed_blocks)} block prediction job(s) failed "
            f"{self.failed_blocks}: {details}"
        )
