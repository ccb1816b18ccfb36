"""
User block assignment.

Every user id is mapped to one of ``num_blocks`` partitions. The merge stage
and the prediction stage both use ``assign_block``, so a user's ratings,
features, index entry and recommendations always end up in the same block.
"""

from collections import defaultdict
from typing import Dict, Iterable, List

from ...errors import ConfigurationError


def validate_num_blocks(num_blocks) -> int:
    """Return ``num_blocks`` or raise ConfigurationError if it is not a positive int."""
    if isinstance(num_blocks, bool) or not isinstance(num_blocks, int) or num_blocks <= 0:
        raise ConfigurationError(f"numBlocks must be a positive integer, got {num_blocks!r}")
    return num_blocks


def assign_block(user_id: int, num_blocks: int) -> int:
    """
    Map a user id to its block.

    Args:
        user_id: Internal user id (may be negative)
        num_blocks: Number of user blocks

    Returns:
        Block id in [0, num_blocks)

    Raises:
        ConfigurationError: If num_blocks <= 0
    """
    validate_num_blocks(num_blocks)
    return int(user_id) % num_blocks


def group_by_block(ids: Iterable[int], num_blocks: int) -> Dict[int, List[int]]:
    """
    Group ids by block, keeping input order inside each block.

    Only non-empty blocks appear in the result.
    """
    validate_num_blocks(num_blocks)
    groups: Dict[int, List[int]] = defaultdict(list)
    for entity_id in ids:
        groups[int(entity_id) % num_blocks].append(int(entity_id))
    return dict(groups)
