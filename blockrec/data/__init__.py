"""
Data package for the block recommender.

This package provides:
- Block assignment (assign_block)
- Rating vector merging routed by block (RatingVectorMerger)
- Block-keyed storage and staged output (BlockSink, RecommendationWriter)
- ID indexes for long-ID translation (IDIndex)
- Input readers for ratings and recommend filters
"""

from .processing.blocks import assign_block, group_by_block, validate_num_blocks
from .processing.block_store import (
    BlockSink,
    RecommendationWriter,
    format_recommendations,
    parse_recommendations,
    read_recommendations,
    save_block_ratings,
    load_block_ratings
)
from .processing.rating_vectors import (
    RatingVectorMerger,
    merge_into,
    merge_vectors,
    partial_vectors,
    to_csr
)
from .processing.id_mapping import IDIndex, load_block_index
from .processing.read_data import (
    read_rating_partitions,
    iter_triples,
    load_recommend_filter
)

__all__ = [
    'assign_block',
    'group_by_block',
    'validate_num_blocks',
    'BlockSink',
    'RecommendationWriter',
    'format_recommendations',
    'parse_recommendations',
    'read_recommendations',
    'save_block_ratings',
    'load_block_ratings',
    'RatingVectorMerger',
    'merge_into',
    'merge_vectors',
    'partial_vectors',
    'to_csr',
    'IDIndex',
    'load_block_index',
    'read_rating_partitions',
    'iter_triples',
    'load_recommend_filter'
]
