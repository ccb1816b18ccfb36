"""Tests for block assignment."""

import pytest

from blockrec.data.processing.blocks import assign_block, group_by_block, validate_num_blocks
from blockrec.data.processing.rating_vectors import RatingVectorMerger
from blockrec.errors import ConfigurationError
from blockrec.model.als.embeddings import FeatureMatrix


def test_assign_block_in_range_and_deterministic():
    for user_id in range(-50, 500, 7):
        block = assign_block(user_id, 7)
        assert 0 <= block < 7
        assert all(assign_block(user_id, 7) == block for _ in range(3))


def test_assign_block_is_modulo():
    assert assign_block(23, 10) == 3
    assert assign_block(-1, 4) == 3
    assert assign_block(5, 1) == 0


@pytest.mark.parametrize('num_blocks', [0, -3, 2.5, True, None])
def test_invalid_num_blocks(num_blocks):
    with pytest.raises(ConfigurationError):
        assign_block(1, num_blocks)
    with pytest.raises(ConfigurationError):
        validate_num_blocks(num_blocks)


def test_group_by_block():
    assert group_by_block([1, 2, 3, 4, 5], 2) == {1: [1, 3, 5], 0: [2, 4]}


def test_merge_and_feature_slices_colocate_users():
    num_blocks = 4
    user_ids = list(range(20))
    triples = [(u, 100 + u, 3.0) for u in user_ids]

    sink = RatingVectorMerger(num_blocks).merge_triples([triples])
    features = FeatureMatrix(user_ids, [[float(u)] for u in user_ids]).partition(num_blocks)

    for block_id in range(num_blocks):
        assert sorted(sink.block(block_id)) == sorted(features[block_id].ids.tolist())
