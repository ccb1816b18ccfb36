"""Tests for feature matrices."""

import numpy as np
import pytest

from blockrec.data.processing.blocks import assign_block
from blockrec.model.als.embeddings import FeatureMatrix, load_block_features, save_block_features


@pytest.fixture
def matrix():
    ids = np.arange(10)
    return FeatureMatrix(ids, np.column_stack([ids, ids * 2.0]))


def test_lookup(matrix):
    np.testing.assert_array_equal(matrix.vector(3), [3.0, 6.0])
    assert 3 in matrix and 42 not in matrix
    assert matrix.get(42) is None
    assert matrix.num_features == 2


def test_matrix_is_read_only_but_input_is_not():
    factors = np.ones((2, 2))
    matrix = FeatureMatrix([1, 2], factors)
    with pytest.raises(ValueError):
        matrix.factors[0, 0] = 5.0
    factors[0, 0] = 5.0


def test_invalid_shapes_and_duplicates():
    with pytest.raises(ValueError):
        FeatureMatrix([1, 2], np.ones((3, 2)))
    with pytest.raises(ValueError):
        FeatureMatrix([1, 1], np.ones((2, 2)))
    with pytest.raises(ValueError):
        FeatureMatrix([1], np.ones(2))


def test_subset_keeps_order_and_skips_unknown(matrix):
    subset = matrix.subset([5, 99, 2])
    assert subset.ids.tolist() == [5, 2]


def test_partition_follows_assign_block(matrix):
    blocks = matrix.partition(3)
    assert sorted(blocks) == [0, 1, 2]
    for block_id, block in blocks.items():
        assert all(assign_block(int(u), 3) == block_id for u in block.ids)
    assert sum(len(b) for b in blocks.values()) == len(matrix)


def test_partition_with_empty_blocks():
    blocks = FeatureMatrix([0], [[1.0, 2.0]]).partition(3)
    assert len(blocks[1]) == 0
    assert blocks[1].num_features == 2


def test_save_and_load(tmp_path, matrix):
    path = matrix.save(tmp_path / 'U.npz')
    loaded = FeatureMatrix.load(path)
    np.testing.assert_array_equal(loaded.ids, matrix.ids)
    np.testing.assert_array_equal(loaded.factors, matrix.factors)


def test_load_block_features_from_directory_or_single_file(tmp_path, matrix):
    save_block_features(matrix, tmp_path / 'blocks', num_blocks=4)
    matrix.save(tmp_path / 'U.npz')

    from_dir = load_block_features(tmp_path / 'blocks', 1, 4)
    from_file = load_block_features(tmp_path / 'U.npz', 1, 4)

    assert from_dir.ids.tolist() == from_file.ids.tolist() == [1, 5, 9]


def test_from_dict():
    matrix = FeatureMatrix.from_dict({2: [1.0, 0.0], 1: [0.0, 1.0]})
    assert matrix.ids.tolist() == [1, 2]
    assert len(FeatureMatrix.from_dict({}, num_features=3)) == 0
