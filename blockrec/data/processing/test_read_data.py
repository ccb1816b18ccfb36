"""Tests for input readers."""

import json
import pickle

import pandas as pd
import pytest

from blockrec.data.processing.read_data import (
    iter_triples,
    load_recommend_filter,
    read_rating_partitions
)


def test_read_headerless_csv(tmp_path):
    path = tmp_path / 'ratings.csv'
    path.write_text("1,10,4.0\n2,11,3.5\n")

    [df] = read_rating_partitions(path)

    assert list(iter_triples(df)) == [(1, 10, 4.0), (2, 11, 3.5)]


def test_read_csv_with_header_and_extra_columns(tmp_path):
    path = tmp_path / 'ratings.csv'
    path.write_text("timestamp,user_id,item_id,rating\n99,1,10,4.0\n")

    [df] = read_rating_partitions(path)

    assert list(iter_triples(df)) == [(1, 10, 4.0)]


def test_read_tsv(tmp_path):
    path = tmp_path / 'ratings.tsv'
    path.write_text("1\t10\t4\n1\t11\t2\n")

    [df] = read_rating_partitions(path)

    assert list(iter_triples(df)) == [(1, 10, 4.0), (1, 11, 2.0)]


def test_read_directory_as_partitions(tmp_path):
    (tmp_path / 'part-0.csv').write_text("1,10,4.0\n")
    (tmp_path / 'part-1.csv').write_text("2,10,3.0\n")
    (tmp_path / '_SUCCESS').write_text("")
    pd.DataFrame({'user_id': [3], 'item_id': [12], 'rating': [1.0]}).to_parquet(
        tmp_path / 'part-2.parquet', index=False
    )

    partitions = read_rating_partitions(tmp_path)

    assert [list(iter_triples(df)) for df in partitions] == [
        [(1, 10, 4.0)], [(2, 10, 3.0)], [(3, 12, 1.0)]
    ]


def test_missing_input_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_rating_partitions(tmp_path / 'nope.csv')
    with pytest.raises(FileNotFoundError):
        read_rating_partitions(tmp_path)


def test_load_recommend_filter_json_and_pickle(tmp_path):
    json_path = tmp_path / 'filter.json'
    json_path.write_text(json.dumps({"1": [10, 11], "2": []}))
    pkl_path = tmp_path / 'filter.pkl'
    with open(pkl_path, 'wb') as f:
        pickle.dump({1: {10, 11}}, f)

    assert load_recommend_filter(json_path) == {1: {10, 11}, 2: set()}
    assert load_recommend_filter(pkl_path) == {1: {10, 11}}


def test_recommend_filter_must_be_a_mapping(tmp_path):
    path = tmp_path / 'filter.json'
    path.write_text(json.dumps([[1, 2]]))

    with pytest.raises(ValueError):
        load_recommend_filter(path)
