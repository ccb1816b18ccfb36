"""Tests for block-keyed storage and staged output."""

import pytest

from blockrec.data.processing.block_store import (
    BlockSink,
    RecommendationWriter,
    format_recommendations,
    load_block_ratings,
    parse_recommendations,
    read_recommendations,
    save_block_ratings
)
from blockrec.errors import ConfigurationError, DataIntegrityError


def test_sink_write_and_read():
    sink = BlockSink(3)
    sink.write(1, 7, {10: 4.0})
    sink.write(2, 8, {11: 1.0})

    assert sink.block(1) == {7: {10: 4.0}}
    assert sink.block(0) == {}
    assert sink.block_ids() == [0, 1, 2]
    assert len(sink) == 2


def test_sink_rejects_bad_block_and_duplicate_key():
    sink = BlockSink(2)
    with pytest.raises(ValueError):
        sink.write(2, 1, {})
    sink.write(0, 1, {})
    with pytest.raises(DataIntegrityError):
        sink.write(0, 1, {})
    with pytest.raises(ConfigurationError):
        BlockSink(0)


def test_block_ratings_round_trip(tmp_path):
    sink = BlockSink(2)
    sink.write(0, 4, {1: 2.0})
    save_block_ratings(sink, tmp_path)

    assert load_block_ratings(tmp_path, 0) == {4: {1: 2.0}}
    assert load_block_ratings(tmp_path, 1) == {}


def test_format_and_parse_recommendations():
    line = format_recommendations(7, [(3, 4.5), (1, 4.0)])
    assert line == "7\t[3:4.5,1:4.0]"
    assert parse_recommendations(line) == ('7', [('3', 4.5), ('1', 4.0)])
    assert parse_recommendations(format_recommendations(8, [])) == ('8', [])


def test_writer_commit_replaces_output(tmp_path):
    output = tmp_path / 'recs'
    output.mkdir()
    (output / 'stale').write_text("old")

    writer = RecommendationWriter(output, run_id='r1')
    writer.write_block(0, {1: [(10, 5.0)]})
    writer.write_block(1, {2: [(11, 4.0), (12, 3.0)]})
    assert not (output / '0').exists()
    writer.commit()

    assert not (output / 'stale').exists()
    assert read_recommendations(output) == {
        0: {'1': [('10', 5.0)]},
        1: {'2': [('11', 4.0), ('12', 3.0)]},
    }
    assert not writer.staging_dir.exists()


def test_writer_abort_leaves_nothing(tmp_path):
    output = tmp_path / 'recs'
    writer = RecommendationWriter(output, run_id='r2')
    writer.write_block(0, {1: [(10, 5.0)]})
    writer.abort()

    assert not output.exists()
    assert list(tmp_path.iterdir()) == []
