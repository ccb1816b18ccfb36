"""Tests for run logging, metrics and the job metrics database."""

import logging
import threading

import pytest

from blockrec.logging_utils import (
    JobMetricsDB,
    RunMetrics,
    format_metrics,
    format_params,
    generate_run_id,
    setup_job_logger
)


@pytest.fixture
def job_logger(tmp_path):
    logger = setup_job_logger('test_job', 'run_1', log_dir=str(tmp_path), console=False)
    yield logger
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers = []


def test_setup_job_logger_writes_file(job_logger, tmp_path):
    logging.getLogger('blockrec.model.als.block_job').info("Block 3 succeeded")
    for handler in job_logger.handlers:
        handler.flush()

    content = (tmp_path / 'test_job.log').read_text()
    assert "Run run_1" in content
    assert "Block 3 succeeded" in content


def test_setup_job_logger_replaces_handlers(job_logger, tmp_path):
    logger = setup_job_logger('test_job', 'run_2', log_dir=str(tmp_path), console=False)

    assert len(logger.handlers) == 1


def test_format_helpers():
    assert format_params({'numBlocks': 4, 'maxRating': 5.0}) == "numBlocks=4, maxRating=5"
    assert format_metrics({'num_users': 3, 'ratio': 0.5, 'skip': None}) == "num_users=3, ratio=0.5000"
    assert generate_run_id('block_recommender').startswith('block_recommender_')


def test_run_metrics_thread_safe():
    metrics = RunMetrics()

    def work():
        for _ in range(1000):
            metrics.increment('users_scored')

    threads = [threading.Thread(target=work) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert metrics.get('users_scored') == 4000
    assert metrics.get('unknown') == 0
    assert metrics.snapshot() == {'users_scored': 4000}


def test_metrics_are_per_instance():
    first, second = RunMetrics(), RunMetrics()
    first.increment('num_users', 5)

    assert second.get('num_users') == 0


def test_job_metrics_db_round_trip(tmp_path):
    db = JobMetricsDB(str(tmp_path / 'db' / 'metrics.db'))
    db.log_run_start('run_1', 'block_recommender', {'numBlocks': 2})
    db.log_block_result('run_1', 1, 'failed', wall_time_seconds=0.1, error='RuntimeError: boom')
    db.log_block_result('run_1', 0, 'succeeded', num_users=10, num_missing=1)
    db.log_run_failed('run_1', 'PartialFailureError: block 1', {'num_users': 10})

    run = db.get_run('run_1')
    assert run['status'] == 'failed'
    assert run['job_name'] == 'block_recommender'
    blocks = db.get_block_results('run_1')
    assert [(b['block_id'], b['status']) for b in blocks] == [(0, 'succeeded'), (1, 'failed')]
    assert db.get_run('missing') is None
