"""
Logging Utilities for the Block Recommender.

This module provides:
- Logger setup for job runs (file + console)
- A per-run metrics sink injected into the pipeline components
- Optional SQLite tracking of runs and per-block outcomes

Example:
    >>> from blockrec.logging_utils import setup_job_logger, RunMetrics, JobMetricsDB
    >>> run_id = generate_run_id('block_recommender')
    >>> logger = setup_job_logger('block_recommender', run_id)
    >>> metrics = RunMetrics()
    >>> metrics.increment('num_users')
    >>> db = JobMetricsDB('logs/blockrec_metrics.db')
    >>> db.log_run_start(run_id, 'block_recommender', {'numBlocks': 10})
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

# ============================================================================
# Constants
# ============================================================================

JOB_LOG_DIR = "logs/blockrec"
JOB_DB_PATH = "logs/blockrec_metrics.db"

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Well-known counters
NUM_USERS = 'num_users'
USERS_SCORED = 'users_scored'
MISSING_FEATURES = 'missing_features'
BLOCKS_SUCCEEDED = 'blocks_succeeded'
BLOCKS_FAILED = 'blocks_failed'


# ============================================================================
# Logger Setup
# ============================================================================

def setup_job_logger(
    job_name: str,
    run_id: str,
    log_dir: str = JOB_LOG_DIR,
    console: bool = True,
    verbose: bool = False
) -> logging.Logger:
    """
    Setup the ``blockrec`` logger for a job run.

    All module loggers live under ``blockrec.*`` and propagate here.

    Args:
        job_name: Job name, used as log file name
        run_id: Unique run identifier
        log_dir: Directory for log files
        console: Whether to also log to console
        verbose: Log DEBUG messages as well

    Returns:
        Configured logger
    """
    Path(log_dir).mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger('blockrec')
    logger.setLevel(level)

    # Clear existing handlers
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers = []

    fh = logging.FileHandler(Path(log_dir) / f'{job_name}.log', encoding='utf-8')
    fh.setLevel(level)
    fh.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    logger.addHandler(fh)

    if console:
        ch = logging.StreamHandler()
        ch.setLevel(level)
        ch.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
        logger.addHandler(ch)

    logger.info(f"Run {run_id} | logging to {Path(log_dir) / f'{job_name}.log'}")
    return logger


# ============================================================================
# Format Helpers
# ============================================================================

def format_params(params: Dict[str, Any]) -> str:
    """Format parameters for logging."""
    items = []
    for k, v in params.items():
        if isinstance(v, float):
            items.append(f"{k}={v:.4g}")
        else:
            items.append(f"{k}={v}")
    return ", ".join(items)


def format_metrics(metrics: Dict[str, float]) -> str:
    """Format metrics for logging."""
    items = []
    for k, v in metrics.items():
        if v is None:
            continue
        if isinstance(v, int):
            items.append(f"{k}={v}")
        else:
            items.append(f"{k}={v:.4f}")
    return ", ".join(items)


def generate_run_id(job_name: str) -> str:
    """
    Generate unique run ID.

    Returns:
        Run ID like 'block_recommender_20251125_103000'
    """
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    return f"{job_name}_{timestamp}"


# ============================================================================
# Per-run Metrics
# ============================================================================

class RunMetrics:
    """
    Named counters for one run.

    Created by whoever starts the run and passed explicitly to the merger,
    the block predictors and the controller. Safe to update from worker
    threads.

    Example:
        >>> metrics = RunMetrics()
        >>> metrics.increment('num_users', 3)
        >>> metrics.get('num_users')
        3
    """

    def __init__(self):
        self._counters: Dict[str, int] = {}
        self._lock = threading.Lock()

    def increment(self, name: str, amount: int = 1):
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + amount

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def __repr__(self) -> str:
        return f"RunMetrics({format_metrics(self.snapshot())})"


# ============================================================================
# Job Metrics Database
# ============================================================================

class JobMetricsDB:
    """
    SQLite database for job runs.

    Tables:
    - job_runs: One row per run
    - block_runs: One row per block prediction task of a run

    Example:
        >>> db = JobMetricsDB('logs/blockrec_metrics.db')
        >>> db.log_run_start('run_001', 'block_recommender', {'numBlocks': 4})
        >>> db.log_block_result('run_001', 0, 'succeeded', num_users=120)
        >>> db.log_run_complete('run_001', {'num_users': 480})
    """

    def __init__(self, db_path: str = JOB_DB_PATH):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._create_tables()

    @contextmanager
    def _get_connection(self):
        """Get database connection with context manager."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _create_tables(self):
        """Create database tables if they don't exist."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS job_runs (
                    run_id TEXT PRIMARY KEY,
                    job_name TEXT,
                    started_at TIMESTAMP,
                    completed_at TIMESTAMP,
                    status TEXT,

                    -- Options (JSON)
                    params TEXT,
                    -- Final counters (JSON)
                    metrics TEXT,

                    error TEXT
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS block_runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id TEXT,
                    block_id INT,
                    timestamp TIMESTAMP,
                    status TEXT,
                    num_users INT,
                    num_missing INT,
                    wall_time_seconds REAL,
                    error TEXT,

                    FOREIGN KEY (run_id) REFERENCES job_runs(run_id)
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_block_runs_run_id
                ON block_runs(run_id)
            """)

            conn.commit()

    def _execute(self, sql: str, params: tuple):
        with self._lock, self._get_connection() as conn:
            conn.execute(sql, params)
            conn.commit()

    def log_run_start(self, run_id: str, job_name: str, params: Dict[str, Any]):
        self._execute("""
            INSERT OR REPLACE INTO job_runs
            (run_id, job_name, started_at, status, params)
            VALUES (?, ?, ?, ?, ?)
        """, (
            run_id,
            job_name,
            datetime.now().isoformat(),
            'running',
            json.dumps(params, default=str)
        ))

    def log_block_result(
        self,
        run_id: str,
        block_id: int,
        status: str,
        num_users: Optional[int] = None,
        num_missing: Optional[int] = None,
        wall_time_seconds: Optional[float] = None,
        error: Optional[str] = None
    ):
        """
        Log the terminal status of one block task.

        Args:
            run_id: Run identifier
            block_id: Block the task processed
            status: 'succeeded', 'failed' or 'cancelled'
            num_users: Users with a recommendation list
            num_missing: Users skipped for lack of features
            wall_time_seconds: Task duration
            error: Error message if failed
        """
        self._execute("""
            INSERT INTO block_runs
            (run_id, block_id, timestamp, status, num_users, num_missing,
             wall_time_seconds, error)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            run_id,
            block_id,
            datetime.now().isoformat(),
            status,
            num_users,
            num_missing,
            wall_time_seconds,
            error
        ))

    def log_run_complete(self, run_id: str, metrics: Dict[str, Any]):
        self._execute("""
            UPDATE job_runs
            SET completed_at = ?, status = 'completed', metrics = ?
            WHERE run_id = ?
        """, (datetime.now().isoformat(), json.dumps(metrics), run_id))

    def log_run_failed(self, run_id: str, error_message: str,
                       metrics: Optional[Dict[str, Any]] = None):
        self._execute("""
            UPDATE job_runs
            SET completed_at = ?, status = 'failed', metrics = ?, error = ?
            WHERE run_id = ?
        """, (
            datetime.now().isoformat(),
            json.dumps(metrics or {}),
            error_message,
            run_id
        ))

    def get_run(self, run_id: str) -> Optional[Dict]:
        """Get job run by ID."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM job_runs WHERE run_id = ?",
                (run_id,)
            ).fetchone()
            return dict(row) if row else None

    def get_block_results(self, run_id: str) -> List[Dict]:
        """Get all block outcomes for a run, ordered by block id."""
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM block_runs
                WHERE run_id = ?
                ORDER BY block_id
            """, (run_id,)).fetchall()
            return [dict(row) for row in rows]
