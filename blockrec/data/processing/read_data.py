"""
Input readers.

- Rating triples from CSV / TSV / Parquet files (a directory is read as one
  partition per file)
- Recommend-filter sets (JSON or pickle), keyed by internal user id
"""

import json
import logging
import pickle
from pathlib import Path
from typing import Dict, Iterator, List, Set

import pandas as pd

from .rating_vectors import Triple

logger = logging.getLogger(__name__)


RATING_COLUMNS = ['user_id', 'item_id', 'rating']
SUPPORTED_SUFFIXES = ('.csv', '.tsv', '.txt', '.parquet')


def _is_numeric_header(columns) -> bool:
    """True when the 'header' is really the first data row."""
    try:
        [float(c) for c in columns]
    except (TypeError, ValueError):
        return False
    return True


def _read_frame(path: Path) -> pd.DataFrame:
    if path.suffix == '.parquet':
        df = pd.read_parquet(path, engine='pyarrow')
    else:
        # .txt inputs may be comma or tab separated; let pandas sniff them
        sep = {'.csv': ',', '.tsv': '\t'}.get(path.suffix)
        df = pd.read_csv(path, sep=sep, engine='python')
        if not set(RATING_COLUMNS).issubset(df.columns) and _is_numeric_header(df.columns):
            df = pd.read_csv(path, sep=sep, engine='python', header=None)

    if set(RATING_COLUMNS).issubset(df.columns):
        df = df[RATING_COLUMNS]
    else:
        if df.shape[1] < 3:
            raise ValueError(f"Expected at least 3 columns (user, item, rating) in {path}")
        df = df.iloc[:, :3]
        df.columns = RATING_COLUMNS

    df = df.astype({'user_id': 'int64', 'item_id': 'int64', 'rating': 'float64'})
    return df


def read_rating_partitions(path: str) -> List[pd.DataFrame]:
    """
    Read rating triples.

    Args:
        path: A single file or a directory of files (hidden files ignored)

    Returns:
        List of DataFrames with columns user_id, item_id, rating, one per file
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Ratings input not found: {path}")

    if path.is_dir():
        files = sorted(
            p for p in path.iterdir()
            if p.is_file() and not p.name.startswith(('.', '_')) and p.suffix in SUPPORTED_SUFFIXES
        )
        if not files:
            raise FileNotFoundError(f"No rating files in {path}")
    else:
        files = [path]

    partitions = [_read_frame(f) for f in files]
    total = sum(len(df) for df in partitions)
    logger.info(f"Read {total:,} ratings in {len(partitions)} partitions from {path}")
    return partitions


def iter_triples(df: pd.DataFrame) -> Iterator[Triple]:
    """Yield (user_id, item_id, rating) tuples from a ratings DataFrame."""
    for user_id, item_id, rating in df[RATING_COLUMNS].itertuples(index=False, name=None):
        yield int(user_id), int(item_id), float(rating)


def load_recommend_filter(path: str) -> Dict[int, Set[int]]:
    """
    Load per-user exclusion sets.

    ``.pkl`` files hold a pickled ``Dict[int, Set[int]]``; anything else is
    read as JSON ``{"user_id": [item_id, ...]}``.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Recommend filter not found: {path}")

    if path.suffix == '.pkl':
        with open(path, 'rb') as f:
            raw = pickle.load(f)
    else:
        with open(path, 'r', encoding='utf-8') as f:
            raw = json.load(f)

    if not isinstance(raw, dict):
        raise ValueError(f"Malformed recommend filter {path}: expected a mapping of user id to item ids")
    filters = {int(user): {int(item) for item in items} for user, items in raw.items()}
    logger.info(
        f"Loaded recommend filter for {len(filters):,} users "
        f"({sum(len(s) for s in filters.values()):,} excluded items) from {path}"
    )
    return filters
