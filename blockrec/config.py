"""
Configuration for the block recommender and the factor refinement step.

Options can come from three places, later ones winning:
1. Defaults declared on the dataclasses below
2. A YAML file with optional ``recommender:`` and ``factorization:`` sections
3. Explicit overrides (e.g. parsed command line arguments)

Option names follow the job's command line vocabulary (``numBlocks``,
``maxRating``, ...); snake_case spellings are accepted as well.

Example:
    >>> config = load_config('config/blockrec.yaml', overrides={'maxRating': 5.0})
    >>> config.recommender.num_blocks
    10
"""

import logging
import math
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_NUM_BLOCKS = 10
DEFAULT_NUM_RECOMMENDATIONS = 10
DEFAULT_NUM_THREADS = 1


# ============================================================================
# Recommender Options
# ============================================================================

_RECOMMENDER_KEYS = {
    'numBlocks': 'num_blocks',
    'numUserBlock': 'num_blocks',
    'numRecommendations': 'num_recommendations',
    'maxRating': 'max_rating',
    'numThreads': 'num_threads',
    'usesLongIDs': 'uses_long_ids',
    'userIDIndex': 'user_id_index',
    'itemIDIndex': 'item_id_index',
    'recommendFilterPath': 'recommend_filter_path',
    'excludeRated': 'exclude_rated',
    'maxParallelBlocks': 'max_parallel_blocks',
}

_FACTORIZATION_KEYS = {
    'numFeatures': 'num_features',
    'lambda': 'lambda_',
    'lambda_': 'lambda_',
    'numPartitions': 'num_partitions',
    'numWorkers': 'num_workers',
}


def _normalize_keys(options: Dict[str, Any], key_map: Dict[str, str],
                    section: str) -> Dict[str, Any]:
    allowed = set(key_map.values())
    normalized = {}
    for key, value in options.items():
        name = key_map.get(key, key)
        if name not in allowed:
            raise ConfigurationError(f"Unknown {section} option: {key!r}")
        normalized[name] = value
    return normalized


def _require_positive_int(name: str, value: Any):
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")


@dataclass
class RecommenderConfig:
    """
    Options of the block-parallel recommendation job.

    Attributes:
        max_rating: Score ceiling, required
        num_blocks: Number of user partitions
        num_recommendations: N, recommendations kept per user
        num_threads: Scoring threads inside one block
        uses_long_ids: Translate internal ids back to external long ids
        user_id_index: Path to the user index (file, or directory of per-block files)
        item_id_index: Path to the item index
        recommend_filter_path: Optional per-user exclusion sets
        exclude_rated: Skip items the user already rated
        max_parallel_blocks: Upper bound on concurrently running blocks
    """
    max_rating: Optional[float] = None
    num_blocks: int = DEFAULT_NUM_BLOCKS
    num_recommendations: int = DEFAULT_NUM_RECOMMENDATIONS
    num_threads: int = DEFAULT_NUM_THREADS
    uses_long_ids: bool = False
    user_id_index: Optional[str] = None
    item_id_index: Optional[str] = None
    recommend_filter_path: Optional[str] = None
    exclude_rated: bool = True
    max_parallel_blocks: Optional[int] = None

    @classmethod
    def from_dict(cls, options: Dict[str, Any]) -> 'RecommenderConfig':
        return cls(**_normalize_keys(options or {}, _RECOMMENDER_KEYS, 'recommender'))

    @property
    def parallel_blocks(self) -> int:
        return self.max_parallel_blocks or self.num_blocks

    def validate(self) -> 'RecommenderConfig':
        """
        Check every option before any work is scheduled.

        Raises:
            ConfigurationError: On the first invalid or inconsistent option
        """
        _require_positive_int('numBlocks', self.num_blocks)
        _require_positive_int('numRecommendations', self.num_recommendations)
        _require_positive_int('numThreads', self.num_threads)
        if self.max_parallel_blocks is not None:
            _require_positive_int('maxParallelBlocks', self.max_parallel_blocks)

        if self.max_rating is None:
            raise ConfigurationError("maxRating is required")
        try:
            self.max_rating = float(self.max_rating)
        except (TypeError, ValueError):
            raise ConfigurationError(f"maxRating must be a number, got {self.max_rating!r}")
        if not math.isfinite(self.max_rating):
            raise ConfigurationError(f"maxRating must be finite, got {self.max_rating}")

        if self.uses_long_ids and not (self.user_id_index and self.item_id_index):
            raise ConfigurationError(
                "usesLongIDs requires both userIDIndex and itemIDIndex"
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        reverse = {v: k for k, v in _RECOMMENDER_KEYS.items() if k != 'numUserBlock'}
        return {reverse[f.name]: getattr(self, f.name) for f in fields(self)}


# ============================================================================
# Factorization Options
# ============================================================================

@dataclass
class FactorizationConfig:
    """
    Options of the factor refinement step.

    Attributes:
        num_features: Factorization rank k
        lambda_: Regularization weight (scaled by the number of ratings)
        num_partitions: Input partitions pre-reduced independently
        num_workers: Threads used for the partial combines
    """
    num_features: Optional[int] = None
    lambda_: float = 0.065
    num_partitions: int = 4
    num_workers: int = 1

    @classmethod
    def from_dict(cls, options: Dict[str, Any]) -> 'FactorizationConfig':
        return cls(**_normalize_keys(options or {}, _FACTORIZATION_KEYS, 'factorization'))

    def validate(self) -> 'FactorizationConfig':
        if self.num_features is None:
            raise ConfigurationError("numFeatures is required")
        _require_positive_int('numFeatures', self.num_features)
        _require_positive_int('numPartitions', self.num_partitions)
        _require_positive_int('numWorkers', self.num_workers)
        if self.lambda_ < 0:
            raise ConfigurationError(f"lambda must be >= 0, got {self.lambda_}")
        return self


@dataclass
class Config:
    recommender: RecommenderConfig = field(default_factory=RecommenderConfig)
    factorization: FactorizationConfig = field(default_factory=FactorizationConfig)


# ============================================================================
# Loading
# ============================================================================

def load_config(config_path: Optional[str] = None,
                overrides: Optional[Dict[str, Any]] = None) -> Config:
    """
    Load configuration from a YAML file and apply overrides.

    Overrides use recommender option names; ``None`` values are ignored so
    unset command line flags keep the file or default value.

    Args:
        config_path: Path to YAML config file (optional)
        overrides: Recommender options taking precedence over the file

    Returns:
        Config with both sections (not yet validated)
    """
    file_config: Dict[str, Any] = {}

    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        try:
            with open(path, 'r', encoding='utf-8') as f:
                file_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file {path}: {e}") from e
        if not isinstance(file_config, dict):
            raise ConfigurationError(f"Config file must contain a mapping: {path}")
        logger.info(f"Loaded configuration from {path}")

    unknown = set(file_config) - {'recommender', 'factorization'}
    if unknown:
        raise ConfigurationError(f"Unknown config sections: {sorted(unknown)}")

    recommender_options = dict(file_config.get('recommender') or {})
    for key, value in (overrides or {}).items():
        if value is not None:
            recommender_options[key] = value

    # Normalized keys may collide (e.g. numBlocks vs num_blocks); last one wins
    recommender = RecommenderConfig.from_dict(recommender_options)
    factorization = FactorizationConfig.from_dict(file_config.get('factorization') or {})

    return Config(recommender=recommender, factorization=factorization)
