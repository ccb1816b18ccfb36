"""
Block-Parallel Recommendation Job

Computes the top-N recommendations per user from a factorization of the
rating matrix, one independent prediction task per user block:

- Step 1: Validate configuration (before any work is scheduled)
- Step 2: Merge rating triples into per-user vectors, routed by block
- Step 3: Run one prediction task per block concurrently, join on all
- Step 4: Write output only if every block succeeded

A run either produces the recommendations of every block or fails with
PartialFailureError naming the failed blocks; partial results are never
returned or written.

Usage:
    >>> job = BlockRecommenderJob(RecommenderConfig(max_rating=5.0, num_blocks=4))
    >>> results = job.run(
    ...     rating_partitions=[triples_a, triples_b],
    ...     item_features=V,
    ...     user_features=U,
    ...     output_dir='out/recommendations'
    ... )
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Iterable, Optional, Sequence, Set, Union

from ...config import RecommenderConfig
from ...data.processing.block_store import BlockSink, RecommendationWriter, save_block_ratings
from ...data.processing.id_mapping import IDIndex
from ...data.processing.rating_vectors import RatingVectorMerger, Triple
from ...errors import ConfigurationError, PartialFailureError
from ...logging_utils import (
    BLOCKS_FAILED,
    BLOCKS_SUCCEEDED,
    JobMetricsDB,
    RunMetrics,
    format_metrics,
    format_params,
    generate_run_id
)
from .embeddings import FeatureMatrix
from .recommender import BlockInput, BlockPredictor, BlockResult, BlockTask

logger = logging.getLogger(__name__)


JOB_NAME = 'block_recommender'

BlockLoader = Callable[[int], BlockInput]


def _as_block_loader(source, num_blocks: int):
    """Accept a whole matrix/index (sliced or shared) or a per-block callable."""
    if source is None or callable(source):
        return source
    if isinstance(source, FeatureMatrix):
        return source.partition(num_blocks).__getitem__
    return lambda block_id: source


class BlockRecommenderJob:
    """
    Controller of a block-parallel recommendation run.

    Attributes:
        config: Validated RecommenderConfig
        metrics: Per-run metrics sink shared with merger and predictors
        metrics_db: Optional JobMetricsDB recording per-block outcomes
        run_id: Identifier of this run
        cancel_event: Set when the current run is interrupted (new event per run)
    """

    def __init__(self,
                 config: RecommenderConfig,
                 metrics: Optional[RunMetrics] = None,
                 metrics_db: Optional[JobMetricsDB] = None,
                 run_id: Optional[str] = None):
        self.config = config.validate()
        self.metrics = metrics if metrics is not None else RunMetrics()
        self.metrics_db = metrics_db
        self.run_id = run_id or generate_run_id(JOB_NAME)
        self.cancel_event = threading.Event()

    # ------------------------------------------------------------------
    # Step 2: merge
    # ------------------------------------------------------------------

    def prepare_user_ratings(self, rating_partitions: Sequence[Iterable[Triple]]) -> BlockSink:
        """
        Merge rating triples into one vector per user, partitioned by block.

        Raises:
            DataIntegrityError: On duplicate (user, item) observations
        """
        merger = RatingVectorMerger(self.config.num_blocks, self.metrics)
        return merger.merge_triples(rating_partitions)

    # ------------------------------------------------------------------
    # Step 3: block predictions
    # ------------------------------------------------------------------

    def build_predictor(self,
                        item_features: FeatureMatrix,
                        item_index: Optional[IDIndex] = None,
                        recommend_filter: Optional[Dict[int, Set[int]]] = None) -> BlockPredictor:
        return BlockPredictor(
            item_features=item_features,
            max_rating=self.config.max_rating,
            num_recommendations=self.config.num_recommendations,
            num_threads=self.config.num_threads,
            item_index=item_index,
            recommend_filter=recommend_filter,
            exclude_rated=self.config.exclude_rated,
            metrics=self.metrics,
            cancel_event=self.cancel_event
        )

    def _run_block(self, task: BlockTask, block_loader: BlockLoader, block_id: int) -> BlockResult:
        start = time.time()
        try:
            result = task.run(block_loader(block_id))
        except BaseException as e:
            status = 'cancelled' if self.cancel_event.is_set() else 'failed'
            if self.metrics_db is not None:
                self.metrics_db.log_block_result(
                    self.run_id, block_id, status,
                    wall_time_seconds=time.time() - start,
                    error=f"{type(e).__name__}: {e}"
                )
            raise

        if self.metrics_db is not None:
            self.metrics_db.log_block_result(
                self.run_id, block_id, 'succeeded',
                num_users=result.num_users,
                num_missing=result.num_missing,
                wall_time_seconds=result.wall_time_seconds
            )
        return result

    def run_predictions(self, task: BlockTask, block_loader: BlockLoader) -> Dict[int, BlockResult]:
        """
        Run one task per block concurrently and wait for all of them.

        Args:
            task: Block task, invoked once per block id
            block_loader: Builds the BlockInput of a block id (called inside
                the block's task)

        Returns:
            BlockResult per block id, only if every block succeeded

        Raises:
            PartialFailureError: If one or more blocks failed
        """
        num_blocks = self.config.num_blocks
        workers = min(self.config.parallel_blocks, num_blocks)
        logger.info(f"Starting {num_blocks} block prediction jobs ({workers} in parallel)")

        results: Dict[int, BlockResult] = {}
        errors: Dict[int, BaseException] = {}

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix='block-job')
        futures = {
            executor.submit(self._run_block, task, block_loader, block_id): block_id
            for block_id in range(num_blocks)
        }
        try:
            for future in as_completed(futures):
                block_id = futures[future]
                try:
                    results[block_id] = future.result()
                except Exception as e:
                    errors[block_id] = e
                    self.metrics.increment(BLOCKS_FAILED)
                    logger.error(f"Block {block_id} failed: {type(e).__name__}: {e}")
                else:
                    self.metrics.increment(BLOCKS_SUCCEEDED)
                    logger.info(f"Block {block_id} succeeded ({len(results)}/{num_blocks} done)")
        except BaseException:
            logger.warning("Interrupted, cancelling block prediction jobs")
            self.cancel_event.set()
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown(wait=True)

        if errors:
            error = PartialFailureError(errors)
            logger.error(f"control job failed: blocks {error.failed_blocks}")
            raise error

        logger.info("control job finished")
        return dict(sorted(results.items()))

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    def run(self,
            rating_partitions: Sequence[Iterable[Triple]],
            item_features: FeatureMatrix,
            user_features: Union[FeatureMatrix, Callable[[int], FeatureMatrix]],
            output_dir: Optional[str] = None,
            item_index: Optional[IDIndex] = None,
            user_index: Union[IDIndex, Callable[[int], IDIndex], None] = None,
            recommend_filter: Optional[Dict[int, Set[int]]] = None,
            ratings_dir: Optional[str] = None) -> Dict[int, BlockResult]:
        """
        Merge, predict every block, and write the output.

        Args:
            rating_partitions: (user, item, rating) triples, partitioned arbitrarily
            item_features: Full item feature matrix
            user_features: Whole user matrix (sliced by block) or a loader
                returning the slice of a block id
            output_dir: Where to write recommendations (nothing is written if None)
            item_index: Item ID index, required when usesLongIDs
            user_index: User ID index (shared) or loader of a block's index,
                required when usesLongIDs
            recommend_filter: User id -> excluded item ids
            ratings_dir: If set, merged block ratings are saved there

        Returns:
            BlockResult per block id

        Raises:
            ConfigurationError: Inconsistent long-ID options
            DataIntegrityError: Duplicate observations in the input
            PartialFailureError: One or more blocks failed
        """
        if self.config.uses_long_ids and (item_index is None or user_index is None):
            raise ConfigurationError("usesLongIDs requires both a user and an item ID index")
        if not self.config.uses_long_ids:
            item_index = user_index = None

        # Workers left over from an interrupted run keep the old, set event
        self.cancel_event = threading.Event()

        params = self.config.to_dict()
        logger.info(f"Run {self.run_id} | {format_params(params)}")
        if self.metrics_db is not None:
            self.metrics_db.log_run_start(self.run_id, JOB_NAME, params)

        writer = RecommendationWriter(output_dir, run_id=self.run_id) if output_dir else None
        try:
            ratings = self.prepare_user_ratings(rating_partitions)
            if ratings_dir:
                save_block_ratings(ratings, ratings_dir)

            features_loader = _as_block_loader(user_features, self.config.num_blocks)
            index_loader = _as_block_loader(user_index, self.config.num_blocks)

            def load_block(block_id: int) -> BlockInput:
                return BlockInput(
                    block_id=block_id,
                    user_ratings=ratings.block(block_id),
                    user_features=features_loader(block_id),
                    user_index=index_loader(block_id) if index_loader else None
                )

            predictor = self.build_predictor(item_features, item_index, recommend_filter)
            results = self.run_predictions(predictor, load_block)

            if writer is not None:
                for block_id, result in results.items():
                    writer.write_block(block_id, result.recommendations)
                writer.commit()
        except BaseException as e:
            if writer is not None:
                writer.abort()
            if self.metrics_db is not None:
                self.metrics_db.log_run_failed(self.run_id, f"{type(e).__name__}: {e}", self.metrics.snapshot())
            raise

        if self.metrics_db is not None:
            self.metrics_db.log_run_complete(self.run_id, self.metrics.snapshot())
        logger.info(f"Run {self.run_id} complete | {format_metrics(self.metrics.snapshot())}")
        return results
