"""
Block Recommender Command Line

Computes the top-N recommendations per user from a decomposition of the
rating matrix, processing users block by block.

Usage:
    # Minimal
    python -m blockrec.model.als.run_block_recommender \\
        --input data/ratings --output out/recommendations \\
        --user-features model/U --item-features model/V.npz --max-rating 5

    # Long ids, recommend filter and a YAML config
    python -m blockrec.model.als.run_block_recommender \\
        --config config/blockrec.yaml --input data/ratings --output out/recs \\
        --user-features model/U --item-features model/V.npz \\
        --uses-long-ids --user-id-index model/user_index --item-id-index model/item_index.json \\
        --recommend-filter-path data/filter.json

Inputs:
    --input           Rating triples file or directory (CSV/TSV/Parquet)
    --user-features   Directory of <block>.npz slices, or a single .npz file
    --item-features   Item feature .npz file
    --user-id-index   Directory of <block>.json indexes, or a single index file
    --item-id-index   Item index .json file

Exit status is 0 on success and 1 on any failure (configuration, merge,
or one or more failed blocks).
"""

import argparse
import logging
import sys
from typing import Dict, Optional

from ...config import RecommenderConfig, load_config
from ...data.processing.id_mapping import IDIndex, load_block_index
from ...data.processing.read_data import iter_triples, load_recommend_filter, read_rating_partitions
from ...errors import BlockRecError, PartialFailureError
from ...logging_utils import JobMetricsDB, RunMetrics, format_metrics, generate_run_id, setup_job_logger
from .block_job import JOB_NAME, BlockRecommenderJob
from .embeddings import FeatureMatrix, load_block_features
from .recommender import BlockResult

logger = logging.getLogger(__name__)


def run_from_paths(config: RecommenderConfig,
                   input_path: str,
                   output_path: str,
                   user_features_path: str,
                   item_features_path: str,
                   metrics: Optional[RunMetrics] = None,
                   metrics_db: Optional[JobMetricsDB] = None,
                   run_id: Optional[str] = None,
                   ratings_dir: Optional[str] = None) -> Dict[int, BlockResult]:
    """
    Run the job on files.

    Configuration is validated before anything is read.
    """
    job = BlockRecommenderJob(config, metrics=metrics, metrics_db=metrics_db, run_id=run_id)
    num_blocks = job.config.num_blocks

    partitions = [list(iter_triples(df)) for df in read_rating_partitions(input_path)]
    item_features = FeatureMatrix.load(item_features_path)
    logger.info(f"Item features: {len(item_features):,} items x {item_features.num_features} factors")

    item_index = user_index = None
    if job.config.uses_long_ids:
        item_index = IDIndex.load_json(job.config.item_id_index)
        user_index_path = job.config.user_id_index
        user_index = lambda block_id: load_block_index(user_index_path, block_id)

    recommend_filter = None
    if job.config.recommend_filter_path:
        recommend_filter = load_recommend_filter(job.config.recommend_filter_path)

    return job.run(
        rating_partitions=partitions,
        item_features=item_features,
        user_features=lambda block_id: load_block_features(user_features_path, block_id, num_blocks),
        output_dir=output_path,
        item_index=item_index,
        user_index=user_index,
        recommend_filter=recommend_filter,
        ratings_dir=ratings_dir
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Compute top-N recommendations per user, block by block"
    )
    parser.add_argument('--input', required=True, help="Rating triples (file or directory)")
    parser.add_argument('--output', required=True, help="Output directory for recommendations")
    parser.add_argument('--user-features', required=True, help="User feature matrix (per-block dir or .npz)")
    parser.add_argument('--item-features', required=True, help="Item feature matrix (.npz)")
    parser.add_argument('--config', default=None, help="YAML config file")
    parser.add_argument('--num-recommendations', type=int, default=None,
                        help="Number of recommendations per user (default: 10)")
    parser.add_argument('--max-rating', type=float, default=None, help="Maximum rating available")
    parser.add_argument('--num-threads', type=int, default=None, help="Threads per block (default: 1)")
    parser.add_argument('--uses-long-ids', action='store_true', default=None,
                        help="Translate ids back to long ids (needs both indexes)")
    parser.add_argument('--user-id-index', default=None, help="User long-ID index")
    parser.add_argument('--item-id-index', default=None, help="Item long-ID index")
    parser.add_argument('--recommend-filter-path', default=None, help="Per-user items to exclude (optional)")
    parser.add_argument('--num-user-blocks', type=int, default=None, help="Number of user blocks (default: 10)")
    parser.add_argument('--max-parallel-blocks', type=int, default=None,
                        help="Blocks running at the same time (default: all)")
    parser.add_argument('--ratings-dir', default=None, help="Also save merged block ratings here")
    parser.add_argument('--log-dir', default='logs/blockrec', help="Log directory")
    parser.add_argument('--metrics-db', default=None, help="SQLite file for run/block tracking")
    parser.add_argument('--verbose', action='store_true', help="Debug logging")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    run_id = generate_run_id(JOB_NAME)
    setup_job_logger(JOB_NAME, run_id, log_dir=args.log_dir, verbose=args.verbose)
    logger.info(f"Command: {' '.join(sys.argv)}")

    overrides = {
        'numRecommendations': args.num_recommendations,
        'maxRating': args.max_rating,
        'numThreads': args.num_threads,
        'usesLongIDs': args.uses_long_ids,
        'userIDIndex': args.user_id_index,
        'itemIDIndex': args.item_id_index,
        'recommendFilterPath': args.recommend_filter_path,
        'numBlocks': args.num_user_blocks,
        'maxParallelBlocks': args.max_parallel_blocks,
    }

    metrics = RunMetrics()
    try:
        config = load_config(args.config, overrides=overrides).recommender
        metrics_db = JobMetricsDB(args.metrics_db) if args.metrics_db else None
        results = run_from_paths(
            config,
            input_path=args.input,
            output_path=args.output,
            user_features_path=args.user_features,
            item_features_path=args.item_features,
            metrics=metrics,
            metrics_db=metrics_db,
            run_id=run_id,
            ratings_dir=args.ratings_dir
        )
    except PartialFailureError as e:
        logger.error(f"Run {run_id} failed, no output written. Failed blocks: {e.failed_blocks}")
        return 1
    except (BlockRecError, FileNotFoundError, ValueError) as e:
        logger.error(f"Run {run_id} failed: {type(e).__name__}: {e}")
        return 1

    total_users = sum(r.num_users for r in results.values())
    logger.info(f"Wrote recommendations for {total_users:,} users to {args.output}")
    logger.info(f"Counters: {format_metrics(metrics.snapshot())}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
