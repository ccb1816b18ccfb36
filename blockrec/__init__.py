"""
Block-parallel ALS recommendation package.

Submodules:
    data: Block assignment, rating vector merging, block storage, ID indexes, readers
    model.als: Feature matrices, sufficient-statistics combiner, top-N scoring,
        block job controller
    config: Job and factorization options
    logging_utils: Logger setup, per-run metrics, SQLite run tracking
    errors: Error types
"""

__version__ = '0.1.0'

__all__ = ['data', 'model', 'config', 'logging_utils', 'errors']
