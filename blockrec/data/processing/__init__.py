"""Data processing steps: block assignment, rating vector merging, block storage, I/O."""
