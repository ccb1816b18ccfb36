"""Model package: ALS-side algorithms and the block recommendation job."""
