"""Entity resolution, migration and course statistics for the e-learning backend."""
