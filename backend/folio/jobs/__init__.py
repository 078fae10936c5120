"""Background scheduler and its jobs."""
