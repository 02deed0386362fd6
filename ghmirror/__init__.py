"""GitHub organization mirror: synchronization orchestration core."""
