"""Job bookkeeping, metrics and the backend executors."""
