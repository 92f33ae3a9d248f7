"""Job definitions runnable by any backend."""
