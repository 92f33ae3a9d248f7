"""
Exception types raised by the MapReduce executor.

Per-record problems (malformed lines, filtered flights, missing numbers) are
never raised; only failures of a whole pipeline stage reach the caller.
"""

STAGES = ("config", "input", "map", "shuffle", "reduce", "output", "backend")


class EnrouteError(Exception):
    """Base class for all errors surfaced by a run"""


class ConfigurationError(EnrouteError):
    """Raised when a BackendConfig is invalid"""


class StageError(EnrouteError):
    """A pipeline stage failed and the run was aborted"""

    def __init__(self, stage: str, message: str):
        """
        Args:
            stage: Name of the failed stage (one of STAGES)
            message: Actionable description of the failure
        """
        if stage not in STAGES:
            raise ValueError(f"Unknown stage: {stage}")
        self.stage = stage
        self.message = message
        super().__init__(f"{stage} stage failed: {message}")
