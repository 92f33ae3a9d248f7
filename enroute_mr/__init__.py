"""
enroute-mr: map/shuffle/reduce engine for airline enroute-time statistics.
"""

from enroute_mr.common.config import BackendConfig
from enroute_mr.common.errors import ConfigurationError, EnrouteError, StageError
from enroute_mr.coordinator.executor import JobHandle, run

__all__ = [
    "BackendConfig",
    "ConfigurationError",
    "EnrouteError",
    "JobHandle",
    "StageError",
    "run",
]

__version__ = "0.1.0"
