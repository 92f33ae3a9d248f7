"""
Backend configuration
Selects local or distributed execution and carries the tuning knobs for a run
"""

import os
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from enroute_mr.common.errors import ConfigurationError

BACKENDS = ("local", "distributed")

DEFAULT_BATCH_SIZE = 1000
DEFAULT_RPC_TIMEOUT = 60.0


@dataclass(frozen=True)
class BackendConfig:
    """Execution strategy for one run, passed explicitly to the executor"""

    backend: str = "local"
    num_reduce_tasks: int = 1
    num_map_tasks: int = 1  # splits per input file
    workers: Tuple[str, ...] = field(default_factory=tuple)
    batch_size: int = DEFAULT_BATCH_SIZE
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT
    scratch_dir: Optional[str] = None  # worker intermediate files

    def __post_init__(self):
        # Accept any iterable of worker addresses but store a tuple
        object.__setattr__(self, "workers", tuple(self.workers))
        self.validate()

    def validate(self):
        """
        Check the configuration before any work starts

        Raises:
            ConfigurationError: If any setting is out of range
        """
        if self.backend not in BACKENDS:
            raise ConfigurationError(
                f"Unknown backend '{self.backend}', expected one of {', '.join(BACKENDS)}"
            )
        if self.num_reduce_tasks < 1:
            raise ConfigurationError("num_reduce_tasks must be at least 1")
        if self.num_map_tasks < 1:
            raise ConfigurationError("num_map_tasks must be at least 1")
        if self.batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1")
        if self.rpc_timeout <= 0:
            raise ConfigurationError("rpc_timeout must be positive")
        if self.backend == "distributed" and not self.workers:
            raise ConfigurationError(
                "distributed backend needs at least one worker address (host:port)"
            )
        for address in self.workers:
            host, sep, port = address.rpartition(":")
            if not sep or not host or not port.isdigit():
                raise ConfigurationError(f"Invalid worker address '{address}', expected host:port")

    def with_overrides(self, **changes) -> "BackendConfig":
        """Return a copy with the given fields replaced (validated again)"""
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes)

    @classmethod
    def distributed(cls, workers, num_reduce_tasks: int = 2, **kwargs) -> "BackendConfig":
        return cls(backend="distributed", workers=tuple(workers),
                   num_reduce_tasks=num_reduce_tasks, **kwargs)

    @classmethod
    def from_settings(cls, settings: dict) -> "BackendConfig":
        """Build a validated configuration; unset reduce tasks default to 2 when distributed"""
        settings = {k: v for k, v in settings.items() if v is not None}
        if settings.get("backend") == "distributed":
            settings.setdefault("num_reduce_tasks", 2)
        return cls(**settings)

    @classmethod
    def from_env(cls, environ=None, **overrides) -> "BackendConfig":
        """
        Build a configuration from environment variables and overrides

        Overrides (command line flags) replace the environment settings
        before anything is validated, so a flag can fix an incomplete
        environment.

        Raises:
            ConfigurationError: If the merged settings are invalid
        """
        settings = env_settings(environ)
        settings.update((k, v) for k, v in overrides.items() if v is not None)
        return cls.from_settings(settings)


def env_settings(environ=None) -> dict:
    """
    Read the settings present in the environment, without validating them

    ENROUTE_BACKEND       local | distributed (default: local)
    ENROUTE_WORKERS       comma separated host:port list
    ENROUTE_REDUCE_TASKS  number of reduce tasks (default: 1 local, 2 distributed)
    ENROUTE_MAP_TASKS     splits per input file (default: 1)
    ENROUTE_SCRATCH_DIR   intermediate file directory

    Raises:
        ConfigurationError: If a numeric variable is not an integer
    """
    env = os.environ if environ is None else environ
    settings = {}

    backend = env.get("ENROUTE_BACKEND", "").strip().lower()
    if backend:
        settings["backend"] = backend
    workers = tuple(w.strip() for w in env.get("ENROUTE_WORKERS", "").split(",") if w.strip())
    if workers:
        settings["workers"] = workers

    for name, key in (("ENROUTE_REDUCE_TASKS", "num_reduce_tasks"), ("ENROUTE_MAP_TASKS", "num_map_tasks")):
        value = env.get(name, "").strip()
        if not value:
            continue
        try:
            settings[key] = int(value)
        except ValueError:
            raise ConfigurationError(f"{name} must be an integer, got '{value}'")

    if env.get("ENROUTE_SCRATCH_DIR"):
        settings["scratch_dir"] = env["ENROUTE_SCRATCH_DIR"]
    return settings
