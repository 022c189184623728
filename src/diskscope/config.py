"""Runtime configuration for diskscope.

Settings are read once at startup (environment first, then CLI flags) and
stay frozen for the lifetime of the process.
"""

import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "DISKSCOPE_"
TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(environ: Mapping[str, str], name: str) -> Optional[bool]:
    value = environ.get(ENV_PREFIX + name)
    if value is None or value.strip() == "":
        return None
    return value.strip().lower() in TRUTHY


class Settings(BaseModel, frozen=True):
    """Process-wide settings, immutable once built."""

    dry_run: bool = Field(False, description="Never hand delete requests to the collaborator")
    debug: bool = Field(False, description="Verbose diagnostics, including per-entry scan errors")
    concurrency: Optional[int] = Field(
        None, description="Scan worker count (defaults to CPU-based sizing)"
    )
    cache_max_entries: int = Field(50_000, description="Subtree cache capacity")
    metrics_interval: float = Field(1.0, description="Seconds between metric samples")
    metrics_history: int = Field(60, description="Samples kept for sparklines")
    tick_interval: float = Field(0.25, description="Seconds between dashboard redraws")
    max_updates_per_tick: int = Field(5_000, description="Scan updates applied per redraw")
    operation_log: Optional[Path] = Field(
        None, description="JSON-lines log written by the default deletion collaborator"
    )

    @field_validator("concurrency")
    @classmethod
    def _positive_concurrency(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("concurrency must be at least 1")
        return v

    @field_validator("cache_max_entries", "metrics_history", "max_updates_per_tick")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("metrics_interval", "tick_interval")
    @classmethod
    def _positive_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("interval must be positive")
        return v

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "Settings":
        """
        Build settings from DISKSCOPE_* environment variables.

        Keyword overrides whose value is None are ignored, so CLI options can be
        passed straight through.
        """
        environ = os.environ if environ is None else environ
        values: dict = {}

        dry_run = _env_flag(environ, "DRY_RUN")
        if dry_run is not None:
            values["dry_run"] = dry_run

        debug = _env_flag(environ, "DEBUG")
        if debug is not None:
            values["debug"] = debug

        workers = environ.get(ENV_PREFIX + "WORKERS")
        if workers:
            values["concurrency"] = int(workers)

        op_log = environ.get(ENV_PREFIX + "OPERATION_LOG")
        if op_log:
            values["operation_log"] = Path(os.path.expanduser(op_log))

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
