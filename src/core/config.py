# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""
Scheduler configuration.
"""

import os
from pathlib import Path
from typing import Any, Literal, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.core.execution.pool import OverflowPolicy

ENV_VARS: dict[str, str] = {
    "SCHEDULER_POLL_INTERVAL": "poll_interval_seconds",
    "SCHEDULER_MAX_WORKERS": "max_workers",
    "SCHEDULER_OVERFLOW_POLICY": "overflow_policy",
    "SCHEDULER_RETRY_BASE_DELAY": "retry_base_delay_seconds",
    "SCHEDULER_DEPENDENCY_POLL_DELAY": "dependency_poll_delay_seconds",
    "SCHEDULER_DEPENDENCY_POLL_MAX_DELAY": "dependency_poll_max_delay_seconds",
    "SCHEDULER_SHUTDOWN_TIMEOUT": "shutdown_timeout_seconds",
    "SCHEDULER_RETIRED_JOB_LIMIT": "retired_job_limit",
    "LOG_LEVEL": "log_level",
    "LOG_FORMAT": "log_format",
}


class SchedulerConfig(BaseModel):
    """Tunables of one scheduler instance."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    poll_interval_seconds: float = Field(default=0.1, gt=0)
    max_workers: int = Field(default=4, ge=1)
    overflow_policy: OverflowPolicy = OverflowPolicy.REJECT
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    dependency_poll_delay_seconds: float = Field(default=0.1, gt=0)
    dependency_poll_max_delay_seconds: float = Field(default=5.0, gt=0)
    shutdown_timeout_seconds: float = Field(default=30.0, ge=0)
    retired_job_limit: int = Field(default=1000, ge=0)
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "SchedulerConfig":
        """Build a config from ``SCHEDULER_*``, ``LOG_LEVEL`` and ``LOG_FORMAT``.

        :param environ: Environment mapping, defaults to ``os.environ``
        :param overrides: Values applied underneath the environment
        """
        return cls(**{**overrides, **_env_values(environ)})

    @classmethod
    def from_yaml(
        cls,
        path: Union[str, Path],
        environ: Optional[Mapping[str, str]] = None,
    ) -> "SchedulerConfig":
        """Load a YAML file; environment variables override its values.

        :param path: YAML file with config keys at the top level
        :param environ: Environment mapping, defaults to ``os.environ``
        :raises ValueError: If the document is not a mapping
        """
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        return cls.from_env(environ, **data)


def _env_values(environ: Optional[Mapping[str, str]]) -> dict[str, str]:
    environ = os.environ if environ is None else environ
    return {field: environ[name] for name, field in ENV_VARS.items() if environ.get(name)}
