# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""
Log context for scheduler and execution records.

Values live in a ContextVar so they follow asyncio tasks and are copied into
worker threads together with the job context.
"""

from __future__ import annotations
import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, replace
from typing import Any, Optional


@dataclass(frozen=True)
class ContextData:
    """
    Correlation, job and execution IDs attached to log records.
    """

    correlation_id: Optional[str] = None
    job_id: Optional[str] = None
    execution_id: Optional[str] = None

    def with_updates(self, **kwargs: Any) -> "ContextData":
        return replace(self, **kwargs)

    def to_dict(self) -> dict[str, str]:
        """Non-None fields, in a stable order."""
        fields = (
            ("correlation_id", self.correlation_id),
            ("job_id", self.job_id),
            ("execution_id", self.execution_id),
        )
        return {key: value for key, value in fields if value is not None}


class ContextVarProvider:
    """Reads and writes ContextData through one ContextVar."""

    def __init__(self) -> None:
        self._var: ContextVar[ContextData] = ContextVar(
            "scheduler_log_context",
            default=ContextData(),
        )

    def get_context(self) -> ContextData:
        return self._var.get()

    def set_context(self, data: ContextData) -> Token:
        return self._var.set(data)

    def reset(self, token: Token) -> None:
        self._var.reset(token)


class ObservabilityContextManager:
    """
    Process-wide holder of the ContextVar provider that stores log context
    fields (correlation, job and execution IDs).
    """

    _instance: Optional["ObservabilityContextManager"] = None
    _provider: Optional[ContextVarProvider] = None

    def __new__(cls) -> "ObservabilityContextManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._provider = ContextVarProvider()
        return cls._instance

    @classmethod
    def instance(cls) -> "ObservabilityContextManager":
        return cls()

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the shared instance and its ContextVar (tests only)."""
        cls._instance = None
        cls._provider = None

    @property
    def provider(self) -> ContextVarProvider:
        assert self._provider is not None, "ObservabilityContextManager not initialized"
        return self._provider

    @property
    def current(self) -> ContextData:
        return self.provider.get_context()

    def update(self, **values: Any) -> Token:
        """Overlay ``values`` on the current context.

        :returns: Token restoring the previous context
        """
        return self.provider.set_context(self.current.with_updates(**values))

    def get_all(self) -> dict[str, str]:
        return self.current.to_dict()

    def clear(self) -> None:
        self.provider.set_context(ContextData())


class ObservabilityScope:
    """
    Sets context values for the duration of a ``with`` block.
    """

    def __init__(
        self,
        correlation_id: Optional[str] = None,
        job_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        auto_execution_id: bool = False,
    ) -> None:
        """Initialize scope with context values.

        :param correlation_id: Correlation ID to set
        :param job_id: Job ID to set
        :param execution_id: Execution ID to set
        :param auto_execution_id: Generate execution_id if not provided
        """
        self._values: dict[str, str] = {}
        if correlation_id is not None:
            self._values["correlation_id"] = correlation_id
        if job_id is not None:
            self._values["job_id"] = job_id
        if execution_id is not None:
            self._values["execution_id"] = execution_id
        elif auto_execution_id:
            self._values["execution_id"] = str(uuid.uuid4())
        self._token: Optional[Token] = None
        self._manager = ObservabilityContextManager.instance()

    def __enter__(self) -> "ObservabilityScope":
        if self._values:
            self._token = self._manager.update(**self._values)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            self._manager.provider.reset(self._token)
            self._token = None

    @property
    def execution_id(self) -> Optional[str]:
        return self._manager.current.execution_id


class ExecutionScope(ObservabilityScope):
    """
    Scope of one job attempt; always carries a fresh execution ID.
    """

    def __init__(self, job_id: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(job_id=job_id, auto_execution_id=True, **kwargs)


def get_correlation_id() -> Optional[str]:
    return ObservabilityContextManager.instance().current.correlation_id


def set_correlation_id(value: Optional[str] = None) -> str:
    """Set the correlation ID, generating one when ``value`` is None."""
    correlation_id = value or str(uuid.uuid4())
    ObservabilityContextManager.instance().update(correlation_id=correlation_id)
    return correlation_id


def clear_correlation_id() -> None:
    ObservabilityContextManager.instance().update(correlation_id=None)


def get_job_id() -> Optional[str]:
    return ObservabilityContextManager.instance().current.job_id


def get_execution_id() -> Optional[str]:
    return ObservabilityContextManager.instance().current.execution_id


def clear_context() -> None:
    ObservabilityContextManager.instance().clear()
