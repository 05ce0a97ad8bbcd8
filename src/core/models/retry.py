# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Retry backoff policy."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_BASE_DELAY_SECONDS = 1.0


class BackoffStrategy(str, Enum):
    """How the delay grows between retry attempts."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"
    IMMEDIATE = "immediate"


class RetryPolicy(BaseModel):
    """Delay computation for failed attempts.

    The number of attempts is bounded by ``Job.max_retries``; this policy only
    decides how long to wait before each one.
    """

    model_config = ConfigDict(frozen=True)

    base_delay_seconds: float = Field(default=DEFAULT_BASE_DELAY_SECONDS, ge=0)
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    max_delay_seconds: Optional[float] = Field(default=None, gt=0)

    def delay_for(self, retry_count: int) -> float:
        """Delay before the retry that follows ``retry_count`` earlier retries.

        :param retry_count: Retries already performed in this occurrence (0-based)
        :returns: Delay in seconds
        """
        if self.strategy == BackoffStrategy.IMMEDIATE:
            delay = 0.0
        elif self.strategy == BackoffStrategy.FIXED:
            delay = self.base_delay_seconds
        elif self.strategy == BackoffStrategy.LINEAR:
            delay = self.base_delay_seconds * (retry_count + 1)
        else:
            delay = self.base_delay_seconds * (2**retry_count)
        if self.max_delay_seconds is not None:
            delay = min(delay, self.max_delay_seconds)
        return delay
