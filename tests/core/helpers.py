# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Clock, task and polling helpers shared by core tests."""

import asyncio
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class ManualClock:
    """Clock a test moves forward explicitly."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class CallRecorder:
    """Task body that records its calls; fails the first ``fail_times`` calls."""

    def __init__(self, fail_times: int = 0) -> None:
        self.calls: list[datetime] = []
        self.fail_times = fail_times
        self._lock = threading.Lock()

    def __call__(self, *args: Any, **kwargs: Any) -> str:
        with self._lock:
            self.calls.append(datetime.now(timezone.utc))
            count = len(self.calls)
        if count <= self.fail_times:
            raise RuntimeError(f"failure {count}")
        return f"run {count}"

    @property
    def count(self) -> int:
        return len(self.calls)


async def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()
