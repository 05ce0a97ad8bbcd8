# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Prerequisite tracking between jobs."""

from collections import defaultdict
from typing import Iterable, Optional

from src.core.exceptions import DependencyCycleError
from src.core.models.job import JobStatus


class DependencyTracker:
    """Directed graph of job -> prerequisite edges plus latest terminal status.

    A job may run only once every prerequisite has COMPLETED. Edges that
    would close a cycle are rejected when added.
    """

    def __init__(self) -> None:
        self._prerequisites: dict[str, set[str]] = defaultdict(set)
        self._dependents: dict[str, set[str]] = defaultdict(set)
        self._latest_status: dict[str, JobStatus] = {}
        self._forgotten: set[str] = set()

    def register(self, job_id: str, prerequisites: Iterable[str] = ()) -> None:
        """Add a job and its prerequisite edges, all or nothing.

        :raises DependencyCycleError: If any edge would create a cycle
        """
        prerequisites = list(dict.fromkeys(prerequisites))
        for prerequisite_id in prerequisites:
            if self.would_create_cycle(job_id, prerequisite_id):
                raise DependencyCycleError(job_id, prerequisite_id)
        self._prerequisites.setdefault(job_id, set())
        for prerequisite_id in prerequisites:
            self._link(job_id, prerequisite_id)

    def add_dependency(self, job_id: str, prerequisite_id: str) -> None:
        """Make ``job_id`` wait for ``prerequisite_id``.

        :raises DependencyCycleError: If the edge would create a cycle
        """
        if self.would_create_cycle(job_id, prerequisite_id):
            raise DependencyCycleError(job_id, prerequisite_id)
        self._link(job_id, prerequisite_id)

    def would_create_cycle(self, job_id: str, prerequisite_id: str) -> bool:
        """True if ``job_id`` is reachable from ``prerequisite_id`` (or they are equal)."""
        stack = [prerequisite_id]
        visited: set[str] = set()
        while stack:
            node = stack.pop()
            if node == job_id:
                return True
            if node in visited:
                continue
            visited.add(node)
            stack.extend(self._prerequisites.get(node, ()))
        return False

    def _link(self, job_id: str, prerequisite_id: str) -> None:
        self._prerequisites[job_id].add(prerequisite_id)
        self._dependents[prerequisite_id].add(job_id)

    def record_status(self, job_id: str, status: JobStatus) -> None:
        """Remember the latest terminal outcome of a job."""
        self._latest_status[job_id] = status

    def latest_status(self, job_id: str) -> Optional[JobStatus]:
        return self._latest_status.get(job_id)

    def can_execute(self, job_id: str) -> bool:
        """True iff every prerequisite's latest status is COMPLETED."""
        return not self.blocking(job_id)

    def blocking(self, job_id: str) -> set[str]:
        """Prerequisites that have not completed."""
        return {
            prerequisite_id
            for prerequisite_id in self._prerequisites.get(job_id, ())
            if self._latest_status.get(prerequisite_id) != JobStatus.COMPLETED
        }

    def prerequisites_of(self, job_id: str) -> set[str]:
        return set(self._prerequisites.get(job_id, ()))

    def dependents_of(self, job_id: str) -> set[str]:
        return set(self._dependents.get(job_id, ()))

    def forget(self, job_id: str) -> None:
        """Drop a job that will never run again.

        Its own prerequisite edges are removed at once. Its latest status is
        kept while other jobs still depend on it and dropped with the last of
        them.
        """
        self._forgotten.add(job_id)
        for prerequisite_id in self._prerequisites.pop(job_id, ()):
            dependents = self._dependents.get(prerequisite_id)
            if dependents is not None:
                dependents.discard(job_id)
            self._purge_if_unreferenced(prerequisite_id)
        self._purge_if_unreferenced(job_id)

    def _purge_if_unreferenced(self, job_id: str) -> None:
        if job_id not in self._forgotten or self._dependents.get(job_id):
            return
        self._forgotten.discard(job_id)
        self._dependents.pop(job_id, None)
        self._latest_status.pop(job_id, None)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._prerequisites or job_id in self._latest_status

    def __len__(self) -> int:
        return len(self._prerequisites.keys() | self._latest_status.keys())
