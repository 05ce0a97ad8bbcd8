# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""In-memory registry of active and retired jobs."""

from collections import OrderedDict
from typing import Callable, Iterator, List, Optional

from src.core.models.job import Job, JobStatus
from src.core.observability import get_logger

logger = get_logger(__name__)


class JobRegistry:
    """Owns every job the scheduler knows about.

    Active jobs can still run. Retired jobs (schedule exhausted, retries
    exhausted or cancelled) are kept read-only in a bounded archive so their
    status and history stay queryable; the oldest are evicted first.
    """

    def __init__(
        self,
        retired_limit: int = 1000,
        on_evict: Optional[Callable[[str], None]] = None,
    ) -> None:
        """Initialize the registry.

        :param retired_limit: Maximum number of retired jobs kept
        :param on_evict: Called with the ID of each job evicted from the archive
        """
        self._active: dict[str, Job] = {}
        self._retired: OrderedDict[str, Job] = OrderedDict()
        self._retired_limit = retired_limit
        self._on_evict = on_evict

    def create(self, job: Job) -> Job:
        """Add a new active job.

        :raises ValueError: If the ID is already known
        """
        if self.exists(job.id):
            raise ValueError(f"Job {job.id} already exists")
        self._active[job.id] = job
        return job

    def get(self, job_id: str) -> Optional[Job]:
        """Active job by ID."""
        return self._active.get(job_id)

    def find(self, job_id: str) -> Optional[Job]:
        """Active or retired job by ID."""
        return self._active.get(job_id) or self._retired.get(job_id)

    def exists(self, job_id: str) -> bool:
        return job_id in self._active or job_id in self._retired

    def is_active(self, job_id: str) -> bool:
        return job_id in self._active

    def retire(self, job_id: str) -> Optional[Job]:
        """Move a job to the retired archive."""
        job = self._active.pop(job_id, None)
        if job is None:
            return None
        self._retired[job_id] = job
        while len(self._retired) > self._retired_limit:
            evicted_id, _ = self._retired.popitem(last=False)
            logger.debug(f"Evicted retired job {evicted_id} from registry")
            if self._on_evict is not None:
                self._on_evict(evicted_id)
        return job

    def get_active(self) -> List[Job]:
        return list(self._active.values())

    def get_retired(self) -> List[Job]:
        return list(self._retired.values())

    def list(self, status: Optional[JobStatus] = None) -> List[Job]:
        """All known jobs, active first, optionally filtered by status."""
        jobs = list(self._active.values()) + list(self._retired.values())
        if status is not None:
            jobs = [job for job in jobs if job.status == status]
        return jobs

    def __iter__(self) -> Iterator[Job]:
        return iter(list(self._active.values()))

    def __len__(self) -> int:
        return len(self._active)
