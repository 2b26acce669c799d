"""Priority job queue with a concurrency limit."""

import asyncio
import heapq
import itertools
import logging
from typing import Dict, FrozenSet, List, Set, Tuple

from issue_dispatch.models.common import ExecutorKind, Job

# Executors whose jobs never take a concurrency slot
SLOT_FREE_EXECUTORS = frozenset({ExecutorKind.HUMAN})


class JobQueue:
    """Priority heap of runnable jobs plus the set of jobs holding a slot.

    Jobs are ordered by priority rank, then by insertion order, so jobs of
    equal priority run first-in first-out. At most ``max_concurrent_jobs``
    automated jobs hold a slot at once; a slot is taken on ``take_ready`` and
    given back on ``release``. Jobs for ``slot_free_executors`` are handed out
    on every ``take_ready`` without taking a slot.
    """

    def __init__(self, max_concurrent_jobs: int = 3,
                 slot_free_executors: FrozenSet[ExecutorKind] = SLOT_FREE_EXECUTORS):
        if max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be at least 1")
        self.max_concurrent_jobs = max_concurrent_jobs
        self.slot_free_executors = frozenset(slot_free_executors)
        self._heap: List[Tuple[int, int, str]] = []
        self._free_heap: List[Tuple[int, int, str]] = []
        self._jobs: Dict[str, Job] = {}
        self._active: Set[str] = set()
        self._sequence = itertools.count()
        self._lock = asyncio.Lock()
        self.logger = logging.getLogger(__name__)

    @property
    def depth(self) -> int:
        """Number of jobs waiting to start."""
        return len(self._jobs)

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def available_slots(self) -> int:
        return max(0, self.max_concurrent_jobs - len(self._active))

    def needs_slot(self, job: Job) -> bool:
        return job.dispatch_decision.executor not in self.slot_free_executors

    async def enqueue(self, job: Job) -> None:
        async with self._lock:
            if job.id in self._jobs or job.id in self._active:
                self.logger.warning(f"Job {job.id} is already queued or running")
                return
            self._jobs[job.id] = job
            heap = self._heap if self.needs_slot(job) else self._free_heap
            heapq.heappush(heap, (job.priority.rank, next(self._sequence), job.id))
            self.logger.debug(f"Enqueued job {job.id} with priority {job.priority.value}")

    async def take_ready(self) -> List[Job]:
        """Pop every slot-free job and as many others as there are free slots."""
        async with self._lock:
            ready = []
            while self._free_heap:
                _, _, job_id = heapq.heappop(self._free_heap)
                job = self._jobs.pop(job_id, None)
                if job is not None:
                    ready.append(job)
            while self._heap and len(self._active) < self.max_concurrent_jobs:
                _, _, job_id = heapq.heappop(self._heap)
                job = self._jobs.pop(job_id, None)
                if job is None:
                    # Removed while waiting
                    continue
                self._active.add(job_id)
                ready.append(job)
            return ready

    async def remove(self, job_id: str) -> bool:
        """Drop a waiting job. Returns False if it was not waiting."""
        async with self._lock:
            return self._jobs.pop(job_id, None) is not None

    async def release(self, job_id: str) -> None:
        async with self._lock:
            self._active.discard(job_id)

    def snapshot(self) -> Dict[str, int]:
        return {
            'queue_depth': self.depth,
            'active_jobs': self.active_count,
            'available_slots': self.available_slots,
            'max_concurrent_jobs': self.max_concurrent_jobs,
        }
