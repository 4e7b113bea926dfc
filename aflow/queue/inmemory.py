"""In-memory job queue for tests and single-process use."""

from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime, timedelta
from typing import AsyncIterator, Deque, Dict, List, Optional, Tuple

from ..contracts import RepeatableJob, WorkflowJob, utcnow
from .base import JobQueue, next_run


class InMemoryJobQueue(JobQueue):
    """Simple in-process queue."""

    def __init__(self, poll_interval: float = 0.1) -> None:
        self._ready: Deque[WorkflowJob] = deque()
        self._delayed: List[Tuple[datetime, WorkflowJob]] = []
        self._repeatable: Dict[str, RepeatableJob] = {}
        self._lock = asyncio.Lock()
        self._poll_interval = poll_interval

    async def enqueue(self, job: WorkflowJob, delay: float = 0) -> str:
        async with self._lock:
            if delay > 0:
                self._delayed.append((utcnow() + timedelta(seconds=delay), job))
            else:
                self._ready.append(job)
        return job.job_id

    async def upsert_repeatable(
        self, key: str, pattern: str, job: WorkflowJob
    ) -> RepeatableJob:
        entry = RepeatableJob(key=key, pattern=pattern, job=job, next_run_at=next_run(pattern))
        async with self._lock:
            self._repeatable[key] = entry
        return entry

    async def list_repeatable(self) -> list[RepeatableJob]:
        async with self._lock:
            return [j.model_copy(deep=True) for j in self._repeatable.values()]

    async def remove_repeatable(self, key: str) -> bool:
        async with self._lock:
            return self._repeatable.pop(key, None) is not None

    async def promote_due(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        promoted = 0
        async with self._lock:
            still_waiting = []
            for due, job in self._delayed:
                if due <= now:
                    self._ready.append(job)
                    promoted += 1
                else:
                    still_waiting.append((due, job))
            self._delayed = still_waiting

            for entry in self._repeatable.values():
                if entry.next_run_at is not None and entry.next_run_at <= now:
                    fired_id = f"{entry.key}:{int(entry.next_run_at.timestamp())}"
                    self._ready.append(entry.job.model_copy(update={"job_id": fired_id}))
                    entry.next_run_at = next_run(entry.pattern, now)
                    promoted += 1
        return promoted

    async def subscribe(
        self, lifespan: Optional[float] = None
    ) -> AsyncIterator[WorkflowJob]:
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            await self.promote_due()
            async with self._lock:
                job = self._ready.popleft() if self._ready else None
            if job is not None:
                yield job
                continue

            await asyncio.sleep(self._poll_interval)
