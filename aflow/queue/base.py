"""Base job queue interface for aflow workers and the scheduler."""

from __future__ import annotations

import abc
from datetime import datetime
from typing import AsyncIterator, Optional

from croniter import CroniterBadCronError, croniter

from ..contracts import RepeatableJob, WorkflowJob, utcnow
from ..errors import QueueError


def next_run(pattern: str, after: Optional[datetime] = None) -> datetime:
    """Next firing time of a cron ``pattern`` strictly after ``after``."""
    try:
        return croniter(pattern, after or utcnow()).get_next(datetime)
    except (CroniterBadCronError, ValueError, KeyError) as exc:
        raise QueueError(f"Invalid schedule expression '{pattern}': {exc}") from exc


class JobQueue(metaclass=abc.ABCMeta):
    """Abstract job queue.

    Supports immediate and delayed jobs, plus repeatable jobs registered under
    a caller-supplied key. Registering an existing key replaces it.
    """

    async def connect(self) -> None:
        """Open connection to the broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the broker (no-op by default)."""
        pass

    @abc.abstractmethod
    async def enqueue(self, job: WorkflowJob, delay: float = 0) -> str:
        """Queue ``job`` to run after ``delay`` seconds and return its id."""
        raise NotImplementedError

    @abc.abstractmethod
    async def upsert_repeatable(
        self, key: str, pattern: str, job: WorkflowJob
    ) -> RepeatableJob:
        """Register or replace the repeatable job stored under ``key``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def list_repeatable(self) -> list[RepeatableJob]:
        """Return every registered repeatable job."""
        raise NotImplementedError

    async def get_repeatable(self, key: str) -> Optional[RepeatableJob]:
        return next((j for j in await self.list_repeatable() if j.key == key), None)

    @abc.abstractmethod
    async def remove_repeatable(self, key: str) -> bool:
        """Remove the repeatable job under ``key``; ``False`` if there was none."""
        raise NotImplementedError

    @abc.abstractmethod
    async def promote_due(self, now: Optional[datetime] = None) -> int:
        """Move due delayed jobs and due repeatable firings onto the ready queue."""
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(self, lifespan: Optional[float] = None) -> AsyncIterator[WorkflowJob]:
        """Yield ready jobs.

        Args:
            lifespan: Maximum time in seconds to keep listening. If None, runs indefinitely.
        """
        raise NotImplementedError
