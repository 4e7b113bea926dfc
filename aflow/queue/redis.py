"""Redis job queue for cross-process workers."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Optional

import redis.asyncio as redis
from pydantic import ValidationError

from ..contracts import RepeatableJob, WorkflowJob, utcnow
from .base import JobQueue, next_run

logger = logging.getLogger(__name__)


class RedisJobQueue(JobQueue):
    """Redis-backed queue.

    Ready jobs live in a list, delayed jobs in a sorted set scored by due
    time, and repeatable jobs in a hash plus a sorted set of next firing
    times. Promotion claims entries with ``ZREM`` so concurrent workers never
    fire the same entry twice.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        name: str = "workflow-execution",
        prefix: str = "aflow",
    ) -> None:
        self.url = url
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.name = name
        self._key = f"{prefix}:{name}"
        self._redis: Optional[Any] = None

    @property
    def ready_key(self) -> str:
        return f"{self._key}:ready"

    @property
    def delayed_key(self) -> str:
        return f"{self._key}:delayed"

    @property
    def repeat_key(self) -> str:
        return f"{self._key}:repeat"

    @property
    def schedule_key(self) -> str:
        return f"{self._key}:repeat:schedule"

    async def connect(self) -> None:
        """Connect to Redis."""
        if self.url:
            self._redis = redis.Redis.from_url(self.url, decode_responses=True)
        else:
            self._redis = redis.Redis(
                host=self.host,
                port=self.port,
                db=self.db,
                password=self.password,
                decode_responses=True,
            )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _client(self) -> Any:
        if not self._redis:
            await self.connect()
        return self._redis

    async def enqueue(self, job: WorkflowJob, delay: float = 0) -> str:
        client = await self._client()
        if delay > 0:
            due = (utcnow() + timedelta(seconds=delay)).timestamp()
            await client.zadd(self.delayed_key, {job.to_json(): due})
        else:
            await client.lpush(self.ready_key, job.to_json())
        return job.job_id

    async def upsert_repeatable(
        self, key: str, pattern: str, job: WorkflowJob
    ) -> RepeatableJob:
        entry = RepeatableJob(key=key, pattern=pattern, job=job, next_run_at=next_run(pattern))
        client = await self._client()
        async with client.pipeline(transaction=True) as pipe:
            pipe.hset(self.repeat_key, key, entry.to_json())
            pipe.zadd(self.schedule_key, {key: entry.next_run_at.timestamp()})
            await pipe.execute()
        return entry

    async def list_repeatable(self) -> list[RepeatableJob]:
        client = await self._client()
        raw = await client.hgetall(self.repeat_key)
        entries = []
        for key, value in raw.items():
            try:
                entries.append(RepeatableJob.from_json(value))
            except ValidationError as exc:
                logger.warning(f"Skipping unreadable repeatable job {key}: {exc}")
        return entries

    async def get_repeatable(self, key: str) -> Optional[RepeatableJob]:
        client = await self._client()
        value = await client.hget(self.repeat_key, key)
        return RepeatableJob.from_json(value) if value else None

    async def remove_repeatable(self, key: str) -> bool:
        client = await self._client()
        async with client.pipeline(transaction=True) as pipe:
            pipe.hdel(self.repeat_key, key)
            pipe.zrem(self.schedule_key, key)
            removed, _ = await pipe.execute()
        return bool(removed)

    async def promote_due(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        client = await self._client()
        promoted = 0

        for payload in await client.zrangebyscore(self.delayed_key, 0, now.timestamp()):
            if await client.zrem(self.delayed_key, payload):
                await client.lpush(self.ready_key, payload)
                promoted += 1

        for key in await client.zrangebyscore(self.schedule_key, 0, now.timestamp()):
            if not await client.zrem(self.schedule_key, key):
                continue
            value = await client.hget(self.repeat_key, key)
            if not value:
                continue
            entry = RepeatableJob.from_json(value)
            fired = entry.job.model_copy(
                update={"job_id": f"{key}:{int(now.timestamp())}", "enqueued_at": now}
            )
            entry.next_run_at = next_run(entry.pattern, now)
            async with client.pipeline(transaction=True) as pipe:
                pipe.lpush(self.ready_key, fired.to_json())
                pipe.hset(self.repeat_key, key, entry.to_json())
                pipe.zadd(self.schedule_key, {key: entry.next_run_at.timestamp()})
                await pipe.execute()
            promoted += 1
        return promoted

    async def subscribe(
        self, lifespan: Optional[float] = None
    ) -> AsyncIterator[WorkflowJob]:
        """Pop jobs from the ready list, promoting due entries between polls."""
        client = await self._client()
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            await self.promote_due()
            result = await client.brpop(self.ready_key, timeout=1)
            if not result:
                continue
            _, payload = result
            try:
                yield WorkflowJob.from_json(payload)
            except ValidationError as e:
                logger.error(f"Failed to parse job: {e}")
