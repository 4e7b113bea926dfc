"""Job queue factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import AflowConfig, load_config
from .base import JobQueue, next_run
from .inmemory import InMemoryJobQueue


def get_queue(
    backend: Optional[str] = None, config: Optional[AflowConfig] = None
) -> JobQueue:
    """Factory function to get the configured job queue."""

    config = config or load_config()
    backend = (backend or os.getenv("AFLOW_QUEUE") or config.queue.backend).lower()

    if backend == "inmemory":
        return InMemoryJobQueue(poll_interval=config.worker.poll_interval)
    elif backend == "redis":
        from .redis import RedisJobQueue

        redis_conf = config.queue.redis
        return RedisJobQueue(
            url=redis_conf.url,
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
            name=config.queue.name,
            prefix=redis_conf.prefix,
        )
    else:
        raise ValueError(f"Unsupported queue backend: {backend}")


__all__ = ["JobQueue", "InMemoryJobQueue", "get_queue", "next_run"]
