from __future__ import annotations

from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any

from redis import Redis
from rq import Queue

from .config import get_settings


class BaseJobBackend(ABC):
    @abstractmethod
    def enqueue_envelope(self, envelope: dict[str, Any]) -> str: ...


class RQJobBackend(BaseJobBackend):
    def __init__(self, queue: Queue):
        self.queue = queue

    def enqueue_envelope(self, envelope: dict[str, Any]) -> str:
        from reelsync.workers.tasks import run_envelope

        job = self.queue.enqueue(run_envelope, envelope)
        return job.id


@lru_cache()
def get_job_backend() -> BaseJobBackend | None:
    """Return the queue backend, or ``None`` when envelopes are processed inline."""
    settings = get_settings()
    backend = settings.normalized_job_backend
    if backend == "immediate":
        return None
    if backend == "rq":
        connection = Redis.from_url(settings.redis_url)
        return RQJobBackend(Queue("reelsync-events", connection=connection))
    raise ValueError(f"Unsupported job backend: {settings.job_queue_backend}")


__all__ = ["BaseJobBackend", "RQJobBackend", "get_job_backend"]
