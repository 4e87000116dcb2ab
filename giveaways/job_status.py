import json
from datetime import datetime
from typing import Any

import redis
from django.conf import settings
from django.core.cache import cache

JOB_NAMES = ("lifecycle", "distribution")
_STATUS_KEY = "reward_jobs:status:{job}"
_REDIS_CLIENT = None


def _redis_client():
    global _REDIS_CLIENT
    if _REDIS_CLIENT is not None:
        return _REDIS_CLIENT
    if not settings.REDIS_URL:
        return None
    try:
        _REDIS_CLIENT = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
        _REDIS_CLIENT.ping()
    except redis.RedisError:
        _REDIS_CLIENT = None
    return _REDIS_CLIENT


def _store(key: str, value: str, ttl_seconds: int) -> None:
    client = _redis_client()
    if client is not None:
        try:
            client.set(key, value, ex=ttl_seconds)
            return
        except redis.RedisError:
            pass
    cache.set(key, value, timeout=ttl_seconds)


def _load(key: str) -> str | None:
    client = _redis_client()
    if client is not None:
        try:
            return client.get(key)
        except redis.RedisError:
            pass
    return cache.get(key)


def record_run(job: str, started_at: datetime, finished_at: datetime, outcome: str, counts: dict[str, int]) -> dict[str, Any]:
    status = {
        "job": job,
        "last_run_started_at": started_at.isoformat(),
        "last_run_finished_at": finished_at.isoformat(),
        "outcome": outcome,
        "counts": counts,
    }
    _store(_STATUS_KEY.format(job=job), json.dumps(status), ttl_seconds=settings.JOB_STATUS_TTL_SECONDS)
    return status


def get_status(job: str) -> dict[str, Any] | None:
    raw = _load(_STATUS_KEY.format(job=job))
    return json.loads(raw) if raw else None


def get_all_statuses() -> dict[str, dict[str, Any] | None]:
    return {job: get_status(job) for job in JOB_NAMES}
