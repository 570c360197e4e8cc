from __future__ import annotations

import asyncio
import uuid

import redis.asyncio as redis
from .settings import REDIS_URL, LOCK_SECONDS, LOCK_RETRIES

r = redis.from_url(REDIS_URL, decode_responses=True)


def release_lock_key(tag: str) -> str:
    return f"releaseci:release_lock:{tag}"


async def acquire(tag: str) -> str | None:
    """Serialize writers of one release. Returns the lock token, or None if it stayed busy."""
    token = uuid.uuid4().hex
    for _ in range(LOCK_RETRIES):
        if await r.set(release_lock_key(tag), token, nx=True, ex=LOCK_SECONDS):
            return token
        await asyncio.sleep(0.1)
    return None


async def release(tag: str, token: str) -> None:
    # only drop the lock if it is still ours (it may have expired and been re-taken)
    key = release_lock_key(tag)
    if await r.get(key) == token:
        await r.delete(key)
