from __future__ import annotations

import json
import uuid
from typing import Any, Awaitable, Callable

import redis.asyncio as redis
from .settings import RECONCILE_LOCK_SECONDS, REDIS_URL, SCRIPTS_KEY

r = redis.from_url(REDIS_URL, decode_responses=True)

def reconcile_lock_key(container: str) -> str:
    return f"defaultci:reconcile_lock:{container}"

def pending_scan_key(container: str) -> str:
    return f"defaultci:pending_scan:{container}"

def readers_key() -> str:
    return f"{SCRIPTS_KEY}:readers"


class ScanQueue:
    """
    Per-container reconcile lease plus a single parked-scan slot.

    A scan that finds the lease taken is parked, overwriting any older parked
    scan. Whoever holds the lease drains the slot after its own pass, and the
    parking request tries to drain it too. A scan parked right after the
    holder's last drain check is therefore still applied.
    """

    def __init__(self, client, lock_seconds: int = RECONCILE_LOCK_SECONDS):
        self.client = client
        self.lock_seconds = lock_seconds

    async def acquire(self, container: str, holder: str) -> bool:
        return bool(await self.client.set(reconcile_lock_key(container), holder, nx=True, ex=self.lock_seconds))

    async def release(self, container: str) -> None:
        await self.client.delete(reconcile_lock_key(container))

    async def park(self, container: str, scan: dict) -> None:
        await self.client.set(pending_scan_key(container), json.dumps(scan))

    async def take(self, container: str) -> dict | None:
        raw = await self.client.getdel(pending_scan_key(container))
        return json.loads(raw) if raw else None

    async def drain(self, container: str, run_pass: Callable[[dict], Awaitable[Any]]) -> int:
        """Apply parked scans while the lease is free. Returns how many ran."""
        applied = 0
        while await self.client.exists(pending_scan_key(container)):
            if not await self.acquire(container, uuid.uuid4().hex):
                return applied  # the lease holder drains them
            try:
                parked = await self.take(container)
                if parked is not None:
                    await run_pass(parked)
                    applied += 1
            finally:
                await self.release(container)
        return applied

    async def submit(
        self,
        container: str,
        scan: dict,
        run_pass: Callable[[dict], Awaitable[Any]],
    ) -> Any | None:
        """
        Run `run_pass(scan)` under the lease and return its result.

        Returns None when another pass held the lease and the scan was parked
        instead.
        """
        if not await self.acquire(container, uuid.uuid4().hex):
            await self.park(container, scan)
            await self.drain(container, run_pass)
            return None

        try:
            result = await run_pass(scan)
        finally:
            await self.release(container)

        await self.drain(container, run_pass)
        return result


scans = ScanQueue(r)

async def put_script(script_id: str, content: str, readers: list[str] | None) -> None:
    async with r.pipeline(transaction=True) as pipe:
        pipe.hset(SCRIPTS_KEY, script_id, content)
        if readers is None:
            pipe.hdel(readers_key(), script_id)
        else:
            pipe.hset(readers_key(), script_id, ",".join(sorted(readers)))
        await pipe.execute()

async def get_script(script_id: str) -> tuple[str | None, str | None]:
    content = await r.hget(SCRIPTS_KEY, script_id)
    raw_readers = await r.hget(readers_key(), script_id)
    return content, raw_readers
