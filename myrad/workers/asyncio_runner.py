from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from myrad.core.config import get_settings
from myrad.db.session import Store, create_store

T = TypeVar("T")


async def _run_with_fresh_store(job: Callable[[Store], Awaitable[T]]) -> T:
    # Each asyncio.run() gets its own loop; asyncpg connections cannot cross loops.
    store = create_store(get_settings())
    try:
        return await job(store)
    finally:
        await store.dispose()


def run_async_job(job: Callable[[Store], Awaitable[T]]) -> T:
    return asyncio.run(_run_with_fresh_store(job))
