"""
Async wrappers for the Docker SDK.

docker-py is synchronous. These wrappers run blocking calls in the default
thread pool with asyncio.to_thread() so the event loop keeps serving requests
while the engine works.

Usage:
    from utils.async_docker import async_docker_call

    container = await async_docker_call(client.containers.get, docker_id)
    await async_docker_call(container.restart, timeout=30)
"""

import asyncio
from typing import Callable, TypeVar, Iterator, Optional

T = TypeVar('T')

_STREAM_DONE = object()


async def async_docker_call(sync_fn: Callable[..., T], *args, **kwargs) -> T:
    """
    Execute a synchronous Docker SDK call in a thread pool.

    Args:
        sync_fn: Synchronous function to call (e.g., client.info, container.start)
        *args: Positional arguments to pass to sync_fn
        **kwargs: Keyword arguments to pass to sync_fn

    Returns:
        Result from the synchronous function
    """
    return await asyncio.to_thread(sync_fn, *args, **kwargs)


async def async_iterate(iterator: Iterator[T]):
    """
    Drain a blocking iterator (pull/build progress streams) from async code.

    Each next() runs in the thread pool; items are yielded as they arrive.
    """
    while True:
        item = await asyncio.to_thread(next, iterator, _STREAM_DONE)
        if item is _STREAM_DONE:
            break
        yield item


def short_id(docker_id: Optional[str]) -> str:
    """12-character form of a Docker id, for log messages"""
    return (docker_id or '')[:12]
