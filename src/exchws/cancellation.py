"""Cooperative cancellation of requests."""
from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from exchws.exceptions import RequestCancelledError

T = TypeVar('T')


class CancellationToken:
    """A signal that the caller sets when it is no longer interested in the result of a request.

    The request core checks the token before it sends and races network calls against it.
    The token can be set from any thread.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        """Set the token. Calling it more than once has no further effect."""
        loop = self._loop
        if loop is not None and loop.is_running():
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is not loop:
                loop.call_soon_threadsafe(self._event.set)
                return
        self._event.set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise RequestCancelledError

    async def wait(self):
        self._loop = asyncio.get_running_loop()
        await self._event.wait()

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await awaitable unless the token is set first.

        If the token wins, awaitable is cancelled and RequestCancelledError is raised.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise RequestCancelledError
        self._loop = asyncio.get_running_loop()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait((work, waiter), return_when=asyncio.FIRST_COMPLETED)
        finally:
            # reached also if the surrounding task is cancelled
            for fut in (work, waiter):
                if not fut.done():
                    fut.cancel()
        if work.done() and not work.cancelled():
            return work.result()
        await asyncio.gather(work, return_exceptions=True)
        raise RequestCancelledError


async def race(token: CancellationToken | None, awaitable: Awaitable[T]) -> T:
    """Await awaitable, racing it against token if a token is given."""
    if token is None:
        return await awaitable
    return await token.race(awaitable)
