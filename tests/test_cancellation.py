import asyncio
import threading
import unittest

from exchws.cancellation import CancellationToken, race
from exchws.exceptions import ErrorKind, RequestCancelledError


class TestCancellationToken(unittest.IsolatedAsyncioTestCase):

    async def test_race_result(self):
        token = CancellationToken()

        async def _work():
            await asyncio.sleep(0.01)
            return 42

        self.assertEqual(42, await token.race(_work()))
        self.assertEqual(42, await race(None, _work()))
        self.assertFalse(token.is_cancelled)

    async def test_race_exception(self):
        token = CancellationToken()

        async def _fail():
            raise ValueError('x')

        with self.assertRaises(ValueError):
            await token.race(_fail())

    async def test_cancelled_before(self):
        token = CancellationToken()
        token.cancel()
        token.cancel()
        self.assertTrue(token.is_cancelled)
        started = []

        async def _work():
            started.append(True)

        work = _work()
        with self.assertRaises(RequestCancelledError) as ctx:
            await token.race(work)
        self.assertEqual(ErrorKind.CANCELLED, ctx.exception.kind)
        self.assertFalse(ctx.exception.is_retryable)
        await asyncio.sleep(0)
        self.assertEqual([], started)

    async def test_cancel_while_waiting(self):
        token = CancellationToken()
        cancelled = asyncio.Event()

        async def _work():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        task = asyncio.create_task(token.race(_work()))
        await asyncio.sleep(0.01)
        token.cancel()
        with self.assertRaises(RequestCancelledError):
            await task
        self.assertTrue(cancelled.is_set())

    async def test_cancel_from_thread(self):
        token = CancellationToken()
        task = asyncio.create_task(token.race(asyncio.sleep(10)))
        await asyncio.sleep(0.01)
        thread = threading.Thread(target=token.cancel)
        thread.start()
        thread.join()
        with self.assertRaises(RequestCancelledError):
            await asyncio.wait_for(task, 2)

    async def test_task_cancellation_propagates(self):
        token = CancellationToken()
        task = asyncio.create_task(token.race(asyncio.sleep(10)))
        await asyncio.sleep(0.01)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.assertFalse(token.is_cancelled)

    async def test_wait(self):
        token = CancellationToken()
        waiter = asyncio.create_task(token.wait())
        await asyncio.sleep(0.01)
        self.assertFalse(waiter.done())
        token.cancel()
        await asyncio.wait_for(waiter, 1)
        with self.assertRaises(RequestCancelledError):
            token.raise_if_cancelled()
