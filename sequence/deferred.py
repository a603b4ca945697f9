"""
Deferred assertions.

A Thenable wraps a zero-argument producer and only invokes it when first
awaited. The outcome is memoized: awaiting it again, or through `then` and
`catch`, never runs the producer twice.

    ok = context.set("/", True).ok()
    await run(ok, other_assertion)
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Set

from sequence.errors import CompositeFailure

logger = logging.getLogger(__name__)

# Callback consumptions scheduled on a running loop, kept until they are
# done (and, when their callback raised, until wait_callbacks reports it)
_callback_tasks: Set[asyncio.Task] = set()


def _callback_done(task: asyncio.Task) -> None:
    if task.cancelled() or task.exception() is None:
        _callback_tasks.discard(task)
        return
    logger.error(f"Assertion callback raised: {task.exception()!r}")


async def resolve(value: Any) -> Any:
    """Await value if it is awaitable, return it otherwise."""
    if inspect.isawaitable(value):
        return await value
    return value


class Thenable:
    """Lazy, memoized awaitable."""

    def __init__(self, producer: Callable[[], Any]):
        self._producer = producer
        self._future: Optional[asyncio.Future] = None

    async def _produce(self) -> Any:
        return await resolve(self._producer())

    def _consume(self) -> asyncio.Future:
        if self._future is None:
            self._future = asyncio.ensure_future(self._produce())
        return self._future

    def __await__(self):
        return self._consume().__await__()

    @property
    def consumed(self) -> bool:
        return self._future is not None

    async def then(
        self,
        on_fulfilled: Optional[Callable[[Any], Any]] = None,
        on_rejected: Optional[Callable[[Exception], Any]] = None,
    ) -> Any:
        try:
            value = await self._consume()
        except Exception as e:
            if on_rejected is None:
                raise
            return await resolve(on_rejected(e))

        if on_fulfilled is None:
            return value
        return await resolve(on_fulfilled(value))

    async def catch(self, on_rejected: Callable[[Exception], Any]) -> Any:
        return await self.then(None, on_rejected)

    async def _report(self, done: Callable[[Optional[Exception]], Any]) -> None:
        try:
            await self._consume()
        except Exception as e:
            done(e)
        else:
            done(None)

    def as_callback(self, done: Callable[[Optional[Exception]], Any]) -> None:
        """
        Consume the thenable and report its outcome to `done`.

        `done` is called with the error, or with None on success. On a running
        event loop the consumption is scheduled (await `wait_callbacks()` to
        see errors raised by `done`); without one it runs to
        completion before returning.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self._report(done))
            return None

        task = loop.create_task(self._report(done))
        _callback_tasks.add(task)
        task.add_done_callback(_callback_done)
        return None


def thenable(producer: Callable[[], Any]) -> Thenable:
    """Create a Thenable from a producer."""
    return Thenable(producer)


async def wait_callbacks() -> None:
    """
    Wait for the callbacks scheduled by `as_callback` on the running loop.

    Raises the first error raised by a `done` callback.
    """
    loop = asyncio.get_running_loop()
    tasks = [task for task in _callback_tasks if task.get_loop() is loop]
    _callback_tasks.difference_update(tasks)
    await asyncio.gather(*tasks)


def _flatten(items: Iterable[Any]) -> List[Awaitable]:
    flat = []
    for item in items:
        if isinstance(item, (list, tuple)):
            flat.extend(_flatten(item))
        else:
            flat.append(item)
    return flat


async def run(*thenables: Any) -> None:
    """
    Await assertions one after another, stopping at the first failure.

        await run(
            suite.get("/").should_fail(),
            suite.as_("alice").get("/").ok(),
        )
    """
    for item in _flatten(thenables):
        await item


async def all_(*thenables: Any) -> None:
    """
    Await every assertion in order and report all failures at once.

    Raises CompositeFailure listing the failures in order.
    """
    failures: List[Exception] = []

    for item in _flatten(thenables):
        try:
            await item
        except Exception as e:
            failures.append(e)

    if failures:
        logger.debug(f"{len(failures)} assertion(s) failed")
        raise CompositeFailure(failures)
