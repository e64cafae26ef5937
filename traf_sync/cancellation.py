"""Run blocking Google client calls off the event loop and race them against a cancel event."""

from __future__ import annotations

import asyncio
import contextlib
import signal
import threading
from typing import Any, Callable, Iterable, Iterator, TypeVar

T = TypeVar("T")


class OperationCancelled(RuntimeError):
    """Raised when the cancel event fires before a blocking call completes."""


def run_blocking(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> asyncio.Future[T]:
    """
    Start ``func`` in a daemon thread and return a future bound to the running loop.

    Threads are daemonic and never pooled, so a call abandoned after cancellation
    does not hold up loop shutdown or interpreter exit.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[T] = loop.create_future()

    def _deliver(setter: Callable[[Any], None], value: Any) -> None:
        if not future.done():
            setter(value)

    def _worker() -> None:
        try:
            result = func(*args, **kwargs)
        except Exception as exc:  # noqa: BLE001 - handed to the awaiting coroutine
            outcome: tuple[Callable[[Any], None], Any] = (future.set_exception, exc)
        else:
            outcome = (future.set_result, result)
        # The loop may already be closed if the caller gave up on this call.
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(_deliver, *outcome)

    name = getattr(func, "__qualname__", "blocking-call")
    threading.Thread(target=_worker, name=f"traf-sync:{name}", daemon=True).start()
    return future


async def wait_or_cancel(future: asyncio.Future[T], cancel: asyncio.Event) -> T:
    """Await ``future`` unless ``cancel`` is set first; a finished result wins a tie."""
    if cancel.is_set():
        future.cancel()
        raise OperationCancelled("Operation cancelled before a response arrived.")

    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({future, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()

    if future in done:
        return future.result()

    future.cancel()
    raise OperationCancelled("Operation cancelled while waiting for a response.")


async def call_or_cancel(
    cancel: asyncio.Event,
    func: Callable[..., T],
    /,
    *args: Any,
    **kwargs: Any,
) -> T:
    """Run ``func`` off the loop only if ``cancel`` is still clear, then race it against ``cancel``."""
    if cancel.is_set():
        raise OperationCancelled("Operation cancelled before it started.")
    return await wait_or_cancel(run_blocking(func, *args, **kwargs), cancel)


@contextlib.contextmanager
def cancel_on_signals(
    cancel: asyncio.Event,
    signals: Iterable[int] = (signal.SIGINT, signal.SIGTERM),
) -> Iterator[None]:
    """Set ``cancel`` on SIGINT/SIGTERM while the block runs, where the loop supports it."""
    loop = asyncio.get_running_loop()
    installed: list[int] = []
    for signum in signals:
        # Windows event loops do not implement signal handlers.
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signum, cancel.set)
            installed.append(signum)
    try:
        yield
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)
