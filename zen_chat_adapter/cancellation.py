"""Cooperative cancellation: host tokens and the abort signal fed to transports."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterable, AsyncIterator, Callable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestAbortedError(Exception):
    """Raised by an abortable transport read once its signal fires."""


class CancellationToken:
    """Read side of a host cancellation source."""

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: List[Callable[[], None]] = []

    @property
    def is_cancellation_requested(self) -> bool:
        return self._cancelled

    def on_cancellation_requested(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register *callback*; fires immediately if already cancelled.

        Returns a function that unregisters the callback.
        """
        if self._cancelled:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove

    def _fire(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed")


class CancellationTokenSource:
    def __init__(self) -> None:
        self.token = CancellationToken()

    def cancel(self) -> None:
        self.token._fire()


#: A token that never fires, for callers without cancellation.
NONE_TOKEN = CancellationToken()


class AbortSignal:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class AbortController:
    """Owns an :class:`AbortSignal`; ``abort()`` is idempotent."""

    def __init__(self) -> None:
        self.signal = AbortSignal()
        self._unlink: Callable[[], None] = lambda: None

    def abort(self, reason: str = "Request aborted") -> None:
        if not self.signal.aborted:
            self.signal.reason = reason
            self.signal._event.set()

    def dispose(self) -> None:
        """Detach from the token this controller was linked to."""
        unlink, self._unlink = self._unlink, lambda: None
        unlink()

    @classmethod
    def linked_to(cls, token: CancellationToken) -> "AbortController":
        """Create a controller that aborts when *token* is cancelled.

        Call :meth:`dispose` once the request is over; long-lived tokens
        otherwise keep every controller alive.
        """
        controller = cls()
        controller._unlink = token.on_cancellation_requested(
            lambda: controller.abort("Request cancelled by host")
        )
        return controller


async def abortable(
    source: AsyncIterable[T], signal: Optional[AbortSignal]
) -> AsyncIterator[T]:
    """Iterate *source* until it ends or *signal* fires.

    A pending read is cancelled as soon as the signal fires and
    :class:`RequestAbortedError` is raised; items that arrive after the
    abort are never yielded.
    """
    iterator = source.__aiter__()
    if signal is None:
        async for item in iterator:
            yield item
        return

    abort_wait = asyncio.ensure_future(signal.wait())
    try:
        while True:
            if signal.aborted:
                raise RequestAbortedError(signal.reason or "Request aborted")
            next_item = asyncio.ensure_future(iterator.__anext__())
            done, _ = await asyncio.wait(
                {next_item, abort_wait}, return_when=asyncio.FIRST_COMPLETED
            )
            if next_item not in done:
                next_item.cancel()
                try:
                    await next_item
                except (asyncio.CancelledError, StopAsyncIteration, Exception):
                    pass
                raise RequestAbortedError(signal.reason or "Request aborted")
            try:
                item = next_item.result()
            except StopAsyncIteration:
                return
            if signal.aborted:
                raise RequestAbortedError(signal.reason or "Request aborted")
            yield item
    finally:
        abort_wait.cancel()
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except Exception:
                logger.debug("Error while closing aborted stream", exc_info=True)
