from typing import Any, AsyncIterator, Awaitable, Optional
import asyncio
from contextlib import asynccontextmanager

from npc_chat.domain.errors import TurnCancelledError
from npc_chat.domain.models.conversation import NPCStatus


async def run_cancellable(
    awaitable: Awaitable[Any],
    cancel_event: Optional[asyncio.Event] = None,
    timeout: Optional[float] = None
) -> Any:
    """Await something unless cancel_event fires or the timeout expires first.

    Raises TurnCancelledError on cancellation and asyncio.TimeoutError on
    timeout; the inner task is cancelled in both cases.
    """

    if cancel_event is not None and cancel_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise TurnCancelledError("Turn cancelled before dispatch")

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_event.wait()) if cancel_event is not None else None
    watched = {task} if waiter is None else {task, waiter}

    try:
        done, _ = await asyncio.wait(watched, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if waiter is not None:
            waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    if waiter is not None and waiter in done:
        raise TurnCancelledError("Turn cancelled during transport call")
    raise asyncio.TimeoutError()


class TurnGuard:
    """Busy flag and readiness gate for one conversation.

    With ``serialize_turns`` (the default) overlapping turns are queued on an
    asyncio.Lock. Without it the busy flag is advisory only and concurrent
    turns may interleave their history appends.
    """

    def __init__(self, serialize_turns: bool = True):
        self._ready = asyncio.Event()
        self._lock: Optional[asyncio.Lock] = asyncio.Lock() if serialize_turns else None
        self._active_turns = 0

    @property
    def serialize_turns(self) -> bool:
        return self._lock is not None

    @property
    def is_busy(self) -> bool:
        return self._active_turns > 0

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    @property
    def status(self) -> NPCStatus:
        return NPCStatus.BUSY if self.is_busy else NPCStatus.IDLE

    def mark_ready(self):
        """Open the gate for pending and future turns"""
        self._ready.set()

    async def wait_until_ready(self, cancel_event: Optional[asyncio.Event] = None):
        await run_cancellable(self._ready.wait(), cancel_event)

    @asynccontextmanager
    async def turn(self, cancel_event: Optional[asyncio.Event] = None) -> AsyncIterator[None]:
        """Hold the conversation for one turn; busy is cleared on every exit path"""

        self._active_turns += 1
        acquired = False
        try:
            await self.wait_until_ready(cancel_event)
            if self._lock is not None:
                await run_cancellable(self._lock.acquire(), cancel_event)
                acquired = True
            yield
        finally:
            if acquired:
                self._lock.release()
            self._active_turns -= 1
