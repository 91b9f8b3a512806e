# src/wshandler/core/context.py
from __future__ import annotations

import asyncio
import time
from typing import Optional

from wshandler.core.errors import Cancelled, DeadlineExceeded


class CallContext:
    """Cancellable call context with an optional deadline.

    Children see their parent's cancellation and can only shorten the
    deadline. Deadlines are on the ``time.monotonic()`` clock, so a context
    can be created outside the event loop and awaited inside it.
    """

    def __init__(self, parent: Optional["CallContext"] = None, deadline: Optional[float] = None):
        self.parent = parent
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline
        self._cancelled: Optional[Cancelled] = None

    @classmethod
    def background(cls) -> "CallContext":
        return cls()

    def with_timeout(self, timeout: float) -> "CallContext":
        return CallContext(self, time.monotonic() + float(timeout))

    def with_cancel(self) -> "CallContext":
        return CallContext(self)

    def cancel(self, reason: str | None = None) -> None:
        if self._cancelled is None:
            self._cancelled = Cancelled(reason) if reason else Cancelled()

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    @property
    def err(self) -> Optional[Exception]:
        """None while live, else DeadlineExceeded or Cancelled."""
        if self._cancelled is not None:
            return self._cancelled
        if self.parent is not None:
            perr = self.parent.err
            if perr is not None:
                return perr
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return DeadlineExceeded()
        return None

    def done(self) -> bool:
        return self.err is not None

    async def wait(self, poll_interval: float = 0.001) -> Exception:
        """
        Suspend until the context ends and return its error.
        Sleeps straight to the deadline when there is one; polls for cancellation otherwise.
        """
        while True:
            err = self.err
            if err is not None:
                return err
            left = self.remaining()
            step = poll_interval if left is None else max(0.0, min(left, poll_interval))
            await asyncio.sleep(step)

    def __repr__(self) -> str:
        left = self.remaining()
        return f"CallContext(remaining={left if left is None else round(left, 3)}, err={self.err!r})"
