# src/wshandler/core/gate.py
from __future__ import annotations

import asyncio
import inspect
from typing import Optional

from wshandler.core.context import CallContext
from wshandler.core.contracts import CallData, Handler
from wshandler.core.chain import handler_name
from wshandler.core.errors import DeadlineExceeded, HandlerError
from wshandler.core.level import Level
from wshandler.core.log import LeveledLogger
from wshandler.core.metrics import Timer, inc

TIMEOUT_MARKER = "timeout reached"
CANCELLED_MARKER = "call cancelled"


async def _call(fn: Handler, ctx: CallContext, data: CallData) -> CallData:
    if inspect.iscoroutinefunction(fn):
        res = await fn(ctx, data)
    else:
        # plain handlers run on a worker thread so the loop (and the deadline watcher) keep going
        res = await asyncio.to_thread(fn, ctx, data)
        if inspect.isawaitable(res):
            res = await res
    if not isinstance(res, CallData):
        raise TypeError(f"handler {handler_name(fn)} returned {type(res).__name__}, expected CallData")
    return res


class InvocationGate:
    """
    Wraps one handler call. Never raises for handler or context failures:
    they come back as a payload with status "error" plus an error log entry.

    1. Wait ``grace`` seconds unless the context ends first.
    2. Context ended: return the timeout (or cancellation) payload without calling the handler.
    3. Otherwise run the handler with the same context. With ``enforce_deadline``
       the run is raced against the context and abandoned when the context ends.
       Plain functions run on a worker thread; an abandoned thread finishes on its own.

    Metrics are labelled with ``label`` (the registered event name), falling
    back to the handler name.
    """

    def __init__(self, log: LeveledLogger, grace: float = 0.001, *,
                 enforce_deadline: bool = True, poll_interval: float = 0.001):
        self.log = log
        self.grace = float(grace)
        self.enforce_deadline = enforce_deadline
        self.poll_interval = float(poll_interval)

    async def invoke(self, fn: Handler, ctx: CallContext, data: CallData,
                     label: Optional[str] = None) -> CallData:
        label = label or handler_name(fn)
        err = ctx.err
        if err is None:
            try:
                err = await asyncio.wait_for(ctx.wait(self.poll_interval), timeout=self.grace)
            except asyncio.TimeoutError:
                err = None
        if err is not None:
            return self._expired(err, data, label)

        event = data.payload.event
        with Timer("gate_latency_ms", event=label):
            try:
                if self.enforce_deadline:
                    return await self._race(fn, ctx, data)
                return await _call(fn, ctx, data)
            except _Expired as e:
                return self._expired(e.err, data, label)
            except HandlerError as e:
                inc("handler_error_total", event=label)
                self.log.log(Level.ERROR, f"{e}:{handler_name(fn)}", data.payload, data.client)
                if e.data is not None:
                    return e.data
                return CallData.error(event, str(e), client=data.client)
            except Exception as e:
                inc("handler_error_total", event=label)
                self.log.log(Level.ERROR, f"{e!r}:{handler_name(fn)}", data.payload, data.client, exc_info=e)
                return CallData.error(event, str(e), client=data.client)

    async def _race(self, fn: Handler, ctx: CallContext, data: CallData) -> CallData:
        task = asyncio.ensure_future(_call(fn, ctx, data))
        watcher = asyncio.ensure_future(ctx.wait(self.poll_interval))
        try:
            done, _ = await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            watcher.cancel()

        if task in done:
            err = ctx.err
            if err is None:
                return task.result()
            # finished, but only after the context ended
            if not task.cancelled() and task.exception() is not None:
                self.log.log(Level.DEBUG, f"late handler failed: {task.exception()!r}:{handler_name(fn)}")
            raise _Expired(err)

        # context ended first: the handler sees CancelledError at its next await
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            self.log.log(Level.DEBUG, f"abandoned handler failed: {e!r}:{handler_name(fn)}")
        raise _Expired(watcher.result())

    def _expired(self, err: Exception, data: CallData, label: str) -> CallData:
        if isinstance(err, DeadlineExceeded):
            inc("gate_timeout_total", event=label)
            marker = TIMEOUT_MARKER
        else:
            inc("gate_cancel_total", event=label)
            marker = CANCELLED_MARKER
        self.log.log(Level.ERROR, f"{err}:gate", data.payload, data.client)
        return CallData.error(data.payload.event, marker, client=data.client)


class _Expired(Exception):
    def __init__(self, err: Exception):
        super().__init__(str(err))
        self.err = err
