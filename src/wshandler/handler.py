# src/wshandler/handler.py
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

from wshandler.core.context import CallContext
from wshandler.core.contracts import CallData, Handler, HandlerId, KeyLike, MessagePayload
from wshandler.core.dispatcher import DispatchConfig, Dispatcher
from wshandler.core.registry import HandlerRegistry


class WsHandler:
    """Registration and dispatch for message handlers keyed by (event, status).

    Configuration calls chain and defer errors::

        h = (WsHandler()
             .handle(("order", ""), validate)
             .handle(("order", "validated"), store, validate)
             .set_log_level("debug"))
        h.raise_for_error()

        result = await h.call_func(None, ("order", ""), data)
        await h.call_pipeline_func(None, ("order", ""), data, queue)
    """

    def __init__(self, logger: Optional[logging.Logger] = None, config: Optional[DispatchConfig] = None):
        self.registry = HandlerRegistry(logger)
        self.dispatcher = Dispatcher(self.registry, config or DispatchConfig.from_env())

    # -------------------- registration --------------------
    def handle(self, key: KeyLike, fn: Handler, parent: Optional[Handler] = None) -> "WsHandler":
        self.registry.handle(key, fn, parent)
        return self

    def on(self, event: str, status: str = "", *, after: Optional[Handler] = None) -> Callable[[Handler], Handler]:
        """Decorator form of handle(); ``after`` names the previous pipeline stage."""
        def deco(fn: Handler) -> Handler:
            self.handle((event, status), fn, after)
            return fn
        return deco

    def set_log_level(self, level: str) -> "WsHandler":
        self.registry.set_log_level(level)
        return self

    def get_error(self) -> Optional[Exception]:
        return self.registry.get_error()

    def raise_for_error(self) -> None:
        self.registry.raise_for_error()

    def handler_id(self, fn: Handler) -> Optional[HandlerId]:
        return self.registry.handler_id(fn)

    # -------------------- dispatch --------------------
    async def call_func(self, ctx: Optional[CallContext], key: KeyLike, data: CallData) -> CallData:
        return await self.dispatcher.call(ctx, key, data)

    async def call_pipeline_func(self, ctx: Optional[CallContext], key: KeyLike, data: CallData,
                                 out: "asyncio.Queue[MessagePayload]") -> None:
        await self.dispatcher.call_pipeline(ctx, key, data, out)

    def iter_pipeline(self, ctx: Optional[CallContext], key: KeyLike, data: CallData) -> AsyncIterator[MessagePayload]:
        return self.dispatcher.iter_pipeline(ctx, key, data)


def new_handler(logger: Optional[logging.Logger] = None, config: Optional[DispatchConfig] = None) -> WsHandler:
    return WsHandler(logger, config)
