# src/wshandler/core/dispatcher.py
from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional

from wshandler.core.context import CallContext
from wshandler.core.contracts import CallData, KeyLike, MessagePayload, as_key
from wshandler.core.errors import ConfigError, NotRegisteredError
from wshandler.core.gate import InvocationGate
from wshandler.core.level import Level
from wshandler.core.metrics import inc
from wshandler.core.registry import HandlerRegistry


class BudgetPolicy(str, Enum):
    PER_STEP = "per_step"   # every stage gets a fresh step_timeout
    SHARED = "shared"       # one step_timeout deadline for the whole chain


@dataclass
class DispatchConfig:
    grace: float = 0.001
    step_timeout: float = 30.0
    budget: BudgetPolicy = BudgetPolicy.PER_STEP
    enforce_deadline: bool = True
    lock_poll: float = 0.001

    def __post_init__(self):
        try:
            self.grace = float(self.grace)
            self.step_timeout = float(self.step_timeout)
        except (TypeError, ValueError):
            raise ConfigError(f"grace and step_timeout must be numbers: {self.grace!r}, {self.step_timeout!r}") from None
        if self.grace < 0 or self.step_timeout <= 0:
            raise ConfigError("grace must be >= 0 and step_timeout > 0")
        try:
            self.budget = BudgetPolicy(self.budget)
        except ValueError:
            raise ConfigError(f"unknown budget policy: {self.budget!r}") from None

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "DispatchConfig":
        d = d or {}
        known = {f.name for f in fields(cls)}
        unknown = set(d) - known
        if unknown:
            raise ConfigError(f"unknown dispatch options: {sorted(unknown)}")
        return cls(**d)

    @classmethod
    def from_env(cls) -> "DispatchConfig":
        """Reads WSH_GRACE, WSH_STEP_TIMEOUT, WSH_BUDGET, WSH_ENFORCE_DEADLINE."""
        nums = {}
        for name, var, default in (("grace", "WSH_GRACE", "0.001"), ("step_timeout", "WSH_STEP_TIMEOUT", "30")):
            raw = os.getenv(var, default)
            try:
                nums[name] = float(raw)
            except ValueError:
                raise ConfigError(f"{var} must be a number, got {raw!r}") from None
        return cls(
            budget=os.getenv("WSH_BUDGET", BudgetPolicy.PER_STEP.value),
            enforce_deadline=os.getenv("WSH_ENFORCE_DEADLINE", "1").lower() not in ("0", "false", "no"),
            **nums,
        )


class Dispatcher:
    """Runs registered handlers, once or as a pipeline, through the invocation gate.

    Lookup misses are the only failures raised (NotRegisteredError). Handler
    errors and timeouts arrive in-band as payloads with status "error".
    """

    def __init__(self, registry: HandlerRegistry, config: Optional[DispatchConfig] = None):
        self.registry = registry
        self.cfg = config or DispatchConfig()
        self.log = registry.log
        self.gate = InvocationGate(
            registry.log,
            grace=self.cfg.grace,
            enforce_deadline=self.cfg.enforce_deadline,
            poll_interval=self.cfg.lock_poll,
        )

    async def call(self, ctx: Optional[CallContext], key: KeyLike, data: CallData) -> CallData:
        key = as_key(key)
        ctx = ctx or CallContext.background()
        async with self.registry.lock.read_async(self.cfg.lock_poll):
            self.log.log(Level.DEBUG, f"in:{key}:call", data)
            fn = self.registry.lookup(key)
            if fn is None:
                inc("dispatch_miss_total", mode="call")
                miss = CallData.error(data.payload.event, client=data.client)
                raise NotRegisteredError(key, "call", data=miss)
            inc("dispatch_total", mode="call", event=key.event)
            out = await self.gate.invoke(fn, ctx, data, label=key.event)
            self.log.log(Level.DEBUG, f"out:{key}:call", out)
            return out

    async def iter_pipeline(self, ctx: Optional[CallContext], key: KeyLike,
                            data: CallData) -> AsyncIterator[MessagePayload]:
        """
        Yield each stage's payload in chain order, stopping after the first
        error payload. Each stage's output is the next stage's input.
        On a lookup miss, yields one error payload and then raises
        NotRegisteredError. Holds the registry's read lock until exhausted
        or closed.
        """
        key = as_key(key)
        ctx = ctx or CallContext.background()
        async with self.registry.lock.read_async(self.cfg.lock_poll):
            self.log.log(Level.DEBUG, f"in:{key}:pipeline", data)
            fn = self.registry.lookup(key)
            stages = self.registry.pipeline(fn) if fn is not None else []
            if not stages:
                inc("dispatch_miss_total", mode="pipeline")
                miss = CallData.error(data.payload.event, client=data.client)
                yield miss.payload
                where = "pipeline" if fn is None else "no pipeline stage"
                raise NotRegisteredError(key, where, data=miss)

            inc("dispatch_total", mode="pipeline", event=key.event)
            shared = ctx.with_timeout(self.cfg.step_timeout) if self.cfg.budget is BudgetPolicy.SHARED else None
            cur = data
            for stage in stages:
                step_ctx = shared or ctx.with_timeout(self.cfg.step_timeout)
                cur = await self.gate.invoke(stage, step_ctx, cur, label=key.event)
                inc("pipeline_steps_total", event=key.event)
                yield cur.payload
                if cur.payload.is_error:
                    break
            self.log.log(Level.DEBUG, f"out:{key}:pipeline", cur)

    async def call_pipeline(self, ctx: Optional[CallContext], key: KeyLike, data: CallData,
                            out: "asyncio.Queue[MessagePayload]") -> None:
        """Push every stage payload onto ``out``. A bounded queue applies backpressure."""
        stream = self.iter_pipeline(ctx, key, data)
        try:
            async for payload in stream:
                await out.put(payload)
        finally:
            await stream.aclose()
