# src/wshandler/core/registry.py
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from wshandler.core.chain import PipelineChains, handler_name
from wshandler.core.contracts import Handler, HandlerId, HandlerKey, KeyLike, as_key
from wshandler.core.errors import DuplicateKeyError, InvalidLevelError, RegistrationError
from wshandler.core.level import Level, parse_level
from wshandler.core.log import LeveledLogger
from wshandler.core.metrics import gauge_set
from wshandler.core.rwlock import RWLock


class HandlerRegistry:
    """Key -> handler map plus the pipeline chains, configured builder-style.

    The first failed configuration call is kept as a sticky error and turns
    every later configuration call into a no-op::

        reg = HandlerRegistry().handle(("chat", ""), f).handle(("chat", "ok"), g, f)
        if reg.get_error():
            ...
    """

    def __init__(self, logger: Optional[logging.Logger] = None, level: Level = Level.INFO):
        self.lock = RWLock()
        self._funcs: Dict[HandlerKey, Handler] = {}
        self.chains = PipelineChains()
        self.log = LeveledLogger(logger, level=level)
        self._err: Optional[Exception] = None
        self.log.log(Level.INFO, "new handler is registered")

    # -------------------- sticky error --------------------
    def get_error(self) -> Optional[Exception]:
        return self._err

    def raise_for_error(self) -> None:
        if self._err is not None:
            raise self._err

    def _fail(self, err: Exception) -> None:
        self._err = err
        self.log.log(Level.ERROR, err)

    # -------------------- configuration --------------------
    def set_log_level(self, level: str) -> "HandlerRegistry":
        if self._err is not None:
            return self
        try:
            lvl = parse_level(level)
        except InvalidLevelError as e:
            self._fail(e)
            return self
        self.log.set_level(lvl)
        self.log.log(Level.INFO, f"change log level to {level}")
        return self

    def handle(self, key: KeyLike, fn: Handler, parent: Optional[Handler] = None) -> "HandlerRegistry":
        """Register ``fn`` under ``key``; with ``parent`` it becomes the next stage after it."""
        if self._err is not None:
            return self
        key = as_key(key)
        with self.lock.write():
            try:
                if key in self._funcs:
                    raise DuplicateKeyError(key)
                if parent is not None:
                    self.chains.append(parent, fn)
                else:
                    self.chains.add_root(fn)
            except RegistrationError as e:
                self._fail(e)
                return self
            except TypeError as e:
                # unhashable callables cannot be tracked by identity
                self._fail(RegistrationError(f"cannot register {handler_name(fn)}: {e}"))
                return self
            self._funcs[key] = fn
            gauge_set("registry_handlers", float(len(self._funcs)))
        self.log.log(Level.DEBUG, f"registered {key} -> {handler_name(fn)}",
                     handler_name(parent) if parent is not None else None)
        return self

    # -------------------- lookups (caller holds the read lock) --------------------
    def lookup(self, key: KeyLike) -> Optional[Handler]:
        return self._funcs.get(as_key(key))

    def pipeline(self, fn: Handler) -> List[Handler]:
        return self.chains.walk(fn)

    def handler_id(self, fn: Handler) -> Optional[HandlerId]:
        return self.chains.id_of(fn)

    def keys(self) -> List[HandlerKey]:
        with self.lock.read():
            return list(self._funcs)

    def __contains__(self, key: object) -> bool:
        with self.lock.read():
            return as_key(key) in self._funcs  # type: ignore[arg-type]

    def __len__(self) -> int:
        with self.lock.read():
            return len(self._funcs)
