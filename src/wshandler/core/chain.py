# src/wshandler/core/chain.py
from __future__ import annotations

import uuid
from typing import Dict, List, Optional

from wshandler.core.contracts import Handler, HandlerId
from wshandler.core.errors import (
    ChainConflictError,
    ChainCycleError,
    DuplicateRootError,
    UnknownParentError,
)


def handler_name(fn: Handler) -> str:
    mod = getattr(fn, "__module__", None)
    name = getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None)
    if name is None:
        return repr(fn)
    return f"{mod}.{name}" if mod else name


class PipelineChains:
    """Linear pipelines of handlers, keyed by the ID of each chain's first stage.

    Every handler object gets a HandlerId the first time it is seen. A
    handler belongs to at most one chain, at one position. Not thread-safe;
    the registry serializes access.
    """

    def __init__(self) -> None:
        self._ids: Dict[Handler, HandlerId] = {}
        self._fns: Dict[HandlerId, Handler] = {}
        self._chains: Dict[HandlerId, List[HandlerId]] = {}   # root -> ordered stages
        self._root_of: Dict[HandlerId, HandlerId] = {}        # stage -> root

    # -------------------- identity --------------------
    def id_of(self, fn: Handler) -> Optional[HandlerId]:
        return self._ids.get(fn)

    def issue_id(self, fn: Handler) -> HandlerId:
        hid = self._ids.get(fn)
        if hid is None:
            hid = str(uuid.uuid4())
            self._ids[fn] = hid
            self._fns[hid] = fn
        return hid

    def has(self, fn: Handler) -> bool:
        hid = self._ids.get(fn)
        return hid is not None and hid in self._root_of

    # -------------------- navigation --------------------
    def _position(self, hid: HandlerId) -> tuple[List[HandlerId], int]:
        chain = self._chains[self._root_of[hid]]
        return chain, chain.index(hid)

    def successor(self, fn: Handler) -> Optional[Handler]:
        if not self.has(fn):
            return None
        chain, i = self._position(self._ids[fn])
        return self._fns[chain[i + 1]] if i + 1 < len(chain) else None

    def predecessor(self, fn: Handler) -> Optional[Handler]:
        if not self.has(fn):
            return None
        chain, i = self._position(self._ids[fn])
        return self._fns[chain[i - 1]] if i > 0 else None

    def walk(self, fn: Handler) -> List[Handler]:
        """The stage holding ``fn`` followed by every later stage of its chain."""
        if not self.has(fn):
            return []
        chain, i = self._position(self._ids[fn])
        return [self._fns[h] for h in chain[i:]]

    def chains(self) -> Dict[HandlerId, List[Handler]]:
        return {root: [self._fns[h] for h in stages] for root, stages in self._chains.items()}

    def __len__(self) -> int:
        return len(self._root_of)

    # -------------------- validation --------------------
    def check_root(self, fn: Handler) -> None:
        if self.has(fn):
            raise DuplicateRootError(handler_name(fn))

    def check_append(self, parent: Handler, fn: Handler) -> None:
        name, pname = handler_name(fn), handler_name(parent)
        if self.has(fn):
            if self.successor(fn) is not None:
                raise ChainConflictError(f"the current function has a child function declaration: {name}")
            if self.predecessor(fn) is not None:
                raise ChainConflictError(f"the current function already has a parent: {name}")
        if not self.has(parent):
            raise UnknownParentError(name, pname)
        if self.successor(parent) is not None:
            raise ChainConflictError(f"the parent function has a child function declaration: {name}: {pname}")
        if self.has(fn) and self._root_of[self._ids[fn]] == self._root_of[self._ids[parent]]:
            raise ChainCycleError(f"linking {name} after {pname} would close a loop")

    # -------------------- mutation --------------------
    def add_root(self, fn: Handler) -> HandlerId:
        self.check_root(fn)
        hid = self.issue_id(fn)
        self._chains[hid] = [hid]
        self._root_of[hid] = hid
        return hid

    def append(self, parent: Handler, fn: Handler) -> HandlerId:
        self.check_append(parent, fn)
        hid = self.issue_id(fn)
        root = self._root_of[self._ids[parent]]
        if hid in self._chains:
            # a standalone stage joins the parent's chain
            del self._chains[hid]
        self._chains[root].append(hid)
        self._root_of[hid] = root
        return hid
