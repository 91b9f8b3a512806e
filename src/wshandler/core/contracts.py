from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, NamedTuple, Optional, Tuple, Union

__all__ = [
    "HandlerId",
    "HandlerKey",
    "MessagePayload",
    "CallData",
    "LogEntry",
    "Handler",
    "as_key",
]


# --------- Primitive / aliases ---------
HandlerId = str


class HandlerKey(NamedTuple):
    """Registry key: an event name plus a status tag. Compared structurally."""
    event: str
    status: str = ""

    def __str__(self) -> str:
        return f"{self.event}:{self.status}" if self.status else self.event


KeyLike = Union[HandlerKey, Tuple[str, str], str]


def as_key(key: KeyLike) -> HandlerKey:
    if isinstance(key, HandlerKey):
        return key
    if isinstance(key, str):
        return HandlerKey(key)
    event, status = key
    return HandlerKey(str(event), str(status or ""))


# --------- Message envelope ---------
@dataclass(slots=True)
class MessagePayload:
    """Decoded client message. ``broadcast`` never goes over the wire."""
    event: str
    data: Any = None
    status: Optional[str] = None
    broadcast: bool = False

    @property
    def is_error(self) -> bool:
        return self.status == "error"

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"event": self.event}
        # omit empty fields like the wire format does
        if self.data is not None:
            d["data"] = self.data
        if self.status:
            d["status"] = self.status
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MessagePayload":
        return cls(event=str(d.get("event", "")), data=d.get("data"), status=d.get("status") or None)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "MessagePayload":
        return cls.from_dict(json.loads(raw))


@dataclass(slots=True)
class CallData:
    """What a handler receives and returns: the caller's client handle plus the payload."""
    payload: MessagePayload
    client: Any = None

    @classmethod
    def error(cls, event: str, data: Any = None, client: Any = None) -> "CallData":
        return cls(MessagePayload(event=event, data=data, status="error"), client=client)


# --------- Log record handed to the logger ---------
@dataclass(slots=True)
class LogEntry:
    event: Any                      # an exception or a message
    level: int                      # wshandler.core.level.Level
    module: str = "wshandler"
    body: Tuple[Any, ...] = ()
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event": str(self.event),
            "level": str(self.level),
            "module": self.module,
            "body": [repr(b) for b in self.body],
        }


# Handlers take (context, data) and return CallData, sync or async.
Handler = Callable[[Any, CallData], Union[CallData, Awaitable[CallData]]]
