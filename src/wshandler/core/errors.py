# src/wshandler/core/errors.py
from __future__ import annotations

from typing import Any, Optional


class WsHandlerError(Exception):
    """Base class for everything raised by wshandler."""


# ---------------- configuration ----------------

class RegistrationError(WsHandlerError):
    """A handler registration was rejected. Stored as the registry's sticky error."""


class DuplicateKeyError(RegistrationError):
    def __init__(self, key: Any):
        super().__init__(f"func with current params has been registered: {key}")
        self.key = key


class UnknownParentError(RegistrationError):
    def __init__(self, handler: str, parent: str):
        super().__init__(f"there is no registered parent function: {handler}: {parent}")
        self.handler = handler
        self.parent = parent


class ChainConflictError(RegistrationError):
    """Parent already has a successor, or the child is already linked."""


class ChainCycleError(RegistrationError):
    pass


class DuplicateRootError(RegistrationError):
    def __init__(self, handler: str):
        super().__init__(f"this function is declared: {handler}")
        self.handler = handler


class InvalidLevelError(WsHandlerError, ValueError):
    def __init__(self, value: Any):
        super().__init__(f"not a valid Level: {value!r}")
        self.value = value


class ConfigError(WsHandlerError):
    """Malformed wiring file."""


# ---------------- dispatch ----------------

class NotRegisteredError(WsHandlerError, LookupError):
    def __init__(self, key: Any, where: str = "", data: Optional[Any] = None):
        msg = f"func with current params has not been registered: {key}"
        if where:
            msg = f"{msg}: {where}"
        super().__init__(msg)
        self.key = key
        # synthetic error CallData handed to the caller alongside the error
        self.data = data


class HandlerError(WsHandlerError):
    """Raised by a handler to report failure while still handing back data.

    When ``data`` is set the gate logs the error and returns ``data`` as the
    call result, so the handler decides what the caller sees.
    """

    def __init__(self, message: str, data: Optional[Any] = None, original: Exception | None = None):
        super().__init__(message)
        self.data = data
        self.original = original


class DeadlineExceeded(WsHandlerError):
    def __init__(self, message: str = "context deadline exceeded"):
        super().__init__(message)


class Cancelled(WsHandlerError):
    def __init__(self, message: str = "context canceled"):
        super().__init__(message)
