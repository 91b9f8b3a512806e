# src/wshandler/wire_config.py
from __future__ import annotations
import importlib
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import yaml  # PyYAML
except ImportError as e:
    raise RuntimeError("Please install PyYAML: pip install pyyaml") from e

from wshandler.core.contracts import Handler
from wshandler.core.dispatcher import DispatchConfig
from wshandler.core.errors import ConfigError
from wshandler.handler import WsHandler


def _imp(ref: str) -> Handler:
    """Resolve "package.module:attr" (or "package.module.attr")."""
    if ":" in ref:
        module, attr = ref.split(":", 1)
    else:
        module, _, attr = ref.rpartition(".")
    if not module or not attr:
        raise ConfigError(f"bad handler reference: {ref!r}")
    try:
        obj: Any = importlib.import_module(module)
        for part in attr.split("."):
            obj = getattr(obj, part)
    except (ImportError, AttributeError) as e:
        raise ConfigError(f"cannot import handler {ref!r}: {e}") from e
    if not callable(obj):
        raise ConfigError(f"handler {ref!r} is not callable")
    return obj


def build_from_dict(data: Optional[Dict[str, Any]]) -> WsHandler:
    """Assemble a WsHandler from an already-parsed wiring document.

    handlers are registered in file order, so a stage must come after its parent.
    """
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError("wiring document must be a mapping")

    h = WsHandler(config=DispatchConfig.from_dict(data.get("dispatch")))
    if data.get("log_level"):
        h.set_log_level(str(data["log_level"]))

    for i, entry in enumerate(data.get("handlers") or []):
        if not isinstance(entry, dict) or "event" not in entry or "handler" not in entry:
            raise ConfigError(f"handlers[{i}] needs 'event' and 'handler'")
        fn = _imp(entry["handler"])
        parent = _imp(entry["parent"]) if entry.get("parent") else None
        h.handle((str(entry["event"]), str(entry.get("status") or "")), fn, parent)

    h.raise_for_error()
    return h


def build_from_yaml(yaml_path: str | Path) -> WsHandler:
    """อ่าน handlers.yaml แล้วประกอบ WsHandler ให้พร้อมใช้งาน"""
    try:
        data = yaml.safe_load(Path(yaml_path).read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {yaml_path}: {e}") from e
    return build_from_dict(data)
