import textwrap
import pytest

from conftest import make_data
from wshandler.core.dispatcher import BudgetPolicy, DispatchConfig
from wshandler.core.errors import ChainConflictError, ConfigError
from wshandler.core.level import Level
from wshandler.handler import WsHandler
from wshandler.wire_config import build_from_dict, build_from_yaml

HANDLERS = '''
from wshandler.core.contracts import CallData, MessagePayload

async def parse(ctx, data):
    return CallData(MessagePayload("order", data={"qty": int(data.payload.data)}, status="parsed"), data.client)

async def price(ctx, data):
    d = dict(data.payload.data, total=data.payload.data["qty"] * 3)
    return CallData(MessagePayload("order", data=d, status="priced"), data.client)

NOT_CALLABLE = 42
'''


@pytest.fixture
def handlers_module(tmp_path, monkeypatch):
    (tmp_path / "wiring_demo_handlers.py").write_text(HANDLERS, encoding="utf-8")
    monkeypatch.syspath_prepend(str(tmp_path))
    return "wiring_demo_handlers"


@pytest.mark.asyncio
async def test_build_from_yaml(tmp_path, handlers_module):
    cfg = tmp_path / "handlers.yaml"
    cfg.write_text(textwrap.dedent(f"""
        log_level: debug
        dispatch:
          step_timeout: 5
          budget: shared
        handlers:
          - event: order
            handler: {handlers_module}:parse
          - event: order
            status: parsed
            handler: {handlers_module}:price
            parent: {handlers_module}:parse
    """), encoding="utf-8")

    h = build_from_yaml(cfg)
    assert h.registry.log.level is Level.DEBUG
    assert h.dispatcher.cfg.budget is BudgetPolicy.SHARED
    assert h.dispatcher.cfg.step_timeout == 5.0

    got = [p async for p in h.iter_pipeline(None, ("order", ""), make_data("order", "4"))]
    assert [p.status for p in got] == ["parsed", "priced"]
    assert got[-1].data == {"qty": 4, "total": 12}


def test_registry_error_is_raised(handlers_module):
    doc = {
        "handlers": [
            {"event": "a", "handler": f"{handlers_module}:parse"},
            {"event": "b", "handler": f"{handlers_module}:price", "parent": f"{handlers_module}:parse"},
            {"event": "c", "handler": f"{handlers_module}:price", "parent": f"{handlers_module}:parse"},
        ]
    }
    with pytest.raises(ChainConflictError):
        build_from_dict(doc)


@pytest.mark.parametrize("doc", [
    {"handlers": [{"event": "a"}]},
    {"handlers": [{"event": "a", "handler": "no_such_module_xyz:fn"}]},
    {"handlers": [{"event": "a", "handler": "wiring_demo_handlers:NOT_CALLABLE"}]},
    {"handlers": [{"event": "a", "handler": "nodots"}]},
    {"dispatch": {"turbo": True}},
    {"dispatch": {"budget": "forever"}},
    ["not", "a", "mapping"],
])
def test_bad_documents(doc, handlers_module):
    with pytest.raises(ConfigError):
        build_from_dict(doc)


def test_invalid_yaml(tmp_path):
    p = tmp_path / "broken.yaml"
    p.write_text("handlers: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigError):
        build_from_yaml(p)


@pytest.mark.parametrize("var", ["WSH_GRACE", "WSH_STEP_TIMEOUT"])
def test_malformed_env_number_is_config_error(monkeypatch, var):
    monkeypatch.setenv(var, "soon")
    with pytest.raises(ConfigError) as ei:
        DispatchConfig.from_env()
    assert var in str(ei.value)
    with pytest.raises(ConfigError):
        WsHandler()


def test_env_config_parsed(monkeypatch):
    monkeypatch.setenv("WSH_STEP_TIMEOUT", "2.5")
    monkeypatch.setenv("WSH_BUDGET", "shared")
    monkeypatch.setenv("WSH_ENFORCE_DEADLINE", "False")
    cfg = DispatchConfig.from_env()
    assert cfg.step_timeout == 2.5
    assert cfg.budget is BudgetPolicy.SHARED
    assert cfg.enforce_deadline is False
