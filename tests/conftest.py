# tests/conftest.py
import os
import logging
import pytest

from wshandler.core import log
from wshandler.core.contracts import CallData, MessagePayload
from wshandler.core.dispatcher import DispatchConfig
from wshandler.core.metrics import start_exporter, stop_exporter
from wshandler.handler import WsHandler

@pytest.fixture(scope="session", autouse=True)
def _bootstrap_logging_and_metrics():
    # Setup logging (reads LOG_LEVEL / LOG_JSON / .env if available)
    log.setup()

    # Start metrics exporter with short interval during tests
    interval = float(os.getenv("METRICS_INTERVAL_TEST", "1.0"))
    json_mode = (os.getenv("LOG_JSON", "0") == "1")
    start_exporter(interval_sec=interval, json_mode=json_mode,
                   logger=logging.getLogger("wshandler.metrics"))
    yield
    stop_exporter()


def make_data(event: str = "ping", data=None, client="conn-1") -> CallData:
    return CallData(MessagePayload(event=event, data=data), client=client)


@pytest.fixture
def fast_cfg() -> DispatchConfig:
    return DispatchConfig(grace=0.001, step_timeout=0.2)


@pytest.fixture
def wsh(fast_cfg) -> WsHandler:
    return WsHandler(config=fast_cfg)
