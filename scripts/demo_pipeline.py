# scripts/demo_pipeline.py
import asyncio
import os

from wshandler.core import log
from wshandler.core.context import CallContext
from wshandler.core.contracts import CallData, MessagePayload
from wshandler.core.metrics import start_exporter, stop_exporter
from wshandler.handler import WsHandler


async def validate(ctx, data):
    text = str(data.payload.data or "").strip()
    if not text:
        return CallData.error(data.payload.event, "empty message", client=data.client)
    return CallData(MessagePayload("chat", data=text, status="validated"), data.client)


async def moderate(ctx, data):
    await asyncio.sleep(0.05)  # pretend to call a classifier
    clean = data.payload.data.replace("darn", "d**n")
    return CallData(MessagePayload("chat", data=clean, status="moderated", broadcast=True), data.client)


async def store(ctx, data):
    return CallData(MessagePayload("chat", data={"stored": data.payload.data}, status="ok"), data.client)


async def main():
    log.setup()
    start_exporter(interval_sec=float(os.getenv("METRICS_INTERVAL", "5")),
                   json_mode=(os.getenv("LOG_JSON", "0") == "1"))

    h = (WsHandler()
         .handle(("chat", ""), validate)
         .handle(("chat", "validated"), moderate, validate)
         .handle(("chat", "moderated"), store, moderate)
         .set_log_level(os.getenv("WSH_LOG_LEVEL", "info")))
    h.raise_for_error()

    out: asyncio.Queue = asyncio.Queue(maxsize=1)
    for text in ("well darn", ""):
        data = CallData(MessagePayload("chat", data=text), client="demo-conn")
        task = asyncio.create_task(h.call_pipeline_func(CallContext.background(), ("chat", ""), data, out))
        while not (task.done() and out.empty()):
            try:
                msg = await asyncio.wait_for(out.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            print(msg.to_json())
        await task

    stop_exporter()


if __name__ == "__main__":
    asyncio.run(main())
