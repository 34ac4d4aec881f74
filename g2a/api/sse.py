from __future__ import annotations

import asyncio
import json
from typing import AsyncGenerator, Dict

from starlette.responses import StreamingResponse

from .events import SessionEventBroker

KEEPALIVE_SECONDS = 15.0


def format_sse(event: Dict) -> bytes:
    payload = json.dumps(event, ensure_ascii=False)
    return f"data: {payload}\n\n".encode("utf-8")


async def _stream(broker: SessionEventBroker, session_id: str) -> AsyncGenerator[bytes, None]:
    queue = broker.subscribe(session_id)
    try:
        yield format_sse({"type": "connected", "sessionId": session_id})
        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
            except asyncio.TimeoutError:
                # SSE comment line keeps proxies from closing an idle stream
                yield b": keepalive\n\n"
                continue
            yield format_sse(event)
    finally:
        broker.unsubscribe(session_id, queue)


def sse_response(broker: SessionEventBroker, session_id: str) -> StreamingResponse:
    return StreamingResponse(_stream(broker, session_id), media_type="text/event-stream")
