"""SSE 事件流 Blueprint

每个连接注册一个广播订阅者，事件经线程安全队列转交给响应生成器。
连接建立时先推送一次 snapshot（全部运行 + 队列状态）。
"""

from __future__ import annotations

import json
import logging
import queue
from typing import Any, Iterator

from flask import Blueprint, Response

from integmatrix.core.events import Event
from integmatrix.web.app import current_engine

logger = logging.getLogger(__name__)

events_bp = Blueprint("events", __name__, url_prefix="/api")

KEEPALIVE_SECONDS = 15.0
MAX_BUFFERED_EVENTS = 1000


def format_sse(event_type: str, data: Any) -> str:
    payload = json.dumps(data, ensure_ascii=False, default=str)
    return f"event: {event_type}\ndata: {payload}\n\n"


@events_bp.route("/events", methods=["GET"])
def api_events():
    engine = current_engine()
    broadcaster = engine.container.broadcaster
    buffer: queue.Queue[Event] = queue.Queue(maxsize=MAX_BUFFERED_EVENTS)

    def _enqueue(event: Event) -> None:
        try:
            buffer.put_nowait(event)
        except queue.Full:
            logger.warning("SSE 客户端消费过慢，丢弃事件: %s", event.type)

    def _stream() -> Iterator[str]:
        unsubscribe = broadcaster.subscribe(_enqueue)
        try:
            yield format_sse("snapshot", {"runs": engine.runs(), "queue": engine.status()})
            while True:
                try:
                    event = buffer.get(timeout=KEEPALIVE_SECONDS)
                except queue.Empty:
                    yield ": keepalive\n\n"
                    continue
                yield format_sse(event.type, event.data)
        finally:
            unsubscribe()
            logger.debug("SSE 连接已关闭")

    return Response(
        _stream(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
