"""事件广播（发布 / 订阅）

管线与队列只向 EventSink 发布事件，不直接调用展示层。
订阅者数量不限，重复订阅 / 重复退订都是幂等的；
单个订阅者抛异常只记录日志，不影响其他订阅者和发布方。

事件类型:
    run-started        {id, testName}
    phase-updated      {id, phaseName, phase, currentPhase}
    run-completed      {id, status, exitCode}
    queue-entry-added  {id, testName, position}
    queue-cleared      {cancelledCount, wasRunning}
    pack-completed     {directory, reference, applied}
    pack-failed        {directory, error}
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

RUN_STARTED = "run-started"
PHASE_UPDATED = "phase-updated"
RUN_COMPLETED = "run-completed"
QUEUE_ENTRY_ADDED = "queue-entry-added"
QUEUE_CLEARED = "queue-cleared"
PACK_COMPLETED = "pack-completed"
PACK_FAILED = "pack-failed"


@dataclass(frozen=True)
class Event:
    type: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data}


Subscriber = Callable[[Event], None]


class EventSink(Protocol):
    """事件发布接口"""

    def publish(self, event: Event) -> None:
        ...


class EventBroadcaster:
    """线程安全的广播器，订阅者在发布方线程同步调用"""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """注册订阅者，返回退订函数"""
        with self._lock:
            if subscriber not in self._subscribers:
                self._subscribers.append(subscriber)
        return lambda: self.unsubscribe(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: Event) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception:
                logger.exception("事件订阅者处理失败: %s", event.type)

    def emit(self, event_type: str, **data: Any) -> None:
        self.publish(Event(type=event_type, data=data))

