"""
导入进度广播器 (Import Progress Broadcaster)

基于内存队列的发布-订阅模式，把导入流程写出的结构化进度事件推送给 WebSocket 订阅者。
导入流程只依赖 ImportEventSink 接口，推送通道只是其中一个订阅者。
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Protocol

# 事件类型
PROGRESS = "progress"
WARNING = "warning"
ERROR = "error"
COMPLETE = "complete"


@dataclass
class ImportEvent:
    """一条导入进度事件，complete 为每次导入的终止标记。"""
    kind: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.kind == COMPLETE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


class ImportEventSink(Protocol):
    async def publish(self, event: ImportEvent) -> None: ...


class ImportBroadcaster:
    """
    导入事件广播器。消费者过慢时丢弃普通进度事件，
    但终止事件总会送达（必要时挤掉队列中最旧的一条）。
    """

    def __init__(self, maxsize: int = 256):
        self._maxsize = maxsize
        self._subscribers: List[asyncio.Queue] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    async def publish(self, event: ImportEvent) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                if not event.is_terminal:
                    continue
                queue.get_nowait()
                queue.put_nowait(event)


import_broadcaster = ImportBroadcaster()
