"""事件通道：Task Controller 发布进度，WebSocket / CLI 订阅"""

import asyncio
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Protocol

from .models import now_ms

logger = logging.getLogger(__name__)

ACTIVITY = "activity"
STEP_PROGRESS = "step_progress"
TASK_COMPLETE = "task_complete"
TASK_ANALYSIS = "task_analysis"
ERROR = "error"
SCREENSHOT = "screenshot"


@dataclass
class TaskEvent:
    type: str
    task_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "task_id": self.task_id, "timestamp": self.timestamp, **self.payload}


class EventChannel:
    """
    进程内发布/订阅。
    订阅者拿到一个 asyncio.Queue；每个任务保留最近的事件，
    晚到的订阅者可以先收到已发生的事件。
    """

    def __init__(self, backlog: int = 200):
        self._subscribers: Dict[Optional[str], List[asyncio.Queue]] = defaultdict(list)
        self._backlog: Dict[str, Deque[TaskEvent]] = defaultdict(lambda: deque(maxlen=backlog))

    def subscribe(self, task_id: Optional[str] = None, replay: bool = True) -> asyncio.Queue:
        """task_id 为 None 时订阅所有任务"""
        queue: asyncio.Queue = asyncio.Queue()
        if replay and task_id is not None:
            for event in self._backlog.get(task_id, ()):
                queue.put_nowait(event)
        self._subscribers[task_id].append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue, task_id: Optional[str] = None) -> None:
        queues = self._subscribers.get(task_id, [])
        if queue in queues:
            queues.remove(queue)

    def discard(self, task_id: str) -> None:
        """丢弃任务的事件积压和订阅者"""
        self._backlog.pop(task_id, None)
        self._subscribers.pop(task_id, None)

    def history(self, task_id: str) -> List[TaskEvent]:
        return list(self._backlog.get(task_id, ()))

    async def publish(self, event: TaskEvent) -> None:
        self._backlog[event.task_id].append(event)
        for queue in self._subscribers.get(event.task_id, []) + self._subscribers.get(None, []):
            queue.put_nowait(event)

    async def emit(self, event_type: str, task_id: str, **payload: Any) -> None:
        await self.publish(TaskEvent(type=event_type, task_id=task_id, payload=payload))
