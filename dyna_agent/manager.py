"""任务管理：对外暴露 start_task / stop_task"""

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from .analysis import Analyst
from .config import AgentConfig
from .core import SessionFactory, TaskController
from .errors import AgentError, QuotaExceededError
from .events import EventChannel
from .llm import GenerativeModel
from .models import Observation, TaskResult, TaskState, now_ms
from .rate_limiter import RateLimiter
from .session import BrowserbaseProvider

logger = logging.getLogger(__name__)


@dataclass
class TaskHandle:
    task_id: str
    description: str
    options: Dict[str, Any]
    controller: TaskController
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    runner: Optional[asyncio.Task] = None
    result: Optional[TaskResult] = None
    error: Optional[BaseException] = None
    created_at: int = field(default_factory=now_ms)
    finished_at: Optional[int] = None

    @property
    def state(self) -> TaskState:
        return self.controller.state

    @property
    def done(self) -> bool:
        return self.runner is not None and self.runner.done()

    def to_dict(self) -> Dict[str, Any]:
        session = self.controller.session
        data: Dict[str, Any] = {
            "task_id": self.task_id,
            "description": self.description,
            "options": dict(self.options),
            "state": self.state.value,
            "done": self.done,
            "stop_requested": self.cancel_event.is_set(),
            "steps_completed": self.controller.memory.step_counter,
            "created_at": self.created_at,
            "finished_at": self.finished_at,
            "replay_url": session.info.replay_url if session else None,
            "error": None,
            "result": None,
        }
        if self.error is not None:
            data["error"] = {
                "code": getattr(self.error, "code", "internal_error"),
                "message": str(self.error),
            }
        if self.result is not None:
            data["result"] = self.result.to_dict()
        return data


class TaskManager:
    """
    每个任务拿到独立的 TaskController 和浏览器会话；
    生成式模型（及其 RateLimiter）在所有任务间共享。
    """

    def __init__(
        self,
        model: GenerativeModel,
        session_factory: SessionFactory,
        config: Optional[AgentConfig] = None,
        events: Optional[EventChannel] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.model = model
        self.session_factory = session_factory
        self.config = config or AgentConfig()
        self.events = events or EventChannel()
        self._sleep = sleep
        self._tasks: Dict[str, TaskHandle] = {}
        self._finished: Deque[str] = deque()
        self.analyst = Analyst(model)

    @classmethod
    def from_config(cls, config: AgentConfig, events: Optional[EventChannel] = None) -> "TaskManager":
        config.validate()
        rate_limiter = RateLimiter(
            min_interval=config.ai_min_interval_ms / 1000,
            daily_budget=config.ai_daily_budget,
            backoff=config.ai_rate_limit_backoff_ms / 1000,
        )
        model = GenerativeModel.from_config(config, rate_limiter)
        provider = BrowserbaseProvider.from_config(config)
        return cls(model, provider.open, config=config, events=events)

    def _resolve_options(self, options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        options = options or {}
        max_steps = options.get("max_steps")
        if max_steps is None:
            max_steps = self.config.max_steps
        threshold = options.get("confidence_threshold")
        if threshold is None:
            threshold = self.config.confidence_threshold
        if not isinstance(max_steps, int) or max_steps < 1:
            raise AgentError(f"max_steps must be a positive integer, got {max_steps!r}", code="invalid_options")
        if not 0.0 <= float(threshold) <= 1.0:
            raise AgentError(f"confidence_threshold must be in [0, 1], got {threshold!r}", code="invalid_options")
        return {"max_steps": max_steps, "confidence_threshold": float(threshold)}

    def _check_quota(self) -> None:
        """额度已耗尽时同步拒绝，而不是让任务在第一步才失败"""
        limiter = getattr(self.model, "rate_limiter", None)
        if limiter is not None and limiter.remaining <= 0:
            raise QuotaExceededError(
                f"AI daily call budget of {limiter.daily_budget} exhausted", reset_at=limiter.reset_at
            )

    async def start_task(self, description: str, options: Optional[Dict[str, Any]] = None) -> TaskHandle:
        if not description or not description.strip():
            raise AgentError("Task description is empty", code="invalid_options")
        resolved = self._resolve_options(options)
        self._check_quota()

        task_id = uuid.uuid4().hex
        controller = TaskController(
            self.model, self.session_factory, config=self.config, events=self.events, sleep=self._sleep
        )
        handle = TaskHandle(task_id=task_id, description=description, options=resolved, controller=controller)
        self._tasks[task_id] = handle
        handle.runner = asyncio.create_task(self._run(handle), name=f"task-{task_id}")
        logger.info(f"✓ 已提交任务 [{task_id}]: {description}")
        return handle

    async def _run(self, handle: TaskHandle) -> None:
        try:
            handle.result = await handle.controller.run(
                handle.description,
                max_steps=handle.options["max_steps"],
                confidence_threshold=handle.options["confidence_threshold"],
                task_id=handle.task_id,
                cancel_event=handle.cancel_event,
            )
        except Exception as e:
            # 已由 TaskController 记录并通过事件通道发布
            handle.error = e
        finally:
            handle.finished_at = now_ms()
            self._retire(handle.task_id)

    def _retire(self, task_id: str) -> None:
        """只保留最近结束的 max_finished_tasks 个任务，淘汰时一并丢弃其事件积压"""
        self._finished.append(task_id)
        while len(self._finished) > self.config.max_finished_tasks:
            evicted = self._finished.popleft()
            self._tasks.pop(evicted, None)
            self.events.discard(evicted)
            logger.debug(f"已淘汰结束的任务 [{evicted}]")

    def get(self, task_id: str) -> TaskHandle:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise AgentError(f"Unknown task: {task_id}", code="task_not_found")

    def latest_observation(self, task_id: str) -> Observation:
        """任务最近一次的页面观察；任务还没观察过页面时抛出 AgentError"""
        observation = self.get(task_id).controller.latest_observation
        if observation is None:
            raise AgentError(f"Task {task_id} has not observed a page yet", code="observation_unavailable")
        return observation

    def list(self) -> List[TaskHandle]:
        return list(self._tasks.values())

    def stop_task(self, task_id: str) -> TaskHandle:
        """在下一步开始前协作式停止"""
        handle = self.get(task_id)
        handle.cancel_event.set()
        logger.info(f"已请求停止任务 [{task_id}]")
        return handle

    async def wait(self, task_id: str) -> TaskHandle:
        handle = self.get(task_id)
        if handle.runner is not None:
            await asyncio.shield(handle.runner)
        return handle

    async def shutdown(self) -> None:
        runners = [h.runner for h in self._tasks.values() if h.runner and not h.runner.done()]
        for runner in runners:
            runner.cancel()
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)
