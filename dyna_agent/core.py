"""Task Controller：Observe → Decide → Act → Evaluate 主循环"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Optional

from .analysis import to_data_url
from .config import AgentConfig
from .controller import Controller
from .errors import AgentError
from .evaluator import Evaluator
from .events import ACTIVITY, ERROR, SCREENSHOT, STEP_PROGRESS, TASK_ANALYSIS, TASK_COMPLETE, EventChannel
from .llm import GenerativeModel
from .memory import Memory
from .models import (
    ActionResult,
    Observation,
    StepRecord,
    Task,
    TaskResult,
    TaskState,
    TaskStatus,
    now_ms,
)
from .perception import Perception
from .planner import Planner
from .session import BrowserSession
from .strategies import identify_task_type

logger = logging.getLogger(__name__)

# 最终评估进度超过该值视为成功
SUCCESS_PROGRESS = 80

SessionFactory = Callable[[], Awaitable[BrowserSession]]


class TaskController:
    """
    单个任务的自治执行器。

    每个任务独占一个浏览器会话；步骤严格串行，
    stop() 只在下一步开始前生效，不会打断进行中的调用。
    """

    def __init__(
        self,
        model: Optional[GenerativeModel],
        session_factory: Optional[SessionFactory],
        config: Optional[AgentConfig] = None,
        events: Optional[EventChannel] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.model = model
        self.session_factory = session_factory
        self.config = config or AgentConfig()
        self.events = events or EventChannel()
        self._sleep = sleep

        self.state = TaskState.IDLE
        self.task: Optional[Task] = None
        self.session: Optional[BrowserSession] = None
        self.memory = Memory()
        self.perception: Optional[Perception] = None
        self.planner: Optional[Planner] = None
        self.controller: Optional[Controller] = None
        self.evaluator: Optional[Evaluator] = None
        self._cancel_event: Optional[asyncio.Event] = None

    @property
    def latest_observation(self) -> Optional[Observation]:
        """最近一次页面观察（评估时的重新观察优先）"""
        if self.evaluator is not None and self.evaluator.last_observation is not None:
            return self.evaluator.last_observation
        if self.memory.history:
            return self.memory.history[-1].observation
        return None

    def stop(self) -> None:
        """请求当前运行在下一步开始前停止"""
        if self._cancel_event is not None:
            self._cancel_event.set()

    async def run(
        self,
        description: str,
        max_steps: Optional[int] = None,
        confidence_threshold: Optional[float] = None,
        task_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TaskResult:
        """
        执行任务的主循环。

        协作者层面的异常（会话断开、截图失败、AI 额度耗尽等）会把任务
        标记为 failed 并原样抛给调用方；AI 返回格式问题在各模块内部自愈。
        """
        self._ensure_initialized()
        max_steps = max_steps or self.config.max_steps
        if confidence_threshold is None:
            confidence_threshold = self.config.confidence_threshold
        if cancel_event is None:
            cancel_event = asyncio.Event()
        self._cancel_event = cancel_event

        task = Task(
            id=task_id or uuid.uuid4().hex,
            description=description,
            type=identify_task_type(description),
            options={"max_steps": max_steps, "confidence_threshold": confidence_threshold},
        )
        self.task = task
        self.memory.reset()
        self.state = TaskState.RUNNING
        logger.info(f"开始任务 [{task.id}] ({task.type.value}): {description}")
        await self.events.emit(ACTIVITY, task.id, level="info", message=f"Starting autonomous task: {description}")

        try:
            self.session = await self.session_factory()
            self._attach(self.session, max_steps)
            await self.events.emit(
                ACTIVITY,
                task.id,
                level="success",
                message="Browser session ready",
                session_id=self.session.info.id,
                replay_url=self.session.info.replay_url,
            )

            cancelled = False
            completed = False
            while self.memory.step_counter < max_steps:
                # 至少执行一步
                if self.memory.step_counter > 0 and cancel_event.is_set():
                    logger.info(f"⚠ 任务 [{task.id}] 收到停止请求，在第 {self.memory.step_counter} 步后停止")
                    cancelled = True
                    break

                step = self.memory.next_step()
                logger.info(f"{'=' * 20} Step {step}/{max_steps} {'=' * 20}")

                # 1. 观察
                observation = await self.perception.observe()

                # 2. 决策
                decision = await self.planner.decide(task, observation, self.memory.history, step=step)
                low_confidence = decision.confidence < confidence_threshold
                if low_confidence:
                    logger.warning(
                        f"⚠ 决策置信度 {decision.confidence:.2f} 低于阈值 {confidence_threshold:.2f}"
                    )

                if decision.task_complete:
                    record = StepRecord(step, observation, decision, None, None)
                    self.memory.record(record)
                    await self._publish_step(record, low_confidence)
                    logger.info("✓ 决策模块判定任务已完成")
                    completed = True
                    break

                # 3. 执行
                action_result = await self.controller.act(decision)

                # 4. 评估
                evaluation = await self.evaluator.evaluate(
                    task, self.memory.history, action_result, decision=decision
                )
                self.memory.record_evaluation(evaluation)

                record = StepRecord(step, observation, decision, action_result, evaluation)
                self.memory.record(record)
                await self._publish_step(record, low_confidence)

                if evaluation.should_retry:
                    logger.info(f"⚠ Step {step}: 根据评估结果立即重试")
                    continue

                if evaluation.task_complete:
                    logger.info("✓ 评估模块判定任务已完成")
                    completed = True
                    break

                await self._sleep(self.config.step_interval_ms / 1000)

            result = await self._finalize(task, completed, cancelled)

        except Exception as e:
            task.status = TaskStatus.FAILED
            task.error = str(e)
            self.state = TaskState.FAILED
            code = e.code if isinstance(e, AgentError) else "internal_error"
            logger.error(f"❌ 任务 [{task.id}] 失败: {e}")
            await self.events.emit(ERROR, task.id, code=code, message=str(e))
            raise

        finally:
            await self._close_session()

        return result

    def _ensure_initialized(self) -> None:
        if self.model is None or self.session_factory is None:
            raise AgentError("TaskController not initialized: model and session provider are required")
        if self.state == TaskState.RUNNING:
            raise AgentError("TaskController is already running a task")

    def _attach(self, session: BrowserSession, max_steps: int) -> None:
        self.perception = Perception(session.page, self.config.screenshot_quality)
        self.planner = Planner(self.model, max_steps=max_steps)
        self.controller = Controller(session.page, sleep=self._sleep)
        self.evaluator = Evaluator(self.perception, self.model)

    async def _close_session(self) -> None:
        session, self.session = self.session, None
        if session is None:
            return
        try:
            await session.close()
        except Exception as e:
            logger.warning(f"⚠ 关闭会话失败: {e}")

    async def _publish_step(self, record: StepRecord, low_confidence: bool) -> None:
        payload = record.to_dict()
        payload["low_confidence"] = low_confidence
        await self.events.emit(STEP_PROGRESS, self.task.id, **payload)

        # 评估时的重新观察反映的是动作之后的页面
        latest = self.latest_observation if record.evaluation is not None else record.observation
        if latest is not None and latest.screenshot:
            await self.events.emit(
                SCREENSHOT, self.task.id, step=record.step, url=latest.url, image=to_data_url(latest.screenshot)
            )

        progress = record.evaluation.task_progress if record.evaluation else 0
        await self.events.emit(
            ACTIVITY,
            self.task.id,
            level="info",
            message=f"Step {record.step}: {record.decision.action} - {progress}% complete",
        )

    async def _finalize(self, task: Task, completed: bool, cancelled: bool) -> TaskResult:
        """最后再观察 + 评估一次，决定 Succeeded 还是 PartialSuccess"""
        final_evaluation = await self.evaluator.evaluate(
            task, self.memory.history, ActionResult(True, "Task finalization")
        )
        self.memory.record_evaluation(final_evaluation)
        final_observation = self.evaluator.last_observation

        success = (
            completed
            or final_evaluation.task_complete
            or final_evaluation.task_progress > SUCCESS_PROGRESS
        )
        self.state = TaskState.SUCCEEDED if success else TaskState.PARTIAL_SUCCESS
        task.status = TaskStatus.SUCCEEDED if success else TaskStatus.FAILED

        result = TaskResult(
            task=task,
            state=self.state,
            success=success,
            confidence=final_evaluation.confidence,
            steps_completed=self.memory.step_counter,
            duration_ms=now_ms() - task.start_time,
            final_url=final_observation.url if final_observation else "",
            final_title=final_observation.title if final_observation else "",
            steps=list(self.memory.history),
            evaluation_history=list(self.memory.evaluation_history),
            cancelled=cancelled,
        )

        logger.info(
            f"{'✓' if success else '⚠'} 任务结束: {'SUCCESS' if success else 'PARTIAL'} "
            f"({result.duration_ms}ms, {result.steps_completed} 步)"
        )
        await self.events.emit(
            TASK_COMPLETE,
            task.id,
            success=result.success,
            state=result.state.value,
            duration_ms=result.duration_ms,
            steps_completed=result.steps_completed,
            final_url=result.final_url,
            confidence=result.confidence,
            cancelled=cancelled,
        )
        await self.events.emit(TASK_ANALYSIS, task.id, steps=[s.to_dict() for s in result.steps])
        return result
