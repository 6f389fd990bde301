"""AI 调用限流：全局 FIFO 队列 + 最小调用间隔 + 每日额度"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from .errors import QuotaExceededError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DAY_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class Permit:
    """一次被放行的调用"""
    sequence: int  # 当前额度窗口内的第几次调用
    granted_at: float


class RateLimiter:
    """
    所有任务共享的 AI 调用闸门。

    - 调用按到达顺序排队（asyncio.Lock 的等待者按 FIFO 唤醒）
    - 相邻两次放行之间至少间隔 min_interval 秒
    - 每个额度窗口最多放行 daily_budget 次，耗尽后立即抛出 QuotaExceededError
    """

    def __init__(
        self,
        min_interval: float = 1.0,
        daily_budget: int = 1500,
        backoff: float = 10.0,
        window: float = DAY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval = min_interval
        self.daily_budget = daily_budget
        self.backoff = backoff
        self.window = window
        self._clock = clock
        self._wall_clock = wall_clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_call: float = float("-inf")
        self.call_count = 0
        self.reset_at = wall_clock() + window

    @property
    def remaining(self) -> int:
        self._roll_window()
        return max(0, self.daily_budget - self.call_count)

    def _roll_window(self) -> None:
        now = self._wall_clock()
        if now >= self.reset_at:
            logger.info(f"AI 调用额度已重置（上个窗口共 {self.call_count} 次）")
            self.call_count = 0
            self.reset_at = now + self.window

    def _check_budget(self) -> None:
        if self.call_count >= self.daily_budget:
            raise QuotaExceededError(
                f"AI daily call budget of {self.daily_budget} exhausted",
                reset_at=self.reset_at,
            )

    async def acquire_slot(self) -> Permit:
        # 额度耗尽时不排队，直接失败
        self._roll_window()
        self._check_budget()

        async with self._lock:
            self._roll_window()
            self._check_budget()

            wait = self._last_call + self.min_interval - self._clock()
            if wait > 0:
                await self._sleep(wait)

            self._last_call = self._clock()
            self.call_count += 1
            return Permit(sequence=self.call_count, granted_at=self._last_call)

    async def run(
        self,
        call: Callable[[], Awaitable[T]],
        retry_on: Tuple[Type[BaseException], ...] = (),
    ) -> T:
        """
        取得许可后执行 call。遇到 retry_on 中的限流异常时退避一次、
        重新排队再试一次，仍失败则向上抛出。
        """
        await self.acquire_slot()
        try:
            return await call()
        except retry_on as e:
            logger.warning(f"⚠ AI 服务限流，{self.backoff}s 后重试一次: {e}")
            await self._sleep(self.backoff)

        await self.acquire_slot()
        return await call()
