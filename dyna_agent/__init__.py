"""Dyna AI 浏览器自动化 Agent 包

包含各个模块：
- models: 数据模型
- config: 配置
- perception: 感知模块（Page Observer）
- planner: 规划模块（Decision Engine）
- controller: 执行模块（Action Executor）
- evaluator: 评估模块
- memory: 记忆模块
- core: 任务主循环（Task Controller）
- manager: 任务管理
- analysis: 单次 AI 分析（文本 / 截图 / 当前页面）
- rate_limiter: AI 调用限流
- events: 事件通道
- server: Web 接口
"""

from .config import AgentConfig
from .errors import (
    ActionError,
    AgentError,
    ConfigError,
    DecisionParseError,
    EvaluationParseError,
    ObservationError,
    QuotaExceededError,
    SessionError,
)
from .models import (
    ActionResult,
    Decision,
    Evaluation,
    Observation,
    StepRecord,
    Task,
    TaskResult,
    TaskState,
    TaskStatus,
    TaskType,
)
from .perception import Perception
from .planner import Planner
from .controller import Controller
from .evaluator import Evaluator
from .memory import Memory
from .rate_limiter import RateLimiter
from .events import EventChannel, TaskEvent
from .core import TaskController
from .manager import TaskHandle, TaskManager
from .analysis import Analyst

__all__ = [
    "AgentConfig",
    "AgentError",
    "ActionError",
    "ConfigError",
    "DecisionParseError",
    "EvaluationParseError",
    "ObservationError",
    "QuotaExceededError",
    "SessionError",
    "ActionResult",
    "Decision",
    "Evaluation",
    "Observation",
    "StepRecord",
    "Task",
    "TaskResult",
    "TaskState",
    "TaskStatus",
    "TaskType",
    "Perception",
    "Planner",
    "Controller",
    "Evaluator",
    "Memory",
    "RateLimiter",
    "EventChannel",
    "TaskEvent",
    "TaskController",
    "TaskHandle",
    "TaskManager",
    "Analyst",
]
