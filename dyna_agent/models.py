"""数据模型定义"""

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

# Decision Engine 可以输出的全部动作
ACTIONS = ("navigate", "click", "type", "search", "scroll", "wait", "extract_data")


class TaskType(str, Enum):
    SEARCH_FLIGHTS = "search_flights"
    PLAY_MUSIC = "play_music"
    APPLY_JOB = "apply_job"
    GENERAL_TASK = "general_task"


class TaskStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TaskState(str, Enum):
    """Task Controller 的状态机"""
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Task:
    """用户提交的任务"""
    id: str
    description: str
    type: TaskType
    status: TaskStatus = TaskStatus.IN_PROGRESS
    start_time: int = field(default_factory=now_ms)
    options: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "type": self.type.value,
            "status": self.status.value,
            "start_time": self.start_time,
            "options": dict(self.options),
            "error": self.error,
        }


@dataclass(frozen=True)
class ElementDescriptor:
    """单个可交互元素的描述"""
    kind: str  # button|link|input
    text: str
    selector_hint: str
    visible: bool = True
    attributes: Dict[str, Any] = field(default_factory=dict)  # href / input_type / name / placeholder / value


@dataclass(frozen=True)
class FormField:
    type: str
    name: str
    id: str
    placeholder: str
    required: bool
    value: str


@dataclass(frozen=True)
class FormDescriptor:
    index: int
    id: str
    action: str
    method: str
    fields: List[FormField] = field(default_factory=list)


@dataclass(frozen=True)
class Observation:
    """某一时刻的页面快照，采集后不再修改"""
    url: str
    title: str
    timestamp: int
    screenshot: bytes
    interactive_elements: List[ElementDescriptor] = field(default_factory=list)
    forms: List[FormDescriptor] = field(default_factory=list)
    page_text: str = ""
    page_info: Dict[str, Any] = field(default_factory=dict)  # scrollY / viewport 尺寸

    def summary(self) -> Dict[str, Any]:
        """不含截图的精简视图，用于事件推送"""
        return {
            "url": self.url,
            "title": self.title,
            "timestamp": self.timestamp,
            "elements": len(self.interactive_elements),
            "forms": len(self.forms),
        }


@dataclass
class Decision:
    """Decision Engine 输出的结构化决策"""
    action: str  # navigate|click|type|search|scroll|wait|extract_data
    parameters: Dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""
    confidence: float = 0.5
    task_complete: bool = False
    expected_outcome: Optional[str] = None


@dataclass
class ActionResult:
    success: bool
    message: str
    data: Optional[Any] = None


@dataclass
class Evaluation:
    """动作执行后的进度评估"""
    action_success: bool
    task_progress: int = 0
    task_complete: bool = False
    should_retry: bool = False
    confidence: float = 0.5
    next_suggestion: Optional[str] = None
    reasoning: str = ""
    progress_indicators: List[str] = field(default_factory=list)
    timestamp: int = field(default_factory=now_ms)


@dataclass(frozen=True)
class StepRecord:
    """单步历史记录，只追加不修改"""
    step: int
    observation: Observation
    decision: Decision
    action_result: Optional[ActionResult]
    evaluation: Optional[Evaluation]
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "url": self.observation.url,
            "action": self.decision.action,
            "parameters": dict(self.decision.parameters),
            "reasoning": self.decision.reasoning,
            "decision_confidence": self.decision.confidence,
            "success": self.action_result.success if self.action_result else None,
            "message": self.action_result.message if self.action_result else None,
            "progress": self.evaluation.task_progress if self.evaluation else None,
            "confidence": self.evaluation.confidence if self.evaluation else None,
            "timestamp": self.timestamp,
        }


@dataclass
class TaskResult:
    """任务最终结果（部分成功时同样返回完整历史）"""
    task: Task
    state: TaskState
    success: bool
    confidence: float
    steps_completed: int
    duration_ms: int
    final_url: str
    final_title: str
    steps: List[StepRecord] = field(default_factory=list)
    evaluation_history: List[Evaluation] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task": self.task.to_dict(),
            "state": self.state.value,
            "success": self.success,
            "confidence": self.confidence,
            "steps_completed": self.steps_completed,
            "duration_ms": self.duration_ms,
            "final_url": self.final_url,
            "final_title": self.final_title,
            "cancelled": self.cancelled,
            "steps": [s.to_dict() for s in self.steps],
            "evaluation_history": [asdict(e) for e in self.evaluation_history],
        }
