"""任务类型识别与各类型的策略 / 进度规则"""

from dataclasses import dataclass, field
from typing import Dict, List

from .models import Observation, TaskType


@dataclass(frozen=True)
class TaskStrategy:
    websites: List[str] = field(default_factory=list)
    steps: List[str] = field(default_factory=list)
    evaluation_criteria: List[str] = field(default_factory=list)


STRATEGIES: Dict[TaskType, TaskStrategy] = {
    TaskType.SEARCH_FLIGHTS: TaskStrategy(
        websites=["expedia.com", "kayak.com", "booking.com", "google.com/travel"],
        steps=["navigate", "search", "filter", "compare", "select"],
        evaluation_criteria=["price", "duration", "stops"],
    ),
    TaskType.PLAY_MUSIC: TaskStrategy(
        websites=["youtube.com", "spotify.com"],
        steps=["navigate", "search", "select", "play"],
        evaluation_criteria=["playing", "relevant_content"],
    ),
    TaskType.APPLY_JOB: TaskStrategy(
        websites=["careers pages", "linkedin.com", "indeed.com"],
        steps=["navigate", "search", "apply", "fill_form", "submit"],
        evaluation_criteria=["application_submitted", "form_complete"],
    ),
}

# 没有策略的任务类型按 5 个阶段估算进度
DEFAULT_STAGE_COUNT = 5


def identify_task_type(description: str) -> TaskType:
    """根据任务描述中的关键词判断任务类型"""
    text = description.lower()

    if "flight" in text or ("book" in text and "travel" in text):
        return TaskType.SEARCH_FLIGHTS
    if "music" in text or "play" in text or "song" in text:
        return TaskType.PLAY_MUSIC
    if "job" in text or "apply" in text or "career" in text:
        return TaskType.APPLY_JOB
    return TaskType.GENERAL_TASK


def get_strategy(task_type: TaskType) -> TaskStrategy:
    return STRATEGIES.get(task_type, TaskStrategy())


def progress_indicators(task_type: TaskType, observation: Observation) -> List[str]:
    """
    基于 URL / 页面文本的关键词规则，给出廉价的本地进度信号。
    """
    url = observation.url.lower()
    text = observation.page_text.lower()
    indicators: List[str] = []

    if task_type == TaskType.SEARCH_FLIGHTS:
        if "expedia" in url or "kayak" in url or "booking" in url:
            indicators.append("on flight booking site")
        if "from" in text and "to" in text:
            indicators.append("flight search form visible")
        if "results" in text or "flights found" in text:
            indicators.append("search results displayed")
    elif task_type == TaskType.PLAY_MUSIC:
        if "youtube" in url:
            indicators.append("on youtube")
        if "playing" in text or "pause" in text:
            indicators.append("media player visible")
    elif task_type == TaskType.APPLY_JOB:
        if "application" in text or "apply" in text:
            indicators.append("job application page")
        if "submit" in text or "send" in text:
            indicators.append("application form ready")

    return indicators


def heuristic_progress(task_type: TaskType, indicators: List[str]) -> int:
    stages = len(get_strategy(task_type).steps) or DEFAULT_STAGE_COUNT
    return min(100, int(len(indicators) / stages * 100))
