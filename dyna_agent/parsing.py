"""解析 LLM 返回文本中的 JSON 决策 / 评估"""

import json
import math
from typing import Any, Dict, Optional

from .errors import DecisionParseError, EvaluationParseError
from .models import Decision, Evaluation

DEFAULT_CONFIDENCE = 0.5


def extract_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    取响应中第一个 `{` 到最后一个 `}` 之间的内容并解析。
    找不到或解析失败返回 None。
    """
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _as_number(value: Any) -> Optional[float]:
    # bool 是 int 的子类，这里不当作数字
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def coerce_confidence(value: Any, default: float = DEFAULT_CONFIDENCE) -> float:
    number = _as_number(value)
    if number is None:
        return default
    return clamp(number, 0.0, 1.0)


def coerce_progress(value: Any, default: int = 0) -> int:
    number = _as_number(value)
    if number is None:
        return default
    return int(round(clamp(number, 0.0, 100.0)))


def fallback_decision() -> Decision:
    return Decision(
        action="wait",
        parameters={"duration": 2000},
        reasoning="Failed to parse AI decision, waiting before retry",
        confidence=0.1,
        task_complete=False,
    )


def fallback_evaluation(action_success: bool) -> Evaluation:
    return Evaluation(
        action_success=action_success,
        task_progress=10,
        task_complete=False,
        should_retry=False,
        confidence=0.1,
        reasoning="Failed to parse AI evaluation",
    )


def parse_decision(text: Optional[str]) -> Decision:
    """严格解析，失败抛出 DecisionParseError"""
    data = extract_json_object(text)
    if data is None:
        raise DecisionParseError("No JSON found in decision response")

    action = data.get("action")
    if not action or not isinstance(action, str):
        raise DecisionParseError("Decision missing action field")

    parameters = data.get("parameters")
    if not isinstance(parameters, dict):
        parameters = {}

    return Decision(
        action=action.strip().lower(),
        parameters=parameters,
        reasoning=str(data.get("reasoning") or ""),
        confidence=coerce_confidence(data.get("confidence")),
        task_complete=_as_bool(data.get("taskComplete", False)),
        expected_outcome=data.get("expectedOutcome"),
    )


def parse_evaluation(text: Optional[str], base: Evaluation) -> Evaluation:
    """
    解析 AI 评估并覆盖到启发式结果 base 之上，字段缺失时保留 base 的值。
    严格解析，失败抛出 EvaluationParseError。
    """
    data = extract_json_object(text)
    if data is None:
        raise EvaluationParseError("No JSON found in evaluation response")

    indicators = data.get("progressIndicators")
    if not isinstance(indicators, list):
        indicators = base.progress_indicators

    return Evaluation(
        action_success=_as_bool(data["actionSuccess"]) if "actionSuccess" in data else base.action_success,
        task_progress=coerce_progress(data.get("taskProgress"), default=base.task_progress),
        task_complete=_as_bool(data["taskComplete"]) if "taskComplete" in data else base.task_complete,
        should_retry=_as_bool(data["shouldRetry"]) if "shouldRetry" in data else base.should_retry,
        confidence=coerce_confidence(data.get("confidence")),
        next_suggestion=data.get("nextSuggestion") or base.next_suggestion,
        reasoning=str(data.get("reasoning") or base.reasoning),
        progress_indicators=[str(i) for i in indicators],
        timestamp=base.timestamp,
    )
