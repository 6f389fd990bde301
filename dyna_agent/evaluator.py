"""评估模块：动作执行后重新观察页面，评估任务进度"""

import json
import logging
from typing import List, Optional

from .errors import EvaluationParseError
from .llm import GenerativeModel, InlineImage
from .models import ActionResult, Decision, Evaluation, Observation, StepRecord, Task
from .parsing import fallback_evaluation, parse_evaluation
from .perception import Perception
from .strategies import get_strategy, heuristic_progress, progress_indicators

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You evaluate the progress of an autonomous web automation agent. "
    "Always answer with one JSON object and nothing else."
)

RESPONSE_FORMAT = """Respond in this JSON format:
{
    "taskProgress": 75,
    "taskComplete": false,
    "shouldRetry": false,
    "confidence": 0.9,
    "nextSuggestion": "click on search button",
    "reasoning": "The form has been filled correctly, now need to submit",
    "progressIndicators": ["form filled", "ready to submit"]
}"""


def build_evaluation_prompt(
    task: Task,
    observation: Observation,
    action_result: ActionResult,
    decision: Optional[Decision],
    indicators: List[str],
) -> str:
    criteria = ", ".join(get_strategy(task.type).evaluation_criteria) or "task goal reached"
    action = decision.action if decision else "none"
    parameters = json.dumps(decision.parameters if decision else {}, default=str)

    return (
        f'You are evaluating the outcome of an action for the task: "{task.description}"\n\n'
        f"LAST ACTION TAKEN:\n"
        f"Action: {action}\n"
        f"Parameters: {parameters}\n"
        f"Success: {str(action_result.success).lower()}\n"
        f"Message: {action_result.message}\n\n"
        f"CURRENT PAGE STATE:\n"
        f"- URL: {observation.url}\n"
        f"- Title: {observation.title}\n\n"
        f"TASK PROGRESS INDICATORS:\n{', '.join(indicators) or '(none)'}\n\n"
        f"EVALUATION CRITERIA for {task.type.value}:\n{criteria}\n\n"
        f"{RESPONSE_FORMAT}"
    )


class Evaluator:
    """Evaluator：启发式指标 + AI 评估合并"""

    def __init__(self, perception: Perception, model: GenerativeModel):
        self.perception = perception
        self.model = model
        self.last_observation: Optional[Observation] = None

    async def evaluate(
        self,
        task: Task,
        history: List[StepRecord],
        action_result: ActionResult,
        decision: Optional[Decision] = None,
    ) -> Evaluation:
        # 动作之后页面已变化，需要重新观察；ObservationError 向上抛出
        observation = await self.perception.observe()
        self.last_observation = observation

        if decision is None and history:
            decision = history[-1].decision

        indicators = progress_indicators(task.type, observation)
        base = Evaluation(
            action_success=action_result.success,
            task_progress=heuristic_progress(task.type, indicators),
            progress_indicators=indicators,
        )

        prompt = build_evaluation_prompt(task, observation, action_result, decision, indicators)
        output_str = await self.model.generate(
            [prompt, InlineImage(observation.screenshot)],
            system=SYSTEM_PROMPT,
        )
        try:
            evaluation = parse_evaluation(output_str, base)
        except EvaluationParseError as e:
            logger.warning(f"⚠ 评估解析失败: {e}，原始输出: {output_str[:200]!r}")
            evaluation = fallback_evaluation(action_result.success)

        logger.info(
            f"评估: 进度 {evaluation.task_progress}%，完成={evaluation.task_complete}，"
            f"重试={evaluation.should_retry}"
        )
        return evaluation
