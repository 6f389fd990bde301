"""规划模块：调用 LLM 决策下一步"""

import logging
from typing import List, Optional

from .errors import DecisionParseError
from .llm import GenerativeModel, InlineImage
from .memory import format_steps
from .models import Decision, Observation, StepRecord, Task
from .parsing import fallback_decision, parse_decision
from .strategies import get_strategy

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 3
PAGE_TEXT_LIMIT = 1000

SYSTEM_PROMPT = (
    "You are Dyna, an autonomous web automation agent. "
    "You look at a screenshot and a summary of the current page and choose the single "
    "best next browser action. Always answer with one JSON object and nothing else."
)

RESPONSE_FORMAT = """Respond in this JSON format:
{
    "action": "navigate|click|type|search|scroll|wait|extract_data",
    "parameters": {
        "selector": "CSS selector of the target element",
        "text": "text to type (type/search)",
        "url": "URL to navigate to (navigate)",
        "direction": "up|down (scroll)",
        "amount": 500,
        "duration": 2000,
        "data": "prices|products|links|general (extract_data)"
    },
    "reasoning": "Why this action moves the task forward",
    "confidence": 0.85,
    "taskComplete": false,
    "expectedOutcome": "What should happen after this action"
}
Set "taskComplete" to true only when the goal is already visibly achieved."""


def build_decision_prompt(
    task: Task,
    observation: Observation,
    history: List[StepRecord],
    step: int,
    max_steps: int,
) -> str:
    strategy = get_strategy(task.type)
    elements = "\n".join(
        f'- {el.kind}: "{el.text}" ({el.selector_hint})' for el in observation.interactive_elements
    ) or "(none)"
    forms = "\n".join(
        f"- Form {form.index}: " + ", ".join(f.name or f.placeholder for f in form.fields)
        for form in observation.forms
    ) or "(none)"

    return (
        f'Your goal is to complete the task: "{task.description}"\n\n'
        f"CURRENT SITUATION:\n"
        f"- URL: {observation.url}\n"
        f"- Page Title: {observation.title}\n"
        f"- Step: {step}/{max_steps}\n\n"
        f"TASK TYPE: {task.type.value}\n"
        f"STRATEGY: {' → '.join(strategy.steps) if strategy.steps else 'adaptive'}\n\n"
        f"AVAILABLE INTERACTIVE ELEMENTS:\n{elements}\n\n"
        f"FORMS ON PAGE:\n{forms}\n\n"
        f"PAGE CONTEXT:\n{observation.page_text[:PAGE_TEXT_LIMIT]}...\n\n"
        f"PREVIOUS STEPS:\n{format_steps(history[-HISTORY_WINDOW:])}\n\n"
        f"{RESPONSE_FORMAT}"
    )


class Planner:
    """Decision Engine：观察 → 结构化决策"""

    def __init__(self, model: GenerativeModel, max_steps: int = 20):
        self.model = model
        self.max_steps = max_steps

    async def decide(
        self,
        task: Task,
        observation: Observation,
        history: List[StepRecord],
        step: Optional[int] = None,
    ) -> Decision:
        """
        根据任务 + 观察 + 最近历史，输出决策。
        模型返回无法解析时不向上抛出，而是退化为低置信度的 wait。
        """
        step = step if step is not None else len(history) + 1
        prompt = build_decision_prompt(task, observation, history, step, self.max_steps)

        output_str = await self.model.generate(
            [prompt, InlineImage(observation.screenshot)],
            system=SYSTEM_PROMPT,
        )
        try:
            decision = parse_decision(output_str)
        except DecisionParseError as e:
            logger.warning(f"⚠ 决策解析失败: {e}，原始输出: {output_str[:200]!r}")
            return fallback_decision()

        logger.info(f"决策: {decision.action} (confidence={decision.confidence:.2f}) {decision.reasoning}")
        return decision
