"""记忆模块：保存单个任务的步骤历史和评估历史"""

from typing import List

from .models import Evaluation, StepRecord


class Memory:
    """记忆模块：StepRecord 只追加，步号从 1 开始严格递增"""

    def __init__(self):
        self.history: List[StepRecord] = []
        self.evaluation_history: List[Evaluation] = []
        self.step_counter = 0

    def reset(self):
        self.history = []
        self.evaluation_history = []
        self.step_counter = 0

    def next_step(self) -> int:
        self.step_counter += 1
        return self.step_counter

    def record(self, record: StepRecord):
        """记录单步"""
        last = self.history[-1].step if self.history else 0
        if record.step <= last:
            raise ValueError(f"步号必须递增：上一步 {last}，本步 {record.step}")
        self.history.append(record)

    def record_evaluation(self, evaluation: Evaluation):
        self.evaluation_history.append(evaluation)


def format_steps(steps: List[StepRecord]) -> str:
    if not steps:
        return "(none)"

    lines = []
    for rec in steps:
        progress = rec.evaluation.task_progress if rec.evaluation else 0
        outcome = ""
        if rec.action_result is not None:
            outcome = " [OK]" if rec.action_result.success else " [FAILED]"
        lines.append(f"Step {rec.step}: {rec.decision.action}{outcome} - {progress}% complete")
    return "\n".join(lines)
