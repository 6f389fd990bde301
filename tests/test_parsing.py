"""决策 / 评估文本解析"""

import pytest

from dyna_agent.errors import DecisionParseError, EvaluationParseError
from dyna_agent.models import Evaluation
from dyna_agent.parsing import (
    coerce_confidence,
    coerce_progress,
    extract_json_object,
    fallback_decision,
    fallback_evaluation,
    parse_decision,
    parse_evaluation,
)


class TestExtractJsonObject:
    def test_surrounding_prose_is_ignored(self):
        text = 'Sure! Here is my answer:\n```json\n{"action": "click", "parameters": {"selector": "#a"}}\n```'
        assert extract_json_object(text) == {"action": "click", "parameters": {"selector": "#a"}}

    @pytest.mark.parametrize("text", [None, "", "no json here", "{not valid json}", "} backwards {"])
    def test_returns_none_when_nothing_parses(self, text):
        assert extract_json_object(text) is None

    def test_non_object_json_is_rejected(self):
        assert extract_json_object("[1, 2, 3]") is None


class TestCoercion:
    @pytest.mark.parametrize("value, expected", [
        (0.85, 0.85),
        (1.7, 1.0),
        (-0.2, 0.0),
        ("0.4", 0.4),
        (None, 0.5),
        ("high", 0.5),
        (True, 0.5),
        (float("nan"), 0.5),
    ])
    def test_confidence(self, value, expected):
        assert coerce_confidence(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value, expected", [
        (75, 75),
        (150, 100),
        (-5, 0),
        (33.6, 34),
        ("60", 60),
        (None, 0),
    ])
    def test_progress(self, value, expected):
        assert coerce_progress(value) == expected


class TestParseDecision:
    def test_full_decision(self):
        decision = parse_decision(
            '{"action": "Search", "parameters": {"text": "flights NYC to London"}, '
            '"reasoning": "search box visible", "confidence": 0.92, '
            '"taskComplete": false, "expectedOutcome": "results page"}'
        )
        assert decision.action == "search"
        assert decision.parameters == {"text": "flights NYC to London"}
        assert decision.reasoning == "search box visible"
        assert decision.confidence == pytest.approx(0.92)
        assert decision.task_complete is False
        assert decision.expected_outcome == "results page"

    def test_missing_fields_get_defaults(self):
        decision = parse_decision('{"action": "scroll"}')
        assert decision.parameters == {}
        assert decision.confidence == 0.5
        assert decision.task_complete is False
        assert decision.reasoning == ""

    def test_string_task_complete(self):
        assert parse_decision('{"action": "wait", "taskComplete": "true"}').task_complete is True

    def test_out_of_range_confidence_is_clamped(self):
        assert parse_decision('{"action": "click", "confidence": 3}').confidence == 1.0

    @pytest.mark.parametrize("text", ["garbage", '{"parameters": {}}', '{"action": 42}'])
    def test_invalid_decision_raises(self, text):
        with pytest.raises(DecisionParseError):
            parse_decision(text)

    def test_fallback_is_low_confidence_wait(self):
        decision = fallback_decision()
        assert decision.action == "wait"
        assert decision.parameters == {"duration": 2000}
        assert decision.confidence == pytest.approx(0.1)
        assert decision.task_complete is False


class TestParseEvaluation:
    @pytest.fixture
    def base(self) -> Evaluation:
        return Evaluation(action_success=True, task_progress=40, progress_indicators=["on youtube"])

    def test_ai_fields_override_heuristics(self, base):
        evaluation = parse_evaluation(
            '{"taskProgress": 90, "taskComplete": true, "shouldRetry": false, '
            '"confidence": 0.95, "nextSuggestion": "done", "reasoning": "song playing", '
            '"progressIndicators": ["media player visible"]}',
            base,
        )
        assert evaluation.action_success is True
        assert evaluation.task_progress == 90
        assert evaluation.task_complete is True
        assert evaluation.confidence == pytest.approx(0.95)
        assert evaluation.next_suggestion == "done"
        assert evaluation.progress_indicators == ["media player visible"]

    def test_ai_action_success_overrides_heuristic(self, base):
        assert parse_evaluation('{"actionSuccess": false}', base).action_success is False
        assert parse_evaluation('{"actionSuccess": "true"}', Evaluation(action_success=False)).action_success is True

    def test_missing_fields_keep_base_values(self, base):
        evaluation = parse_evaluation("{}", base)
        assert evaluation.task_progress == 40
        assert evaluation.task_complete is False
        assert evaluation.should_retry is False
        assert evaluation.confidence == 0.5
        assert evaluation.progress_indicators == ["on youtube"]

    def test_progress_is_clamped(self, base):
        assert parse_evaluation('{"taskProgress": 250}', base).task_progress == 100

    def test_no_json_raises(self, base):
        with pytest.raises(EvaluationParseError):
            parse_evaluation("I think it went well", base)

    def test_fallback_evaluation(self):
        evaluation = fallback_evaluation(False)
        assert evaluation.action_success is False
        assert evaluation.task_progress == 10
        assert evaluation.task_complete is False
        assert evaluation.should_retry is False
        assert evaluation.confidence == pytest.approx(0.1)
