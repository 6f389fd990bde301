"""Task Controller 主循环"""

import asyncio
from types import SimpleNamespace

import pytest

from dyna_agent.config import AgentConfig
from dyna_agent.core import TaskController
from dyna_agent.errors import AgentError, ObservationError, QuotaExceededError
from dyna_agent.events import ERROR, SCREENSHOT, STEP_PROGRESS, TASK_ANALYSIS, TASK_COMPLETE
from dyna_agent.llm import GenerativeModel
from dyna_agent.models import TaskState, TaskStatus, TaskType
from dyna_agent.rate_limiter import RateLimiter

from tests.fakes import FakeModel, decision_json, evaluation_json
from tests.test_llm import FakeCompletions


@pytest.fixture
def make_controller(sessions, events, sleep):
    def _make(model, **config_kwargs) -> TaskController:
        config = AgentConfig(step_interval_ms=3000, **config_kwargs)
        return TaskController(model, sessions, config=config, events=events, sleep=sleep)
    return _make


def event_types(events, task_id):
    return [e.type for e in events.history(task_id)]


class TestBudgetExhausted:
    """三步预算内未完成：部分成功，历史完整"""

    @pytest.fixture
    def model(self) -> FakeModel:
        return FakeModel(
            decisions=[decision_json("click", {"selector": "#a"})],
            evaluations=[evaluation_json(20), evaluation_json(30), evaluation_json(40), evaluation_json(45)],
        )

    @pytest.mark.asyncio
    async def test_partial_success(self, make_controller, model, sessions, events, sleep):
        agent = make_controller(model)

        result = await agent.run("Click the first button", max_steps=3)

        assert result.state == TaskState.PARTIAL_SUCCESS
        assert result.success is False
        assert result.steps_completed == 3
        assert [s.step for s in result.steps] == [1, 2, 3]
        assert all(s.action_result.success for s in result.steps)
        assert len(result.evaluation_history) == 4
        assert result.confidence == pytest.approx(0.8)
        assert result.task.status == TaskStatus.FAILED
        assert result.task.type == TaskType.GENERAL_TASK
        assert result.final_url == "https://example.com/"

        assert agent.state == TaskState.PARTIAL_SUCCESS
        assert model.count("decision") == 3
        assert model.count("evaluation") == 4
        assert sleep.calls.count(3.0) == 3
        assert sessions.opened[0].closed is True

        types = event_types(events, result.task.id)
        assert types.count(STEP_PROGRESS) == 3
        assert types[-2:] == [TASK_COMPLETE, TASK_ANALYSIS]

        shots = [e.payload for e in events.history(result.task.id) if e.type == SCREENSHOT]
        assert [s["step"] for s in shots] == [1, 2, 3]
        assert shots[0]["image"].startswith("data:image/jpeg;base64,")

    @pytest.mark.asyncio
    async def test_final_progress_above_threshold_succeeds(self, make_controller):
        model = FakeModel(
            decisions=[decision_json("scroll", {"direction": "down"})],
            evaluations=[evaluation_json(50), evaluation_json(85)],
        )
        result = await make_controller(model).run("Read the article", max_steps=1)
        assert result.state == TaskState.SUCCEEDED
        assert result.task.status == TaskStatus.SUCCEEDED


class TestCompletion:
    @pytest.mark.asyncio
    async def test_decision_complete_on_first_step(self, make_controller, page, events):
        model = FakeModel(
            decisions=[decision_json("wait", complete=True, confidence=0.95)],
            evaluations=[evaluation_json(100, complete=True, confidence=0.9)],
        )
        agent = make_controller(model)

        result = await agent.run("Check that example.com loads")

        assert result.state == TaskState.SUCCEEDED
        assert result.success is True
        assert result.steps_completed == 1
        assert result.steps[0].action_result is None
        assert result.steps[0].evaluation is None
        # 只做了最终评估
        assert model.count("decision") == 1
        assert model.count("evaluation") == 1
        assert page.called("click") == []

        complete = [e for e in events.history(result.task.id) if e.type == TASK_COMPLETE][0]
        assert complete.payload["success"] is True
        assert complete.payload["steps_completed"] == 1

    @pytest.mark.asyncio
    async def test_evaluation_complete_stops_loop(self, make_controller, sleep):
        model = FakeModel(
            decisions=[decision_json("click", {"selector": "#a"})],
            evaluations=[evaluation_json(100, complete=True), evaluation_json(100, complete=True)],
        )
        result = await make_controller(model).run("Click the button", max_steps=5)
        assert result.state == TaskState.SUCCEEDED
        assert result.steps_completed == 1
        assert 3.0 not in sleep.calls


class TestRecovery:
    @pytest.mark.asyncio
    async def test_missing_selector_does_not_abort(self, make_controller, page):
        model = FakeModel(
            decisions=[decision_json("click", {"selector": "#missing"}), decision_json("click", {"selector": "#a"})],
            evaluations=[evaluation_json(0), evaluation_json(100, complete=True)],
        )
        result = await make_controller(model).run("Click the button", max_steps=5)

        first, second = result.steps
        assert first.action_result.success is False
        assert first.action_result.message.startswith("Click failed")
        assert first.evaluation.action_success is False
        assert second.action_result.success is True
        assert result.state == TaskState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_retry_skips_step_interval(self, make_controller, sleep):
        model = FakeModel(
            decisions=[decision_json("click", {"selector": "#a"})],
            evaluations=[evaluation_json(10, retry=True), evaluation_json(100, complete=True)],
        )
        result = await make_controller(model).run("Click the button", max_steps=5)

        assert result.steps_completed == 2
        assert 3.0 not in sleep.calls

    @pytest.mark.asyncio
    async def test_unparseable_decision_falls_back_to_wait(self, make_controller, sleep):
        model = FakeModel(decisions=["I am not sure what to do"], evaluations=[evaluation_json(10)])
        result = await make_controller(model).run("Do something", max_steps=1)

        step = result.steps[0]
        assert step.decision.action == "wait"
        assert step.decision.confidence == pytest.approx(0.1)
        assert step.action_result.success is True
        assert 2.0 in sleep.calls

    @pytest.mark.asyncio
    async def test_unparseable_evaluation_uses_fallback(self, make_controller):
        model = FakeModel(
            decisions=[decision_json("scroll")],
            evaluations=["looks fine to me"],
        )
        result = await make_controller(model).run("Scroll down", max_steps=1)

        assert result.steps[0].evaluation.task_progress == 10
        assert result.steps[0].evaluation.confidence == pytest.approx(0.1)
        assert result.state == TaskState.PARTIAL_SUCCESS

    @pytest.mark.asyncio
    async def test_low_confidence_decision_is_still_executed(self, make_controller, page, events):
        model = FakeModel(
            decisions=[decision_json("click", {"selector": "#a"}, confidence=0.3)],
            evaluations=[evaluation_json(100, complete=True)],
        )
        result = await make_controller(model).run("Click the button", confidence_threshold=0.7)

        assert page.called("click") == [("click", "#a")]
        progress = [e for e in events.history(result.task.id) if e.type == STEP_PROGRESS][0]
        assert progress.payload["low_confidence"] is True
        assert progress.payload["decision_confidence"] == pytest.approx(0.3)


class TestFailures:
    @pytest.mark.asyncio
    async def test_quota_exhaustion_fails_task(self, make_controller, sessions, events):
        model = FakeModel(error=QuotaExceededError("AI daily call budget of 0 exhausted"))
        agent = make_controller(model)

        with pytest.raises(QuotaExceededError):
            await agent.run("Search for flights from NYC to London")

        assert agent.state == TaskState.FAILED
        assert agent.task.status == TaskStatus.FAILED
        assert agent.task.error == "AI daily call budget of 0 exhausted"
        assert sessions.opened[0].closed is True

        errors = [e for e in events.history(agent.task.id) if e.type == ERROR]
        assert errors[0].payload["code"] == "quota_exceeded"

    @pytest.mark.asyncio
    async def test_observation_failure_fails_task(self, make_controller, page, sessions):
        page.screenshot_error = RuntimeError("Target page has been closed")
        agent = make_controller(FakeModel())

        with pytest.raises(ObservationError):
            await agent.run("Do something")

        assert agent.state == TaskState.FAILED
        assert sessions.opened[0].closed is True

    @pytest.mark.asyncio
    async def test_requires_model_and_session_provider(self, sessions):
        with pytest.raises(AgentError):
            await TaskController(None, sessions).run("Do something")
        with pytest.raises(AgentError):
            await TaskController(FakeModel(), None).run("Do something")


class TestCancellation:
    @pytest.mark.asyncio
    async def test_stop_before_start_still_runs_one_step(self, make_controller):
        model = FakeModel(decisions=[decision_json("scroll")], evaluations=[evaluation_json(20)])
        cancel = asyncio.Event()
        cancel.set()

        result = await make_controller(model).run("Scroll forever", max_steps=10, cancel_event=cancel)

        assert result.cancelled is True
        assert result.steps_completed == 1
        assert result.state == TaskState.PARTIAL_SUCCESS

    @pytest.mark.asyncio
    async def test_stop_between_steps(self, make_controller, sleep):
        model = FakeModel(decisions=[decision_json("scroll")], evaluations=[evaluation_json(20)])
        agent = make_controller(model)

        async def stop_after_first_interval(seconds):
            sleep.calls.append(seconds)
            if seconds == 3.0:
                agent.stop()

        agent._sleep = stop_after_first_interval
        result = await agent.run("Scroll forever", max_steps=10)

        assert result.cancelled is True
        assert result.steps_completed == 1

    @pytest.mark.asyncio
    async def test_stop_sets_the_event_of_the_current_run(self, make_controller, sleep):
        model = FakeModel(decisions=[decision_json("scroll")], evaluations=[evaluation_json(20)])
        agent = make_controller(model)
        cancel = asyncio.Event()

        async def stop_after_first_interval(seconds):
            sleep.calls.append(seconds)
            agent.stop()

        agent._sleep = stop_after_first_interval
        result = await agent.run("Scroll forever", max_steps=10, cancel_event=cancel)

        assert cancel.is_set()
        assert result.cancelled is True
        assert result.steps_completed == 1


class TestSharedQuota:
    """真实的 RateLimiter + GenerativeModel：额度耗尽时不会调用 AI 服务"""

    @pytest.mark.asyncio
    async def test_exhausted_budget_fails_without_calling_provider(self, make_controller, sessions, events):
        completions = FakeCompletions([decision_json("click", {"selector": "#a"})])
        client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
        limiter = RateLimiter(min_interval=0, daily_budget=0, backoff=0)
        agent = make_controller(GenerativeModel(client, "gpt-4o", limiter))

        with pytest.raises(QuotaExceededError) as exc_info:
            await agent.run("Search for flights from NYC to London")

        assert exc_info.value.reset_at == limiter.reset_at
        assert completions.requests == []
        assert agent.state == TaskState.FAILED
        assert agent.task.status == TaskStatus.FAILED
        assert sessions.opened[0].closed is True
        errors = [e for e in events.history(agent.task.id) if e.type == ERROR]
        assert errors[0].payload["code"] == "quota_exceeded"
