import pytest

from dyna_agent.config import AgentConfig
from dyna_agent.events import EventChannel

from tests.fakes import FakePage, FakeSession, SleepRecorder


@pytest.fixture
def page() -> FakePage:
    return FakePage(selectors=["#a", "#search", "#submit"])


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def events() -> EventChannel:
    return EventChannel()


@pytest.fixture
def config() -> AgentConfig:
    return AgentConfig(
        browserbase_api_key="bb_test",
        browserbase_project_id="proj_test",
        llm_api_key="sk-test",
    )


@pytest.fixture
def sessions(page):
    """记录每次打开的会话"""
    opened = []

    async def factory():
        session = FakeSession(page, session_id=f"sess-{len(opened) + 1}")
        opened.append(session)
        return session

    factory.opened = opened
    return factory
