"""配置读取与校验"""

import pytest

from dyna_agent.config import GEMINI_OPENAI_BASE_URL, AgentConfig
from dyna_agent.errors import ConfigError

ENV_KEYS = [
    "BROWSERBASE_API_KEY", "BROWSERBASE_PROJECT_ID", "OPENAI_API_KEY", "OPENAI_BASE_URL",
    "OPENAI_MODEL", "GEMINI_API_KEY", "MAX_STEPS", "CONFIDENCE_THRESHOLD", "STEP_INTERVAL_MS",
    "AI_DAILY_BUDGET", "MAX_FINISHED_TASKS", "LOG_LEVEL", "PORT",
]


@pytest.fixture
def load_config(monkeypatch, tmp_path):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)

    def load() -> AgentConfig:
        # 不存在的 .env，避免读到开发机上的真实配置
        return AgentConfig.from_env(str(tmp_path / "absent.env"))

    return load


def test_defaults(load_config):
    config = load_config()
    assert config.max_steps == 20
    assert config.confidence_threshold == 0.7
    assert config.step_interval_ms == 3000
    assert config.screenshot_quality == 80
    assert config.session_timeout_ms == 300000
    assert config.ai_daily_budget == 1500
    assert config.model == "gpt-4o"
    assert config.port == 3000


def test_reads_environment(monkeypatch, load_config):
    monkeypatch.setenv("BROWSERBASE_API_KEY", "bb_live")
    monkeypatch.setenv("BROWSERBASE_PROJECT_ID", "proj")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-live")
    monkeypatch.setenv("MAX_STEPS", "8")
    monkeypatch.setenv("CONFIDENCE_THRESHOLD", "0.5")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    config = load_config()
    config.validate()

    assert config.llm_api_key == "sk-live"
    assert config.llm_base_url is None
    assert config.max_steps == 8
    assert config.confidence_threshold == 0.5
    assert config.log_level == "DEBUG"


def test_gemini_key_uses_openai_compatible_endpoint(monkeypatch, load_config):
    monkeypatch.setenv("OPENAI_API_KEY", "your_openai_api_key_here")
    monkeypatch.setenv("GEMINI_API_KEY", "gm-live")

    config = load_config()

    assert config.llm_api_key == "gm-live"
    assert config.llm_base_url == GEMINI_OPENAI_BASE_URL
    assert config.model.startswith("gemini")


def test_bad_integer(monkeypatch, load_config):
    monkeypatch.setenv("MAX_STEPS", "many")
    with pytest.raises(ConfigError):
        load_config()


@pytest.mark.parametrize("overrides", [
    {"browserbase_api_key": None},
    {"browserbase_api_key": "your_browserbase_api_key_here"},
    {"browserbase_project_id": ""},
    {"llm_api_key": None},
    {"max_steps": 0},
    {"confidence_threshold": 1.2},
    {"max_finished_tasks": 0},
])
def test_validate_rejects(overrides):
    values = {"browserbase_api_key": "bb", "browserbase_project_id": "proj", "llm_api_key": "sk"}
    values.update(overrides)
    with pytest.raises(ConfigError):
        AgentConfig(**values).validate()
