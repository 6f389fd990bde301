"""配置：从环境变量 / .env 文件读取"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigError

# Gemini 的 OpenAI 兼容接口
GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"环境变量 {name} 不是整数: {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"环境变量 {name} 不是数字: {raw!r}")


def _is_placeholder(value: Optional[str]) -> bool:
    return not value or (value.startswith("your_") and value.endswith("_here"))


@dataclass
class AgentConfig:
    """Agent 运行配置"""

    browserbase_api_key: Optional[str] = None
    browserbase_project_id: Optional[str] = None
    llm_api_key: Optional[str] = None
    llm_base_url: Optional[str] = None
    model: str = "gpt-4o"

    # 任务循环
    max_steps: int = 20
    confidence_threshold: float = 0.7
    step_interval_ms: int = 3000

    # 浏览器
    screenshot_quality: int = 80
    session_timeout_ms: int = 300000

    # AI 调用限流
    ai_min_interval_ms: int = 1000
    ai_daily_budget: int = 1500
    ai_rate_limit_backoff_ms: int = 10000

    # 内存中保留的已结束任务数，超出后按结束顺序淘汰最早的
    max_finished_tasks: int = 50

    log_level: str = "INFO"
    port: int = 3000

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "AgentConfig":
        load_dotenv(dotenv_path)

        llm_api_key = os.getenv("OPENAI_API_KEY")
        llm_base_url = os.getenv("OPENAI_BASE_URL")
        model = os.getenv("OPENAI_MODEL", "gpt-4o")
        # 只配置了 Gemini 时走它的 OpenAI 兼容接口
        if _is_placeholder(llm_api_key) and not _is_placeholder(os.getenv("GEMINI_API_KEY")):
            llm_api_key = os.getenv("GEMINI_API_KEY")
            llm_base_url = llm_base_url or GEMINI_OPENAI_BASE_URL
            model = os.getenv("OPENAI_MODEL", "gemini-1.5-flash")

        return cls(
            browserbase_api_key=os.getenv("BROWSERBASE_API_KEY"),
            browserbase_project_id=os.getenv("BROWSERBASE_PROJECT_ID"),
            llm_api_key=llm_api_key,
            llm_base_url=llm_base_url,
            model=model,
            max_steps=_env_int("MAX_STEPS", 20),
            confidence_threshold=_env_float("CONFIDENCE_THRESHOLD", 0.7),
            step_interval_ms=_env_int("STEP_INTERVAL_MS", 3000),
            screenshot_quality=_env_int("SCREENSHOT_QUALITY", 80),
            session_timeout_ms=_env_int("SESSION_TIMEOUT", 300000),
            ai_min_interval_ms=_env_int("AI_MIN_INTERVAL_MS", 1000),
            ai_daily_budget=_env_int("AI_DAILY_BUDGET", 1500),
            ai_rate_limit_backoff_ms=_env_int("AI_RATE_LIMIT_BACKOFF_MS", 10000),
            max_finished_tasks=_env_int("MAX_FINISHED_TASKS", 50),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            port=_env_int("PORT", 3000),
        )

    def validate(self) -> None:
        """检查凭据是否已配置，未配置时抛出 ConfigError"""
        if _is_placeholder(self.browserbase_api_key):
            raise ConfigError("Browserbase API key 未配置，请在 .env 中设置 BROWSERBASE_API_KEY")
        if _is_placeholder(self.browserbase_project_id):
            raise ConfigError("Browserbase Project ID 未配置，请在 .env 中设置 BROWSERBASE_PROJECT_ID")
        if _is_placeholder(self.llm_api_key):
            raise ConfigError("LLM API key 未配置，请在 .env 中设置 OPENAI_API_KEY 或 GEMINI_API_KEY")
        if self.max_steps < 1:
            raise ConfigError(f"MAX_STEPS 必须 >= 1，当前为 {self.max_steps}")
        if self.max_finished_tasks < 1:
            raise ConfigError(f"MAX_FINISHED_TASKS 必须 >= 1，当前为 {self.max_finished_tasks}")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ConfigError(f"CONFIDENCE_THRESHOLD 必须在 [0, 1] 内，当前为 {self.confidence_threshold}")
