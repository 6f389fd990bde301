"""异常类型"""

from typing import Optional


class AgentError(Exception):
    """所有 Agent 异常的基类，code 供调用方区分错误类别"""

    code = "agent_error"

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class ConfigError(AgentError):
    code = "config_error"


class ObservationError(AgentError):
    """截图或 URL 采集失败，本步无法继续"""
    code = "observation_error"


class DecisionParseError(AgentError):
    code = "decision_parse_error"


class EvaluationParseError(AgentError):
    code = "evaluation_parse_error"


class ActionError(AgentError):
    code = "action_error"


class QuotaExceededError(AgentError):
    """AI 调用额度耗尽，任务终止"""
    code = "quota_exceeded"

    def __init__(self, message: str, *, reset_at: Optional[float] = None):
        super().__init__(message)
        self.reset_at = reset_at


class SessionError(AgentError):
    code = "session_error"
