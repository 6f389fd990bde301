"""生成式 AI 协作者：文本 + 截图混合输入，返回文本"""

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from openai import AsyncOpenAI, RateLimitError

from .config import AgentConfig
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InlineImage:
    data: bytes
    mime_type: str = "image/jpeg"

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


PromptPart = Union[str, InlineImage]


class GenerativeModel:
    """
    OpenAI 兼容的 chat completions 封装。
    所有调用都经过共享的 RateLimiter。
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        rate_limiter: RateLimiter,
        temperature: float = 0.0,
        max_tokens: int = 1024,
    ):
        self.client = client
        self.model = model
        self.rate_limiter = rate_limiter
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_config(cls, config: AgentConfig, rate_limiter: RateLimiter) -> "GenerativeModel":
        client = AsyncOpenAI(api_key=config.llm_api_key, base_url=config.llm_base_url)
        return cls(client, config.model, rate_limiter)

    @staticmethod
    def build_content(parts: Sequence[PromptPart]) -> List[Dict[str, Any]]:
        content: List[Dict[str, Any]] = []
        for part in parts:
            if isinstance(part, InlineImage):
                content.append({"type": "image_url", "image_url": {"url": part.to_data_url()}})
            else:
                content.append({"type": "text", "text": str(part)})
        return content

    async def generate(self, parts: Sequence[PromptPart], system: Optional[str] = None) -> str:
        messages: List[Dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": self.build_content(parts)})

        async def _call() -> str:
            response = await self.client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                messages=messages,
            )
            return (response.choices[0].message.content or "").strip()

        text = await self.rate_limiter.run(_call, retry_on=(RateLimitError,))
        logger.debug(f"[LLM] 原始响应：{text}")
        return text
