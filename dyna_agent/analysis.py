"""单次 AI 分析：文本、截图、当前页面。不驱动浏览器，只调用生成式模型"""

import base64
import binascii
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from openai import OpenAIError

from .errors import AgentError
from .llm import GenerativeModel, InlineImage, PromptPart
from .models import Observation

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are Dyna, an assistant that analyzes web pages for browser automation."

IMAGE_PROMPT = """Analyze this screenshot of a web page. Describe:
1. What elements are visible (buttons, forms, text, images)
2. The current state of the page
3. Any interactive elements that could be automated
4. Suggestions for possible actions

Be concise but thorough in your analysis."""

# 页面分析时附带的页面文本上限
PAGE_TEXT_LIMIT = 2000


def decode_image(data: str) -> bytes:
    """接受 data URL 或纯 base64 字符串"""
    if data.startswith("data:"):
        _, _, data = data.partition(",")
    try:
        image = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AgentError(f"Image is not valid base64: {e}", code="invalid_options")
    if not image:
        raise AgentError("Image is empty", code="invalid_options")
    return image


def to_data_url(image: bytes, mime_type: str = "image/jpeg") -> str:
    return InlineImage(image, mime_type).to_data_url()


def _result(text: str, **extra: Any) -> Dict[str, Any]:
    return {"analysis": text, "timestamp": datetime.now(timezone.utc).isoformat(), **extra}


class Analyst:
    """所有分析请求与任务共用同一个模型，因此同样受共享 RateLimiter 约束"""

    def __init__(self, model: GenerativeModel):
        self.model = model

    async def _generate(self, parts: Sequence[PromptPart]) -> str:
        try:
            return await self.model.generate(parts, system=SYSTEM_PROMPT)
        except OpenAIError as e:
            logger.error(f"❌ AI 分析失败: {e}")
            raise AgentError(f"AI analysis failed: {e}", code="analysis_failed") from e

    async def analyze_text(self, text: str, task: str = "") -> Dict[str, Any]:
        prompt = (
            f'Analyze the following text in the context of the task: "{task}"\n\n'
            f"Text: {text}\n\n"
            f"Provide insights on how this text relates to the automation task and suggest next steps."
        )
        return _result(await self._generate([prompt]))

    async def analyze_image(self, image: bytes) -> Dict[str, Any]:
        logger.info(f"分析截图（{len(image)} 字节）")
        analysis = await self._generate([IMAGE_PROMPT, InlineImage(image)])
        return _result(analysis)

    async def analyze_page(self, observation: Observation, instruction: Optional[str] = None) -> Dict[str, Any]:
        """基于任务最近一次观察分析页面，不执行任何动作"""
        elements = "\n".join(
            f"- {el.kind}: {el.text!r} ({el.selector_hint})" for el in observation.interactive_elements[:30]
        ) or "(none)"
        prompt = (
            f"{instruction or 'Describe this page and suggest what could be automated on it.'}\n\n"
            f"CURRENT PAGE:\n"
            f"- URL: {observation.url}\n"
            f"- Title: {observation.title}\n\n"
            f"INTERACTIVE ELEMENTS:\n{elements}\n\n"
            f"PAGE TEXT:\n{observation.page_text[:PAGE_TEXT_LIMIT]}"
        )
        analysis = await self._generate([prompt, InlineImage(observation.screenshot)])
        return _result(analysis, url=observation.url, title=observation.title)
