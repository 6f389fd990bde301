"""浏览器会话：Browserbase 远程浏览器 + Playwright CDP 连接"""

import logging
from dataclasses import dataclass
from typing import Optional

from browserbase import AsyncBrowserbase
from playwright.async_api import Browser, Page, Playwright, async_playwright

from .config import AgentConfig
from .errors import SessionError

logger = logging.getLogger(__name__)

REPLAY_URL_TEMPLATE = "https://www.browserbase.com/sessions/{id}"


@dataclass(frozen=True)
class SessionInfo:
    id: str
    connect_url: str
    replay_url: str


class BrowserSession:
    """一个任务独占的浏览器会话"""

    def __init__(
        self,
        info: SessionInfo,
        page: Page,
        browser: Optional[Browser] = None,
        playwright: Optional[Playwright] = None,
        provider: Optional["BrowserbaseProvider"] = None,
    ):
        self.info = info
        self.page = page
        self.browser = browser
        self.playwright = playwright
        self.provider = provider
        self.closed = False

    async def close(self) -> None:
        """依次断开 CDP 连接、停止 Playwright、释放远程会话；前一步失败不影响后一步"""
        if self.closed:
            return
        self.closed = True
        try:
            if self.browser is not None:
                await self.browser.close()
        except Exception as e:
            # CDP 连接可能已经断开
            logger.warning(f"⚠ 关闭浏览器连接失败 {self.info.id}: {e}")
        finally:
            try:
                if self.playwright is not None:
                    await self.playwright.stop()
            finally:
                if self.provider is not None:
                    await self.provider.release(self.info.id)
        logger.info(f"✓ 会话 {self.info.id} 已关闭")


class BrowserbaseProvider:
    """创建 / 连接 / 释放 Browserbase 会话"""

    def __init__(
        self,
        api_key: str,
        project_id: str,
        session_timeout_ms: int = 300000,
        client: Optional[AsyncBrowserbase] = None,
    ):
        self.project_id = project_id
        self.session_timeout_ms = session_timeout_ms
        self.client = client or AsyncBrowserbase(api_key=api_key)

    @classmethod
    def from_config(cls, config: AgentConfig) -> "BrowserbaseProvider":
        return cls(
            api_key=config.browserbase_api_key,
            project_id=config.browserbase_project_id,
            session_timeout_ms=config.session_timeout_ms,
        )

    async def create_session(self) -> SessionInfo:
        try:
            session = await self.client.sessions.create(
                project_id=self.project_id,
                timeout=max(60, self.session_timeout_ms // 1000),
            )
        except Exception as e:
            raise SessionError(f"Session creation failed: {e}") from e

        info = SessionInfo(
            id=session.id,
            connect_url=session.connect_url,
            replay_url=REPLAY_URL_TEMPLATE.format(id=session.id),
        )
        logger.info(f"✓ 会话已创建 {info.id}，回放地址 {info.replay_url}")
        return info

    async def connect(self, info: SessionInfo) -> BrowserSession:
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.connect_over_cdp(info.connect_url)
            context = browser.contexts[0] if browser.contexts else await browser.new_context()
            page = context.pages[0] if context.pages else await context.new_page()
        except Exception as e:
            await playwright.stop()
            raise SessionError(f"Failed to connect to session {info.id}: {e}") from e

        page.on("console", lambda msg: logger.debug(f"Browser console: {msg.text}"))
        page.on("pageerror", lambda err: logger.warning(f"⚠ Page error: {err}"))
        return BrowserSession(info, page, browser=browser, playwright=playwright, provider=self)

    async def open(self) -> BrowserSession:
        info = await self.create_session()
        return await self.connect(info)

    async def release(self, session_id: str) -> None:
        try:
            await self.client.sessions.update(
                session_id,
                project_id=self.project_id,
                status="REQUEST_RELEASE",
            )
        except Exception as e:
            # 会话超时后会被服务端自动回收
            logger.warning(f"⚠ 释放会话 {session_id} 失败: {e}")
