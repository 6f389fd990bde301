"""执行模块：执行 LLM 决策的动作"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

from playwright.async_api import Page

from .errors import ActionError
from .models import ActionResult, Decision

logger = logging.getLogger(__name__)

NAVIGATION_TIMEOUT_MS = 30000
SELECTOR_TIMEOUT_MS = 10000
TYPE_DELAY_MS = 100

DEFAULT_SEARCH_SELECTOR = (
    'input[type="search"], input[name*="search"], '
    'input[placeholder*="search"], input[placeholder*="Search"]'
)
SEARCH_BUTTON_SELECTOR = 'button:has-text("Search"), input[type="submit"], button[type="submit"]'

PRICES_JS = r"""
() => {
    const prices = [];
    document.querySelectorAll('[class*="price"], [class*="cost"], [class*="amount"]').forEach(el => {
        const text = (el.textContent || '').trim();
        const match = text.match(/[$€£¥][\d,]+\.?\d*/);
        if (match) {
            prices.push({ text: text.slice(0, 200), price: match[0], element: el.tagName.toLowerCase() });
        }
    });
    return prices;
}
"""

PRODUCTS_JS = r"""
() => {
    const products = [];
    const cards = document.querySelectorAll('[class*="product"], [class*="item"], [itemtype*="Product"], article');
    cards.forEach(card => {
        const title = card.querySelector('h1, h2, h3, h4, [class*="title"], [class*="name"]');
        const price = card.querySelector('[class*="price"]');
        const link = card.querySelector('a[href]');
        if (!title) return;
        products.push({
            title: (title.textContent || '').trim().slice(0, 200),
            price: price ? (price.textContent || '').trim() : null,
            url: link ? link.href : null
        });
    });
    return products.slice(0, 50);
}
"""

LINKS_JS = r"""
() => Array.from(document.querySelectorAll('a[href]'))
    .map(a => ({ text: (a.textContent || '').trim().slice(0, 120), href: a.href }))
    .filter(l => l.text)
    .slice(0, 100)
"""

GENERAL_JS = r"""
() => ({
    title: document.title,
    url: location.href,
    headings: Array.from(document.querySelectorAll('h1, h2, h3'))
        .map(h => (h.textContent || '').trim()).filter(Boolean).slice(0, 30),
    text: (document.body ? document.body.innerText : '').slice(0, 2000)
})
"""

EXTRACTORS = {
    "prices": PRICES_JS,
    "products": PRODUCTS_JS,
    "links": LINKS_JS,
    "general": GENERAL_JS,
}


class Controller:
    """
    Action Executor：按 decision.action 分发到固定的浏览器操作。
    所有底层异常都在这里转成 success=False 的 ActionResult，不向外抛出。
    """

    def __init__(self, page: Page, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.page = page
        self._sleep = sleep
        self._handlers = {
            "navigate": self._navigate,
            "click": self._click,
            "type": self._type,
            "search": self._search,
            "scroll": self._scroll,
            "wait": self._wait,
            "extract_data": self._extract_data,
        }

    async def act(self, decision: Decision) -> ActionResult:
        handler = self._handlers.get(decision.action)
        if handler is None:
            logger.warning(f"❌ 未知 action: {decision.action}")
            return ActionResult(False, f"Unknown action: {decision.action}")

        params = decision.parameters or {}
        try:
            result = await handler(params)
        except Exception as e:
            # 各分支已自行捕获，这里兜底
            logger.error(f"❌ {decision.action} 执行异常: {e}")
            return ActionResult(False, f"{decision.action} failed: {e}")

        if result.success:
            logger.info(f"✓ {result.message}")
        else:
            logger.warning(f"❌ {result.message}")
        return result

    async def _navigate(self, params: Dict[str, Any]) -> ActionResult:
        url = params.get("url") or params.get("selector")
        try:
            if not url:
                raise ActionError("missing url")
            await self.page.goto(url, wait_until="networkidle", timeout=NAVIGATION_TIMEOUT_MS)
            return ActionResult(True, f"Successfully navigated to {url}", {"url": self.page.url})
        except Exception as e:
            return ActionResult(False, f"Navigation failed: {e}", None)

    async def _click(self, params: Dict[str, Any]) -> ActionResult:
        """点击元素"""
        selector = params.get("selector")
        try:
            if not selector:
                raise ActionError("missing selector")
            await self.page.wait_for_selector(selector, state="visible", timeout=SELECTOR_TIMEOUT_MS)
            await self.page.locator(selector).first.scroll_into_view_if_needed()
            await self.page.click(selector)
            await self._sleep(1)
            return ActionResult(True, f"Successfully clicked {selector}", {"selector": selector})
        except Exception as e:
            return ActionResult(False, f"Click failed: {e}", {"selector": selector})

    async def _type(self, params: Dict[str, Any]) -> ActionResult:
        """清空输入框后逐字输入"""
        selector = params.get("selector")
        text = params.get("text")
        try:
            if not selector:
                raise ActionError("missing selector")
            if text is None:
                raise ActionError("missing text")
            await self.page.wait_for_selector(selector, timeout=SELECTOR_TIMEOUT_MS)
            await self.page.fill(selector, "")
            await self.page.locator(selector).first.press_sequentially(str(text), delay=TYPE_DELAY_MS)
            return ActionResult(
                True, f'Successfully typed "{text}" into {selector}', {"selector": selector, "text": text}
            )
        except Exception as e:
            return ActionResult(False, f"Type failed: {e}", {"selector": selector, "text": text})

    async def _search(self, params: Dict[str, Any]) -> ActionResult:
        """输入搜索词，再点击搜索按钮或回车"""
        query = params.get("text") or params.get("query")
        selector = params.get("selector") or DEFAULT_SEARCH_SELECTOR

        typed = await self._type({"selector": selector, "text": query})
        if not typed.success:
            return typed

        try:
            button = self.page.locator(SEARCH_BUTTON_SELECTOR).first
            if await button.count() > 0:
                await button.click()
            else:
                await self.page.press(selector, "Enter")
            await self._sleep(3)
            return ActionResult(
                True, f'Successfully searched for "{query}"', {"query": query, "selector": selector}
            )
        except Exception as e:
            return ActionResult(False, f"Search failed: {e}", {"query": query})

    async def _scroll(self, params: Dict[str, Any]) -> ActionResult:
        """滚动"""
        direction = str(params.get("direction") or "down").lower()
        try:
            amount = abs(int(params.get("amount") or 500))
            delta_x, delta_y = {
                "down": (0, amount),
                "up": (0, -amount),
                "right": (amount, 0),
                "left": (-amount, 0),
            }.get(direction, (0, amount))
            await self.page.mouse.wheel(delta_x, delta_y)
            await self._sleep(1)
            return ActionResult(
                True, f"Scrolled {direction} by {amount}px", {"direction": direction, "amount": amount}
            )
        except Exception as e:
            return ActionResult(False, f"Scroll failed: {e}", None)

    async def _wait(self, params: Dict[str, Any]) -> ActionResult:
        """等待"""
        raw = params.get("duration")
        try:
            duration = 2000 if raw is None else int(raw)
        except (TypeError, ValueError):
            duration = 2000
        duration = max(0, duration)
        await self._sleep(duration / 1000)
        return ActionResult(True, f"Waited for {duration}ms", {"duration": duration})

    async def _extract_data(self, params: Dict[str, Any]) -> ActionResult:
        data_type = str(params.get("data") or "general").lower()
        if data_type not in EXTRACTORS:
            data_type = "general"
        try:
            data = await self.page.evaluate(EXTRACTORS[data_type])
            return ActionResult(True, f"Successfully extracted {data_type} data", data)
        except Exception as e:
            return ActionResult(False, f"Data extraction failed: {e}", None)
