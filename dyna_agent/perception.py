"""感知模块：采集当前页面的结构化快照"""

import logging
from typing import Any, Dict, List

from playwright.async_api import Page

from .errors import ObservationError
from .models import ElementDescriptor, FormDescriptor, FormField, Observation, now_ms

logger = logging.getLogger(__name__)

ELEMENTS_JS = """
() => {
    const isVisible = (el) => {
        if (!el) return false;
        if (el.offsetParent === null && el.offsetWidth === 0 && el.offsetHeight === 0) return false;
        const style = window.getComputedStyle(el);
        if (style.display === 'none') return false;
        if (style.visibility === 'hidden') return false;
        if (parseFloat(style.opacity) === 0) return false;
        return true;
    };

    const cssId = (el) => (el.id ? '#' + CSS.escape(el.id) : '');
    const elements = [];

    document.querySelectorAll('button, input[type="button"], input[type="submit"]').forEach((el) => {
        const classes = (typeof el.className === 'string' ? el.className.trim() : '');
        elements.push({
            kind: 'button',
            text: (el.textContent || '').trim() || el.value || '',
            selector: el.tagName.toLowerCase() + cssId(el)
                + (classes ? '.' + classes.split(/\\s+/).map(c => CSS.escape(c)).join('.') : ''),
            visible: isVisible(el),
            attributes: { id: el.id || '' }
        });
    });

    document.querySelectorAll('a').forEach((el) => {
        const text = (el.textContent || '').trim();
        if (!el.href || !text) return;
        elements.push({
            kind: 'link',
            text,
            selector: 'a[href=' + JSON.stringify(el.getAttribute('href')) + ']',
            visible: isVisible(el),
            attributes: { href: el.href }
        });
    });

    document.querySelectorAll('input, textarea, select').forEach((el) => {
        const type = (el.getAttribute('type') || '').toLowerCase();
        if (type === 'hidden') return;
        elements.push({
            kind: 'input',
            text: el.getAttribute('aria-label') || el.placeholder || el.name || '',
            selector: el.tagName.toLowerCase() + cssId(el)
                + (el.name ? '[name=' + JSON.stringify(el.name) + ']' : ''),
            visible: isVisible(el),
            attributes: {
                input_type: el.type || 'text',
                name: el.name || '',
                placeholder: el.placeholder || '',
                value: el.value || ''
            }
        });
    });

    return elements.filter(el => el.visible);
}
"""

FORMS_JS = """
() => Array.from(document.querySelectorAll('form')).map((form, index) => ({
    index,
    id: form.id || '',
    action: form.action || '',
    method: form.method || '',
    fields: Array.from(form.querySelectorAll('input, select, textarea')).map(field => ({
        type: field.type || '',
        name: field.name || '',
        id: field.id || '',
        placeholder: field.placeholder || '',
        required: !!field.required,
        value: field.value || ''
    }))
}))
"""

PAGE_TEXT_JS = "() => document.body ? document.body.innerText : ''"

PAGE_INFO_JS = """
() => ({
    scrollY: window.scrollY,
    scrollHeight: document.body ? document.body.scrollHeight : 0,
    viewportHeight: window.innerHeight,
    viewportWidth: window.innerWidth
})
"""


class Perception:
    """
    感知模块：截图 + URL 是必需的，失败直接抛出 ObservationError；
    元素、表单、页面文本等查询失败时退化为空值，保证快照结构完整。
    """

    def __init__(self, page: Page, screenshot_quality: int = 80):
        self.page = page
        self.screenshot_quality = screenshot_quality

    async def observe(self) -> Observation:
        try:
            url = self.page.url
            screenshot = await self.page.screenshot(type="jpeg", quality=self.screenshot_quality)
        except Exception as e:
            raise ObservationError(f"Failed to capture page state: {e}") from e

        try:
            title = await self.page.title()
        except Exception as e:
            logger.warning(f"⚠ 获取标题失败: {e}")
            title = ""

        elements = await self._query(ELEMENTS_JS, [], "可交互元素")
        forms = await self._query(FORMS_JS, [], "表单")
        page_text = await self._query(PAGE_TEXT_JS, "", "页面文本")
        page_info = await self._query(PAGE_INFO_JS, {}, "页面尺寸")

        observation = Observation(
            url=url,
            title=title or "",
            timestamp=now_ms(),
            screenshot=screenshot,
            interactive_elements=[self._to_element(item) for item in elements or []],
            forms=[self._to_form(item) for item in forms or []],
            page_text=page_text or "",
            page_info=page_info or {},
        )
        logger.info(f"✓ 观察完成 {observation.url}（{len(observation.interactive_elements)} 个元素）")
        return observation

    async def _query(self, script: str, default: Any, what: str) -> Any:
        try:
            return await self.page.evaluate(script)
        except Exception as e:
            logger.warning(f"⚠ 提取{what}失败，使用空值: {e}")
            return default

    @staticmethod
    def _to_element(item: Dict[str, Any]) -> ElementDescriptor:
        return ElementDescriptor(
            kind=item.get("kind", "button"),
            text=item.get("text") or "",
            selector_hint=item.get("selector") or "",
            visible=bool(item.get("visible", True)),
            attributes=item.get("attributes") or {},
        )

    @staticmethod
    def _to_form(item: Dict[str, Any]) -> FormDescriptor:
        fields: List[FormField] = [
            FormField(
                type=f.get("type") or "",
                name=f.get("name") or "",
                id=f.get("id") or "",
                placeholder=f.get("placeholder") or "",
                required=bool(f.get("required")),
                value=f.get("value") or "",
            )
            for f in item.get("fields") or []
        ]
        return FormDescriptor(
            index=int(item.get("index", 0)),
            id=item.get("id") or "",
            action=item.get("action") or "",
            method=item.get("method") or "",
            fields=fields,
        )
