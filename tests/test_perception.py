"""Page Observer"""

import pytest

from dyna_agent.errors import ObservationError
from dyna_agent.perception import ELEMENTS_JS, FORMS_JS, PAGE_TEXT_JS, Perception

from tests.fakes import FakePage


@pytest.fixture
def rich_page() -> FakePage:
    return FakePage(
        url="https://www.youtube.com/",
        title="YouTube",
        page_text="Recommended videos",
        elements=[
            {"kind": "input", "text": "Search", "selector": 'input#search[name="search_query"]',
             "visible": True, "attributes": {"input_type": "text", "name": "search_query"}},
            {"kind": "button", "text": "Search", "selector": "button#search-icon-legacy", "visible": True},
        ],
        forms=[
            {"index": 0, "id": "search-form", "action": "/results", "method": "get",
             "fields": [{"type": "text", "name": "search_query", "id": "search",
                         "placeholder": "Search", "required": False, "value": ""}]},
        ],
    )


@pytest.mark.asyncio
async def test_observe_collects_full_snapshot(rich_page):
    observation = await Perception(rich_page, screenshot_quality=60).observe()

    assert observation.url == "https://www.youtube.com/"
    assert observation.title == "YouTube"
    assert observation.screenshot == b"\xff\xd8fake-jpeg"
    assert rich_page.called("screenshot") == [("screenshot", "jpeg", 60)]
    assert observation.page_text == "Recommended videos"
    assert observation.page_info["viewportWidth"] == 1280

    assert [el.kind for el in observation.interactive_elements] == ["input", "button"]
    assert observation.interactive_elements[0].selector_hint == 'input#search[name="search_query"]'
    assert observation.interactive_elements[0].attributes["name"] == "search_query"

    form = observation.forms[0]
    assert form.id == "search-form"
    assert form.method == "get"
    assert form.fields[0].name == "search_query"
    assert form.fields[0].required is False


@pytest.mark.asyncio
async def test_optional_queries_degrade_to_empty(rich_page):
    rich_page.failing_scripts.update({ELEMENTS_JS, FORMS_JS, PAGE_TEXT_JS})

    observation = await Perception(rich_page).observe()

    assert observation.interactive_elements == []
    assert observation.forms == []
    assert observation.page_text == ""
    assert observation.url == "https://www.youtube.com/"


@pytest.mark.asyncio
async def test_screenshot_failure_is_fatal(rich_page):
    rich_page.screenshot_error = RuntimeError("Target closed")
    with pytest.raises(ObservationError):
        await Perception(rich_page).observe()


@pytest.mark.asyncio
async def test_summary_excludes_screenshot(rich_page):
    observation = await Perception(rich_page).observe()
    summary = observation.summary()
    assert "screenshot" not in summary
    assert summary["elements"] == 2
    assert summary["forms"] == 1


def test_attribute_selectors_are_quoted_by_json():
    # href / name 里的引号不能破坏生成的 CSS 选择器
    assert "'a[href=' + JSON.stringify(el.getAttribute('href')) + ']'" in ELEMENTS_JS
    assert "'[name=' + JSON.stringify(el.name) + ']'" in ELEMENTS_JS
    assert "'\"]'" not in ELEMENTS_JS
