from __future__ import annotations

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

import config

COPILOT_URL = "https://m365.cloud.microsoft/chat"


class FakeElement:
    def __init__(self, page: "FakePage", name: str, text: str = ""):
        self.page = page
        self.name = name
        self.text = text

    async def click(self):
        self.page.calls.append(("click", self.name))

    async def fill(self, value: str):
        self.page.calls.append(("fill", value))

    async def text_content(self):
        return self.text


class FakeKeyboard:
    def __init__(self, page: "FakePage"):
        self.page = page

    async def press(self, key: str):
        self.page.calls.append(("press", key))

    async def type(self, text: str):
        self.page.typed += text


class FakePage:
    """Records interactions; selectors resolve to whatever was registered with ``add``."""

    def __init__(self, url: str = "about:blank"):
        self.url = url
        self.elements: dict[str, list[FakeElement]] = {}
        self.calls: list[tuple] = []
        self.typed = ""
        self.keyboard = FakeKeyboard(self)
        self.html = ""
        self.closed = False
        self.goto_error: Exception | None = None
        self.close_error: Exception | None = None
        self.evaluate_error: Exception | None = None
        self.goto_url: str | None = None

    def add(self, selector: str, text: str = "", name: str | None = None) -> FakeElement:
        element = FakeElement(self, name or selector, text)
        self.elements.setdefault(selector, []).append(element)
        return element

    async def goto(self, url: str, timeout=None):
        self.calls.append(("goto", url))
        if self.goto_error:
            raise self.goto_error
        self.url = self.goto_url or url

    async def query_selector(self, selector: str):
        found = self.elements.get(selector)
        return found[0] if found else None

    async def query_selector_all(self, selector: str):
        return list(self.elements.get(selector, []))

    async def wait_for_selector(self, selector: str, timeout=None):
        found = self.elements.get(selector)
        if not found:
            raise PlaywrightTimeoutError(f"Timeout waiting for {selector}")
        return found[0]

    async def wait_for_timeout(self, timeout):
        pass

    async def click(self, selector: str):
        self.calls.append(("click", selector))

    async def evaluate(self, script: str):
        self.calls.append(("evaluate", script))
        if self.evaluate_error:
            raise self.evaluate_error

    async def content(self):
        return self.html

    async def bring_to_front(self):
        pass

    def is_closed(self):
        return self.closed

    async def close(self):
        self.closed = True
        if self.close_error:
            raise self.close_error


class FakeContext:
    def __init__(self):
        self.pages: list[FakePage] = []
        self.closed = False

    async def new_page(self):
        page = FakePage()
        self.pages.append(page)
        return page

    async def close(self):
        self.closed = True


class FakeBrowser:
    """Stands in for BrowserManager: always signed in, hands out fake pages."""

    def __init__(self):
        self.context = FakeContext()
        self.page = FakePage(COPILOT_URL)
        self.closed = False
        self.logged_in = True

    async def ensure_logged_in(self):
        return self.logged_in

    async def get_context(self):
        return self.context

    async def get_page(self):
        return self.page

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_browser():
    return FakeBrowser()


@pytest.fixture
def test_settings():
    return config.Settings(
        COPILOT_URL=COPILOT_URL,
        HEADLESS=True,
        DELAY_SCALE=0.0,
        RESPONSE_TIMEOUT=0.2,
        RESPONSE_POLL_MIN=0.001,
        RESPONSE_POLL_MAX=0.002,
        RESPONSE_SETTLE_MIN=0.001,
        RESPONSE_SETTLE_MAX=0.002,
        REQUEST_TIMEOUT=5.0,
        MAX_SESSIONS=3,
        SESSION_IDLE_TIMEOUT=30 * 60,
        SESSION_SWEEP_INTERVAL=5 * 60,
        LOGIN_POLL_INTERVAL=0.01,
        LOGIN_TIMEOUT=0.2,
        STATELESS_MODE=False,
    )
