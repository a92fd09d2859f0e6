import logging
import time
from contextlib import contextmanager
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

import pacing
from config import Settings, settings as default_settings
from errors import ExtractionFailed, InputNotFound, InteractionError, ResponseTimeout
from models import MODELS_IN_MORE_SECTION, CopilotModel
from page_selectors import DEFAULT_SELECTORS, Selectors

logger = logging.getLogger(__name__)

# Longer messages are pasted in one go instead of typed
BULK_FILL_THRESHOLD = 200


@contextmanager
def step(name: str):
    try:
        yield
    except InteractionError:
        raise
    except PlaywrightError as e:
        raise InteractionError(f"{name} failed: {e}", step=name) from e


def format_messages_as_prompt(messages: list) -> str:
    """Flatten an OpenAI message list into one prompt; Copilot has no native history input."""
    if len(messages) == 1:
        return messages[0]["content"]

    parts = []
    for msg in messages:
        if msg["role"] == "system":
            parts.append(f"[System Instructions]\n{msg['content']}")
        elif msg["role"] == "assistant":
            parts.append(f"[Previous Assistant Response]\n{msg['content']}")
        else:
            parts.append(msg["content"])
    return "\n\n".join(parts)


class CopilotDriver:
    """Drives one Copilot chat page through a full message exchange.

    Conversation reset and model selection are best effort: failures there are
    logged and the exchange carries on with whatever the UI currently shows.
    Input, response and extraction failures abort the exchange.
    """

    def __init__(self, settings: Settings = default_settings, selectors: Selectors = DEFAULT_SELECTORS):
        self.settings = settings
        self.selectors = selectors
        self.pacer = pacing.Pacer(settings.DELAY_SCALE)
        parsed = urlparse(settings.COPILOT_URL)
        self._surface_marker = f"{parsed.netloc}{parsed.path}"

    @property
    def _navigation_timeout_ms(self) -> float:
        return self.settings.NAVIGATION_TIMEOUT * 1000

    def is_on_chat_surface(self, page: Page) -> bool:
        return self._surface_marker in page.url

    async def ensure_on_surface(self, page: Page):
        if self.is_on_chat_surface(page):
            return
        logger.info("Navigating to Copilot...")
        with step("ensure_on_surface"):
            await page.goto(self.settings.COPILOT_URL, timeout=self._navigation_timeout_ms)
        await self.pacer.thinking_delay()

    async def start_new_chat(self, page: Page):
        logger.info("Starting new chat...")
        try:
            await self.pacer.considering_delay()
            button = await page.query_selector(self.selectors.new_chat_button)
            if button:
                await self.pacer.jitter_before_action()
                await button.click()
            else:
                await page.goto(self.settings.COPILOT_URL, timeout=self._navigation_timeout_ms)
            await self.pacer.thinking_delay()
            logger.info("New chat started")
        except PlaywrightError as e:
            logger.error(f"Error starting new chat: {e}")

    async def select_model(self, page: Page, model: CopilotModel) -> bool:
        logger.info(f"Selecting model: {model.value}")
        try:
            await self.pacer.jitter_before_action()
            button = await page.query_selector(self.selectors.model_selector_button)
            if not button:
                logger.warning("Model selector button not found, keeping current model")
                return False

            await button.click()
            await self.pacer.short_delay()

            if model in MODELS_IN_MORE_SECTION:
                await self.pacer.jitter_before_action()
                more = await page.query_selector(self.selectors.more_section)
                if more:
                    await more.click()
                    await self.pacer.short_delay()

            await self.pacer.jitter_before_action()
            option = self.selectors.model_option(model.value)
            await page.wait_for_selector(option, timeout=pacing.jitter_timeout(5000))
            await page.click(option)
            await self.pacer.short_delay()
        except PlaywrightError as e:
            logger.error(f"Error selecting model {model.value!r}, keeping current model: {e}")
            try:
                await page.keyboard.press("Escape")
            except PlaywrightError:
                pass
            return False

        logger.info(f"Model {model.value!r} selected")
        return True

    async def submit_message(self, page: Page, message: str):
        logger.info(f"Sending message ({len(message)} chars)...")
        await self.pacer.jitter_before_action()

        with step("submit_message"):
            try:
                await page.wait_for_selector(
                    self.selectors.chat_input, timeout=pacing.jitter_timeout(10000)
                )
            except PlaywrightError as e:
                raise InputNotFound(f"Chat input not found: {e}") from e

            chat_input = await page.query_selector(self.selectors.chat_input)
            if chat_input is None:
                raise InputNotFound()

            await chat_input.click()
            await self.pacer.random_delay(50, 150)
            await page.keyboard.press("Control+A")
            await self.pacer.random_delay(30, 100)
            await page.keyboard.press("Backspace")
            await self.pacer.short_delay()

            if len(message) > BULK_FILL_THRESHOLD:
                await self.pacer.thinking_delay()
                await chat_input.fill(message)
                await self.pacer.considering_delay()
            else:
                for char in message:
                    await page.keyboard.type(char)
                    await self.pacer.typing_pause()

            await self.pacer.random_delay(300, 800)
            await page.keyboard.press("Enter")

    async def wait_for_completion(self, page: Page):
        logger.info("Waiting for response...")
        deadline = time.monotonic() + self.settings.RESPONSE_TIMEOUT

        with step("await_completion"):
            try:
                await page.wait_for_selector(self.selectors.stop_button, timeout=pacing.jitter_timeout(10000))
                logger.info("Response generation started")
            except PlaywrightError:
                # Quick answers can finish before the stop button ever shows
                logger.info("Stop button not detected, checking for response directly")

            while time.monotonic() < deadline:
                await self.pacer.wait(self.settings.RESPONSE_POLL_MIN, self.settings.RESPONSE_POLL_MAX)
                stop_button = await page.query_selector(self.selectors.stop_button)
                loading = await page.query_selector(self.selectors.loading_indicator)
                if not stop_button and not loading:
                    # Let the last chunk render before extraction
                    await self.pacer.wait(self.settings.RESPONSE_SETTLE_MIN, self.settings.RESPONSE_SETTLE_MAX)
                    logger.info("Response complete")
                    return

        raise ResponseTimeout()

    async def extract_response(self, page: Page) -> str:
        for selector in self.selectors.extraction_strategies:
            try:
                elements = await page.query_selector_all(selector)
                if not elements:
                    continue
                text = await elements[-1].text_content()
            except PlaywrightError as e:
                logger.debug(f"Extraction selector failed ({selector}): {e}")
                continue
            if text and text.strip():
                return text.strip()

        raise ExtractionFailed()

    async def run_exchange(self, page: Page, message: str, model: CopilotModel, is_first_message: bool) -> str:
        await self.ensure_on_surface(page)
        await self.pacer.short_delay()

        if is_first_message:
            await self.start_new_chat(page)
            await self.pacer.short_delay()
            await self.select_model(page, model)
            await self.pacer.short_delay()

        await self.submit_message(page, message)
        await self.wait_for_completion(page)
        await self.pacer.short_delay()
        response = await self.extract_response(page)
        logger.info(f"Extracted response ({len(response)} chars)")

        await self.pacer.short_delay()
        return response

    async def chat_completion(self, page: Page, messages: list, model: CopilotModel) -> str:
        """Stateless exchange on a shared page: full history as one prompt, no chat reset."""
        await self.ensure_on_surface(page)
        await self.pacer.short_delay()
        await self.select_model(page, model)
        await self.pacer.short_delay()

        await self.submit_message(page, format_messages_as_prompt(messages))
        await self.wait_for_completion(page)
        await self.pacer.short_delay()
        response = await self.extract_response(page)

        await self.pacer.short_delay()
        return response
