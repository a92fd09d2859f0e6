import time

import pytest
from playwright.async_api import Error as PlaywrightError

import config
from copilot import CopilotDriver, format_messages_as_prompt
from errors import ExtractionFailed, InputNotFound, InteractionError, ResponseTimeout
from models import CopilotModel
from page_selectors import DEFAULT_SELECTORS as SEL

from conftest import COPILOT_URL, FakePage


@pytest.fixture
def driver(test_settings):
    return CopilotDriver(test_settings)


def chat_page(reply: str = "Hello from Copilot") -> FakePage:
    page = FakePage(COPILOT_URL)
    page.add(SEL.chat_input, name="input")
    if reply is not None:
        page.add(SEL.assistant_message, text="older reply")
        page.add(SEL.assistant_message, text=f"  {reply}\n")
    return page


@pytest.mark.asyncio
async def test_follow_up_exchange_types_and_extracts(driver):
    page = chat_page()

    reply = await driver.run_exchange(page, "hi", CopilotModel.AUTO, is_first_message=False)

    assert reply == "Hello from Copilot"
    assert page.typed == "hi"
    assert ("press", "Control+A") in page.calls
    assert ("press", "Backspace") in page.calls
    assert page.calls[-1] == ("press", "Enter")
    # no reset or model picking on a follow-up
    assert not any(call[0] == "goto" for call in page.calls)
    assert not any("model" in str(call) for call in page.calls)


@pytest.mark.asyncio
async def test_first_message_resets_and_selects_model_before_submitting(driver):
    page = chat_page()
    page.add(SEL.new_chat_button, name="new-chat")
    page.add(SEL.model_selector_button, name="model-picker")
    page.add(SEL.model_option(CopilotModel.THINK.value), name="think-option")

    await driver.run_exchange(page, "hi", CopilotModel.THINK, is_first_message=True)

    clicks = [call[1] for call in page.calls if call[0] == "click"]
    assert clicks[:4] == ["new-chat", "model-picker", SEL.model_option(CopilotModel.THINK.value), "input"]


@pytest.mark.asyncio
async def test_first_message_survives_missing_controls(driver):
    page = chat_page()

    reply = await driver.run_exchange(page, "hi", CopilotModel.AUTO, is_first_message=True)

    assert reply == "Hello from Copilot"
    # no new-chat button: falls back to reloading the chat page
    assert page.calls[0] == ("goto", COPILOT_URL)
    assert page.typed == "hi"


@pytest.mark.asyncio
async def test_first_message_attempts_reset_and_model_even_when_both_fail(driver):
    page = chat_page()
    page.goto_error = PlaywrightError("net::ERR_ABORTED")
    page.add(SEL.model_selector_button, name="model-picker")

    reply = await driver.run_exchange(page, "hi", CopilotModel.THINK, is_first_message=True)

    assert reply == "Hello from Copilot"
    submitted = page.calls.index(("click", "input"))
    assert page.calls.index(("goto", COPILOT_URL)) < submitted
    assert page.calls.index(("click", "model-picker")) < submitted
    assert page.calls.index(("press", "Escape")) < submitted
    assert page.calls.index(("goto", COPILOT_URL)) < page.calls.index(("click", "model-picker"))


@pytest.mark.asyncio
async def test_model_option_missing_presses_escape_and_continues(driver):
    page = chat_page()
    page.add(SEL.model_selector_button, name="model-picker")
    page.add(SEL.more_section, name="more")

    assert await driver.select_model(page, CopilotModel.GPT52_QUICK) is False
    assert ("click", "more") in page.calls
    assert page.calls[-1] == ("press", "Escape")

    reply = await driver.run_exchange(page, "hi", CopilotModel.GPT52_QUICK, is_first_message=True)
    assert reply == "Hello from Copilot"


@pytest.mark.asyncio
async def test_more_section_only_opened_for_secondary_models(driver):
    page = chat_page()
    page.add(SEL.model_selector_button, name="model-picker")
    page.add(SEL.more_section, name="more")
    page.add(SEL.model_option(CopilotModel.QUICK.value), name="quick")

    assert await driver.select_model(page, CopilotModel.QUICK) is True
    assert ("click", "more") not in page.calls


@pytest.mark.asyncio
async def test_new_chat_errors_are_swallowed(driver):
    page = chat_page()
    page.goto_error = PlaywrightError("navigation failed")

    await driver.start_new_chat(page)

    assert page.calls == [("goto", COPILOT_URL)]


@pytest.mark.asyncio
async def test_navigates_when_off_surface(driver):
    page = chat_page()
    page.url = "https://example.com/elsewhere"

    await driver.run_exchange(page, "hi", CopilotModel.AUTO, is_first_message=False)

    assert page.calls[0] == ("goto", COPILOT_URL)


@pytest.mark.asyncio
async def test_navigation_failure_is_fatal(driver):
    page = chat_page()
    page.url = "about:blank"
    page.goto_error = PlaywrightError("Timeout 60000ms exceeded")

    with pytest.raises(InteractionError) as exc_info:
        await driver.run_exchange(page, "hi", CopilotModel.AUTO, is_first_message=False)
    assert exc_info.value.step == "ensure_on_surface"


@pytest.mark.asyncio
async def test_long_messages_are_filled_in_bulk(driver):
    page = chat_page()
    message = "x" * 201

    await driver.submit_message(page, message)

    assert ("fill", message) in page.calls
    assert page.typed == ""


@pytest.mark.asyncio
async def test_missing_input_raises_input_not_found(driver):
    page = FakePage(COPILOT_URL)

    with pytest.raises(InputNotFound) as exc_info:
        await driver.run_exchange(page, "hi", CopilotModel.AUTO, is_first_message=False)
    assert exc_info.value.step == "submit_message"


@pytest.mark.asyncio
async def test_never_finishing_generation_times_out(driver):
    page = chat_page()
    page.add(SEL.stop_button, name="stop")

    with pytest.raises(ResponseTimeout):
        await driver.run_exchange(page, "hi", CopilotModel.AUTO, is_first_message=False)


@pytest.mark.asyncio
async def test_loading_indicator_also_blocks_completion(driver):
    page = chat_page()
    page.add(SEL.loading_indicator, name="typing")

    with pytest.raises(ResponseTimeout):
        await driver.wait_for_completion(page)


@pytest.mark.asyncio
async def test_extraction_uses_first_strategy_with_text(driver):
    page = FakePage(COPILOT_URL)
    page.add(SEL.last_assistant_message, text="   ")
    page.add(SEL.response_container, text="from container")
    page.add(SEL.any_message, text="generic")

    assert await driver.extract_response(page) == "from container"


@pytest.mark.asyncio
async def test_extraction_falls_back_to_generic_message(driver):
    page = FakePage(COPILOT_URL)
    page.add(SEL.any_message, text="first")
    page.add(SEL.any_message, text="last")

    assert await driver.extract_response(page) == "last"


@pytest.mark.asyncio
async def test_nothing_to_extract_fails(driver):
    page = chat_page(reply=None)

    with pytest.raises(ExtractionFailed) as exc_info:
        await driver.run_exchange(page, "hi", CopilotModel.AUTO, is_first_message=False)
    assert exc_info.value.step == "extract_response"


@pytest.mark.asyncio
async def test_stateless_completion_sends_formatted_history(driver):
    page = chat_page()
    messages = [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "hi"},
    ]

    reply = await driver.chat_completion(page, messages, CopilotModel.AUTO)

    assert reply == "Hello from Copilot"
    assert page.typed == "[System Instructions]\nBe brief.\n\nhi"


def test_format_single_message_is_verbatim():
    assert format_messages_as_prompt([{"role": "user", "content": "hello"}]) == "hello"


def test_format_history_labels_roles():
    prompt = format_messages_as_prompt([
        {"role": "system", "content": "You are terse."},
        {"role": "user", "content": "What is 2+2?"},
        {"role": "assistant", "content": "4"},
        {"role": "user", "content": "And 3+3?"},
    ])

    assert prompt == (
        "[System Instructions]\nYou are terse.\n\n"
        "What is 2+2?\n\n"
        "[Previous Assistant Response]\n4\n\n"
        "And 3+3?"
    )


class CountingPage(FakePage):
    def __init__(self, url: str = COPILOT_URL):
        super().__init__(url)
        self.queries = []

    async def query_selector(self, selector: str):
        self.queries.append(selector)
        return await super().query_selector(selector)


@pytest.mark.asyncio
async def test_driver_uses_its_own_delay_scale(driver, monkeypatch):
    monkeypatch.setattr(config.settings, "DELAY_SCALE", 1.0)
    page = chat_page()

    started = time.monotonic()
    reply = await driver.run_exchange(page, "hello there", CopilotModel.AUTO, is_first_message=False)

    assert reply == "Hello from Copilot"
    assert time.monotonic() - started < 0.5


@pytest.mark.asyncio
async def test_response_polling_is_not_scaled_away(driver, test_settings):
    test_settings.RESPONSE_POLL_MIN = 0.05
    test_settings.RESPONSE_POLL_MAX = 0.05
    page = CountingPage()
    page.add(SEL.stop_button, name="stop")

    with pytest.raises(ResponseTimeout):
        await driver.wait_for_completion(page)

    # 0.2s of polling every 0.05s, not a busy loop
    assert 2 <= page.queries.count(SEL.stop_button) <= 6


@pytest.mark.asyncio
async def test_settle_delay_survives_zero_delay_scale(driver, test_settings):
    test_settings.RESPONSE_SETTLE_MIN = 0.1
    test_settings.RESPONSE_SETTLE_MAX = 0.1
    page = chat_page()

    started = time.monotonic()
    await driver.wait_for_completion(page)

    assert driver.pacer.scale == 0.0
    assert time.monotonic() - started >= 0.09
