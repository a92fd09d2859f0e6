"""DOM selectors for the M365 Copilot chat interface.

These track Microsoft's markup and will need updating when the UI changes.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class Selectors:
    # Model picker
    model_selector_button: str = (
        '[data-testid="model-selector"], button:has-text("Auto"), '
        'button:has-text("Quick response"), button:has-text("Think deeper")'
    )
    more_section: str = 'button:has-text("More"), [aria-expanded]:has-text("More")'

    # Chat input
    chat_input: str = 'textarea[placeholder*="Message"], textarea[aria-label*="Message"], [contenteditable="true"]'

    # Responses, most specific first
    last_assistant_message: str = (
        '[data-testid="assistant-message"]:last-of-type, [data-message-author="assistant"]:last-of-type'
    )
    assistant_message: str = '[data-testid="assistant-message"], [data-message-author="assistant"]'
    response_container: str = '[data-testid="message-content"], .message-content, [class*="response"]'
    any_message: str = '[class*="message"], [data-testid*="message"]'

    # Generation state
    stop_button: str = 'button:has-text("Stop"), button[aria-label*="Stop"]'
    loading_indicator: str = '[data-testid="loading"], [class*="loading"], [class*="typing"]'

    new_chat_button: str = 'button:has-text("New chat"), [aria-label*="New chat"]'

    login_form: str = 'input[type="email"], input[type="password"], form[action*="login"]'

    def model_option(self, model_name: str) -> str:
        return (
            f'[role="option"]:has-text("{model_name}"), '
            f'[role="menuitem"]:has-text("{model_name}"), '
            f'button:has-text("{model_name}")'
        )

    @property
    def extraction_strategies(self) -> tuple:
        return (
            self.last_assistant_message,
            self.assistant_message,
            self.response_container,
            self.any_message,
        )


DEFAULT_SELECTORS = Selectors()
