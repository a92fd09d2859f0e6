import logging
from dataclasses import dataclass

from browser import BrowserManager
from config import Settings, settings as default_settings
from copilot import CopilotDriver
from errors import LoginTimeout
from request_queue import RequestQueue
from sessions import SessionManager

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the request handlers need, built once by the entry point."""
    settings: Settings
    browser: BrowserManager
    sessions: SessionManager
    queue: RequestQueue
    driver: CopilotDriver

    async def startup(self):
        if not await self.browser.ensure_logged_in():
            raise LoginTimeout("Login failed or timed out. Please restart and try again.")
        self.sessions.start()
        logger.info("Copilot proxy ready")

    async def shutdown(self):
        logger.info("Shutting down...")
        self.queue.clear()
        await self.sessions.close_all()
        await self.browser.close()
        logger.info("Shutdown complete")


def build_services(settings: Settings = default_settings) -> Services:
    browser = BrowserManager(settings)
    return Services(
        settings=settings,
        browser=browser,
        sessions=SessionManager(browser, settings),
        queue=RequestQueue(settings.MAX_QUEUE_SIZE, settings.REQUEST_TIMEOUT),
        driver=CopilotDriver(settings),
    )
