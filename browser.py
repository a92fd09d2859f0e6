import asyncio
import platform
import random
import time
from contextlib import AsyncExitStack
from typing import Optional
from urllib.parse import urlparse

from playwright.async_api import BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright_stealth import Stealth
import logging

from config import Settings, settings as default_settings
from page_selectors import DEFAULT_SELECTORS, Selectors

logger = logging.getLogger(__name__)

UA_POOL = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
]

LOGIN_DOMAINS = (
    "login.microsoftonline.com",
    "login.live.com",
    "login.microsoft.com",
    "duo.com",
    "duosecurity.com",
)

COPILOT_DOMAINS = (
    "m365.cloud.microsoft",
    "copilot.microsoft.com",
    "microsoft365.com",
)

# A signed-in chat page is far bigger than an error or interstitial page
MIN_AUTHENTICATED_CONTENT = 5000


def is_wsl() -> bool:
    release = platform.release().lower()
    return "microsoft" in release or "wsl" in release


def browser_args(wsl: bool) -> list:
    args = [
        "--disable-blink-features=AutomationControlled",
        "--no-sandbox",
        "--disable-setuid-sandbox",
    ]
    if wsl:
        args += [
            "--disable-gpu",
            "--disable-software-rasterizer",
            "--disable-dev-shm-usage",
            "--use-gl=swiftshader",
            "--window-position=100,100",
            "--window-size=1280,720",
            "--disable-features=VizDisplayCompositor",
            "--force-device-scale-factor=1",
        ]
    return args


class BrowserManager:
    """Owns the single persistent browser profile and its default page."""

    def __init__(self, settings: Settings = default_settings, selectors: Selectors = DEFAULT_SELECTORS):
        self.settings = settings
        self.selectors = selectors
        self.playwright = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self.exit_stack = AsyncExitStack()
        self.current_headless = True
        self.current_ua = None
        self._initializing: Optional[asyncio.Task] = None

    @property
    def is_initialized(self) -> bool:
        return self.context is not None

    @property
    def is_headless(self) -> bool:
        return self.current_headless

    def _get_user_agent(self):
        if self.settings.USER_AGENT and self.settings.USER_AGENT.strip():
            logger.info("Using custom User-Agent from config")
            return self.settings.USER_AGENT.strip()

        ua = random.choice(UA_POOL)
        logger.info(f"Using random User-Agent: {ua[:30]}...")
        return ua

    async def initialize(self, headless: Optional[bool] = None):
        if headless is None:
            headless = self.settings.HEADLESS

        if self._initializing is not None:
            await asyncio.shield(self._initializing)
            return

        if self.is_initialized and self.current_headless != headless:
            await self.close()

        if self.is_initialized:
            return

        self._initializing = asyncio.ensure_future(self._launch(headless))
        try:
            await self._initializing
        finally:
            self._initializing = None

    async def _launch(self, headless: bool):
        wsl = is_wsl()
        data_dir = self.settings.BROWSER_DATA_DIR
        data_dir.mkdir(parents=True, exist_ok=True)

        if wsl:
            logger.info("WSL2 environment detected, using WSL2-friendly launch flags")
        logger.info(f"Launching browser (headless: {headless}), profile: {data_dir}")

        self.current_ua = self._get_user_agent()

        stealth_ctx = Stealth().use_async(async_playwright())
        try:
            self.playwright = await self.exit_stack.enter_async_context(stealth_ctx)
            self.context = await self.playwright.chromium.launch_persistent_context(
                str(data_dir),
                headless=headless,
                args=browser_args(wsl),
                viewport={"width": 1280, "height": 720},
                user_agent=self.current_ua,
                locale="en-US",
                slow_mo=100 if (wsl or not headless) else 0,
                timeout=60000 if wsl else 30000,
            )
        except BaseException:
            await self.exit_stack.aclose()
            self.exit_stack = AsyncExitStack()
            self.playwright = None
            raise

        pages = self.context.pages
        self.page = pages[0] if pages else await self.context.new_page()

        if not headless:
            try:
                await self.page.bring_to_front()
            except PlaywrightError:
                pass

        self.current_headless = headless
        logger.info("Browser initialized")

    async def get_page(self) -> Page:
        if not self.is_initialized or self.page is None:
            await self.initialize()
        return self.page

    async def get_context(self) -> BrowserContext:
        if not self.is_initialized:
            await self.initialize()
        return self.context

    async def is_on_surface(self, page: Page) -> bool:
        """Classify the page as signed in to Copilot. Never navigates."""
        try:
            host = urlparse(page.url).hostname or ""
            logger.debug(f"Checking URL: {page.url}")

            if any(host == d or host.endswith("." + d) for d in LOGIN_DOMAINS):
                return False

            if not any(host == d or host.endswith("." + d) for d in COPILOT_DOMAINS):
                return False

            content = await page.content()
            if len(content) <= MIN_AUTHENTICATED_CONTENT:
                return False

            if await page.query_selector(self.selectors.login_form):
                return False

            logger.info("Detected Copilot chat page, signed in")
            return True
        except PlaywrightError as e:
            logger.error(f"Error checking page state: {e}")
            return False

    async def check_login_status(self) -> bool:
        await self.initialize(headless=True)
        page = await self.get_page()
        try:
            await page.goto(self.settings.COPILOT_URL, timeout=self.settings.NAVIGATION_TIMEOUT * 1000)
            await page.wait_for_timeout(3000)
        except PlaywrightError as e:
            logger.error(f"Error checking login state: {e}")
            return False
        return await self.is_on_surface(page)

    async def wait_for_login_completion(self, page: Page, timeout: float) -> bool:
        # Only observes the page; the user may be halfway through username,
        # password or 2FA steps.
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if await self.is_on_surface(page):
                return True
            await asyncio.sleep(self.settings.LOGIN_POLL_INTERVAL)
        return False

    async def perform_login(self, timeout: Optional[float] = None) -> bool:
        if timeout is None:
            timeout = self.settings.LOGIN_TIMEOUT

        await self.close()
        await self.initialize(headless=False)
        page = await self.get_page()

        try:
            await page.goto(self.settings.COPILOT_URL, timeout=self.settings.NAVIGATION_TIMEOUT * 1000)
        except PlaywrightError as e:
            # The redirect to the sign-in page races the initial navigation
            if "interrupted by another navigation" not in str(e):
                raise

        if is_wsl():
            # WSLg often leaves a fresh window blank until it is resized
            await page.wait_for_timeout(1000)
            try:
                await page.evaluate(
                    'window.dispatchEvent(new Event("resize"));'
                    ' document.body.style.opacity = "0.99";'
                    ' setTimeout(() => { document.body.style.opacity = "1"; }, 100);'
                )
            except PlaywrightError as e:
                logger.debug(f"Window repaint failed: {e}")

        print("")
        print("=" * 60)
        print("LOGIN REQUIRED")
        print("A browser window has opened. Sign in to your Microsoft account.")
        print("Multi-step sign-in (username, password, 2FA) is supported.")
        print("The window closes by itself once sign-in is detected.")
        if is_wsl():
            print("Running under WSL2: if the window is blank, move or resize it.")
        print(f"Waiting up to {int(timeout // 60)} minutes...")
        print("=" * 60)
        print("")

        if await self.wait_for_login_completion(page, timeout):
            logger.info("Login successful, switching to headless mode")
            await self.close()
            await self.initialize(headless=True)
            return True

        logger.error("Login timeout - user did not complete login in time")
        return False

    async def ensure_logged_in(self) -> bool:
        logger.info("Checking login status...")
        if await self.check_login_status():
            logger.info("Already logged in to Microsoft account")
            return True

        logger.info("Not logged in, starting interactive login")
        return await self.perform_login()

    async def close(self):
        if self.context:
            logger.info("Closing browser...")
            try:
                await self.context.close()
            finally:
                self.context = None
                self.page = None
                await self.exit_stack.aclose()
                self.exit_stack = AsyncExitStack()
                self.playwright = None
