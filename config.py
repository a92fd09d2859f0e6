from pydantic import Field
from pydantic_settings import BaseSettings
from dotenv import load_dotenv
from pathlib import Path
from typing import Optional

# Export .env into os.environ as well, so Playwright picks up
# PLAYWRIGHT_BROWSERS_PATH and friends.
load_dotenv()


class Settings(BaseSettings):
    HOST: str = "0.0.0.0"
    PORT: int = 4891
    LOG_LEVEL: str = "info"

    HEADLESS: bool = True
    BROWSER_DATA_DIR: Path = Path.home() / ".copilot-proxy" / "browser-data"
    USER_AGENT: Optional[str] = None
    COPILOT_URL: str = "https://m365.cloud.microsoft/chat"

    # All timeouts and intervals are in seconds
    NAVIGATION_TIMEOUT: float = 60.0
    RESPONSE_TIMEOUT: float = 120.0
    LOGIN_TIMEOUT: float = 300.0
    LOGIN_POLL_INTERVAL: float = 2.0
    # Response polling is not affected by DELAY_SCALE
    RESPONSE_POLL_MIN: float = 0.4
    RESPONSE_POLL_MAX: float = 0.8
    RESPONSE_SETTLE_MIN: float = 0.8
    RESPONSE_SETTLE_MAX: float = 1.5

    MAX_QUEUE_SIZE: int = 100
    REQUEST_TIMEOUT: float = 180.0

    MAX_SESSIONS: int = Field(10, ge=1)
    SESSION_IDLE_TIMEOUT: float = 30 * 60
    SESSION_SWEEP_INTERVAL: float = 5 * 60

    STATELESS_MODE: bool = False
    MAX_REQUESTS_PER_MIN: int = 60
    DELAY_SCALE: float = 1.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
