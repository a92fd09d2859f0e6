"""Per-conversation browser tabs.

Each session owns one page in the shared browser context, so separate
conversations keep separate Copilot chat histories.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Dict, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def _now() -> float:
    return time.time()


@dataclass
class Session:
    id: str
    page: Page
    created_at: float
    last_activity_at: float
    message_count: int = 0


class SessionManager:
    def __init__(self, browser, settings: Settings = default_settings):
        self.browser = browser
        self.settings = settings
        self.max_sessions = settings.MAX_SESSIONS
        self.idle_timeout = settings.SESSION_IDLE_TIMEOUT
        self.sweep_interval = settings.SESSION_SWEEP_INTERVAL
        self._sessions: Dict[str, Session] = {}
        self._create_lock = asyncio.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    def start(self):
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep_idle()
            except Exception:
                logger.exception("Idle session sweep failed")

    async def sweep_idle(self) -> int:
        now = _now()
        expired = [s.id for s in list(self._sessions.values()) if now - s.last_activity_at > self.idle_timeout]
        for session_id in expired:
            logger.info(f"Closing expired session: {session_id}")
            await self.close(session_id)
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired session(s). Active: {len(self._sessions)}")
        return len(expired)

    def _oldest(self) -> Optional[Session]:
        oldest = None
        for session in self._sessions.values():
            if oldest is None or session.last_activity_at < oldest.last_activity_at:
                oldest = session
        return oldest

    async def create(self) -> Session:
        async with self._create_lock:
            if len(self._sessions) >= self.max_sessions:
                await self.sweep_idle()
                oldest = self._oldest()
                if len(self._sessions) >= self.max_sessions and oldest is not None:
                    logger.info(f"Max sessions reached, closing oldest: {oldest.id}")
                    await self.close(oldest.id)

            context = await self.browser.get_context()
            page = await context.new_page()
            try:
                await page.goto(self.settings.COPILOT_URL, timeout=self.settings.NAVIGATION_TIMEOUT * 1000)
            except PlaywrightError:
                await page.close()
                raise

            now = _now()
            session = Session(id=str(uuid.uuid4()), page=page, created_at=now, last_activity_at=now)
            self._sessions[session.id] = session
            logger.info(f"Created new session: {session.id}. Active sessions: {len(self._sessions)}")
            return session

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def has(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def get_or_create(self, session_id: Optional[str] = None) -> Session:
        """Return the live session for ``session_id`` or a new one.

        An unknown id never fails; a fresh session with a *different* id is
        returned, so callers must use the id on the result.
        """
        if session_id:
            existing = self._sessions.get(session_id)
            if existing:
                existing.last_activity_at = _now()
                return existing
            logger.info(f"Session not found: {session_id}, creating new one")
        return await self.create()

    def touch(self, session_id: str):
        session = self._sessions.get(session_id)
        if session:
            session.last_activity_at = _now()
            session.message_count += 1

    async def close(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False

        try:
            await session.page.close()
        except PlaywrightError as e:
            logger.error(f"Error closing page for session {session_id}: {e}")

        logger.info(f"Closed session: {session_id}. Active sessions: {len(self._sessions)}")
        return True

    async def close_all(self):
        logger.info(f"Closing all {len(self._sessions)} sessions...")
        await asyncio.gather(*(self.close(session_id) for session_id in list(self._sessions)))

        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

    def stats(self) -> dict:
        now = _now()
        return {
            "active_sessions": len(self._sessions),
            "max_sessions": self.max_sessions,
            "sessions": [
                {
                    "id": s.id,
                    "created_at": int(s.created_at),
                    "last_activity_at": int(s.last_activity_at),
                    "message_count": s.message_count,
                    "idle_minutes": int((now - s.last_activity_at) // 60),
                }
                for s in self._sessions.values()
            ],
        }
