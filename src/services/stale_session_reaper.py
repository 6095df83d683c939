"""
Stale session reaper.
Cancels upload sessions that have been idle longer than the configured timeout.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from src.core import config
from src.core.exceptions import MediaUploadException
from src.services.upload_orchestrator import UploadOrchestrator

logger = logging.getLogger(__name__)


class StaleSessionReaper:
    """Periodic sweep over active sessions."""

    def __init__(
        self,
        orchestrator: UploadOrchestrator,
        stale_after_seconds: Optional[int] = None,
        interval_seconds: Optional[int] = None
    ):
        self.orchestrator = orchestrator
        self.stale_after = timedelta(
            seconds=stale_after_seconds if stale_after_seconds is not None
            else config.settings.stale_session_timeout_seconds
        )
        self.interval_seconds = interval_seconds if interval_seconds is not None else config.settings.reaper_interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def sweep(self, now: Optional[datetime] = None) -> List[str]:
        """
        Cancel every non-terminal session whose last activity is older than the timeout.

        Args:
            now: Reference time, defaults to the current UTC time

        Returns:
            Ids of the sessions that were reaped
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.stale_after
        reaped = []

        for session in await self.orchestrator.list_active_sessions():
            if session.last_activity_at >= cutoff:
                continue
            try:
                await self.orchestrator.cancel_upload(session.session_id)
            except MediaUploadException as e:
                logger.warning("Could not reap session %s: %s", session.session_id, e.message)
                continue
            logger.info(
                "Reaped stale session %s (idle since %s)",
                session.session_id, session.last_activity_at.isoformat()
            )
            reaped.append(session.session_id)

        try:
            await self.orchestrator.release_finished_sessions()
        except MediaUploadException as e:
            logger.warning("Could not release local session state: %s", e.message)

        if reaped:
            logger.info("Reaper sweep cancelled %d stale sessions", len(reaped))
        return reaped

    def start(self) -> None:
        """Run the sweep every interval on the current event loop."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Stale session reaper started (interval=%ss, timeout=%s)", self.interval_seconds, self.stale_after)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Stale session reaper stopped")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep()
            except MediaUploadException as e:
                logger.error("Reaper sweep failed: %s", e.message)
            except Exception:
                logger.exception("Reaper sweep failed unexpectedly")
