"""
Scheduler - periodic memory compaction sweeps.

Supports:
- Fixed-interval sweeps after an initial delay
- Forced sweeps on demand
- Runtime enable/disable
- Never more than one sweep at a time
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from ..agent.compaction import CompactionEngine, CompactionResult
from ..memory import ConversationMemoryStore

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 300.0
DEFAULT_INITIAL_DELAY_SECONDS = 60.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SweepReport:
    """Outcome of one sweep over all stored sessions."""
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None
    sessions_scanned: int = 0
    sessions_compacted: int = 0
    sessions_failed: int = 0
    tokens_saved: int = 0
    results: list[CompactionResult] = field(default_factory=list)
    skipped: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "sessions_scanned": self.sessions_scanned,
            "sessions_compacted": self.sessions_compacted,
            "sessions_failed": self.sessions_failed,
            "tokens_saved": self.tokens_saved,
            "results": [r.to_dict() for r in self.results],
            "skipped": self.skipped,
            "error": self.error,
        }


class CompactionScheduler:
    """
    Background compaction of every non-ephemeral session.

    Features:
    - Sweeps on a fixed interval in an asyncio task
    - Per-session failure isolation
    - Overlapping sweep requests return a skipped report
    """

    def __init__(
        self,
        engine: CompactionEngine,
        memory: ConversationMemoryStore,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        initial_delay_seconds: float = DEFAULT_INITIAL_DELAY_SECONDS,
        enabled: bool = True,
        ephemeral_prefix: str = "temp-",
    ):
        self.engine = engine
        self.memory = memory
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self.ephemeral_prefix = ephemeral_prefix
        self._enabled = enabled
        self._running = False
        self._sweep_in_progress = False
        self._task: Optional[asyncio.Task] = None
        self.last_run: Optional[datetime] = None
        self.last_report: Optional[SweepReport] = None

    def is_enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        """Turn periodic sweeps on or off; a sweep already running finishes."""
        self._enabled = enabled
        logger.info(f"Automatic compaction {'enabled' if enabled else 'disabled'}")

    @property
    def sweep_in_progress(self) -> bool:
        return self._sweep_in_progress

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self._enabled,
            "running": self._running,
            "sweep_in_progress": self._sweep_in_progress,
            "interval_seconds": self.interval_seconds,
            "initial_delay_seconds": self.initial_delay_seconds,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_report": self.last_report.to_dict() if self.last_report else None,
        }

    def is_ephemeral(self, session_id: str) -> bool:
        return session_id.startswith(self.ephemeral_prefix)

    async def force_sweep(self) -> SweepReport:
        """Run a sweep now, even when periodic sweeps are disabled."""
        return await self._sweep()

    async def run_sweep(self) -> SweepReport:
        """Periodic entry point; does nothing while disabled."""
        if not self._enabled:
            logger.debug("Automatic compaction disabled, skipping sweep")
            return SweepReport(skipped=True, finished_at=_utcnow())
        return await self._sweep()

    async def _sweep(self) -> SweepReport:
        # Check and set without an await in between
        if self._sweep_in_progress:
            logger.info("Compaction sweep already in progress, skipping")
            return SweepReport(skipped=True, finished_at=_utcnow())
        self._sweep_in_progress = True

        report = SweepReport()
        try:
            await self._compact_all(report)
        except Exception as e:
            logger.error(f"Compaction sweep failed: {e}")
            report.error = str(e)
        finally:
            report.finished_at = _utcnow()
            self.last_run = report.finished_at
            self.last_report = report
            self._sweep_in_progress = False

        logger.info(
            f"Compaction sweep finished: scanned={report.sessions_scanned} "
            f"compacted={report.sessions_compacted} failed={report.sessions_failed} "
            f"tokens_saved={report.tokens_saved}"
        )
        return report

    async def _compact_all(self, report: SweepReport) -> None:
        session_ids = await self.memory.list_session_ids()
        threshold = self.engine.config.min_messages_to_compact

        for session_id in session_ids:
            if self.is_ephemeral(session_id):
                continue
            report.sessions_scanned += 1

            try:
                if await self.memory.count_messages(session_id) < threshold:
                    continue
                result = await self.engine.compact_session(session_id)
            except Exception as e:
                logger.error(f"Error compacting session {session_id}: {e}")
                report.sessions_failed += 1
                report.results.append(CompactionResult(
                    success=False,
                    messages_before=0,
                    messages_after=0,
                    estimated_tokens_saved=0,
                    message=f"Error compacting: {e}",
                    session_id=session_id,
                    error=str(e),
                ))
                continue

            report.results.append(result)
            if result.success:
                report.sessions_compacted += 1
                report.tokens_saved += result.estimated_tokens_saved
            elif result.error:
                report.sessions_failed += 1

    async def _run_loop(self):
        """Main scheduler loop."""
        try:
            await asyncio.sleep(self.initial_delay_seconds)
        except asyncio.CancelledError:
            return

        while self._running:
            try:
                await self.run_sweep()
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Scheduler error: {e}")
                await asyncio.sleep(self.interval_seconds)

    def start(self):
        """Start the scheduler."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            f"Compaction scheduler started (interval={self.interval_seconds:g}s, "
            f"initial delay={self.initial_delay_seconds:g}s)"
        )

    async def stop(self):
        """Stop the scheduler and wait for the loop to exit."""
        self._running = False
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        logger.info("Compaction scheduler stopped")
