from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, List, Optional

from .cloud_sync import CloudSyncEngine, SyncResult
from .errors import StorageError
from .log import get_logger
from .model import DAY_MS, now_ms
from .repository import SettingsRepository, SyncStatusRepository

log = get_logger(__name__)

MAX_RECENT_ATTEMPTS = 10
LOOP_WINDOW_MS = 2000
LOOP_THRESHOLD = 3


class SyncTrigger(str, Enum):
    EXPLICIT = "explicit"
    DAILY_AUTO = "daily_auto"
    RECOVERY_UPLOAD = "recovery_upload"
    RECOVERY_DOWNLOAD = "recovery_download"


class GuardState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    COOLING_DOWN = "cooling_down"


_RECOVERY = (SyncTrigger.RECOVERY_UPLOAD, SyncTrigger.RECOVERY_DOWNLOAD)

OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"
OUTCOME_BLOCKED = "blocked"


@dataclass
class GuardDecision:
    granted: bool
    trigger: SyncTrigger
    reason: Optional[str] = None


@dataclass
class SyncAttempt:
    trigger: SyncTrigger
    at: int
    granted: bool
    reason: Optional[str] = None


@dataclass
class SyncOutcome:
    status: str
    trigger: SyncTrigger
    reason: Optional[str] = None
    result: Optional[SyncResult] = None

    @property
    def blocked(self) -> bool:
        return self.status == OUTCOME_BLOCKED


def _hours(ms: int) -> str:
    return f"{ms / 3_600_000:.1f}h"


class SyncGuard:
    """Decides when the sync engine may run.

    ``try_enter`` is the only place that flips the guard into SYNCING and it
    never awaits, so two callers on the same event loop cannot both pass the
    in-flight check. Only ``explicit`` and ``daily_auto`` runs move
    ``lastSyncAt``; recovery runs are partial and leave it alone.
    """

    def __init__(
        self,
        status_repo: SyncStatusRepository,
        *,
        settings_repo: Optional[SettingsRepository] = None,
        interval_ms: int = DAY_MS,
        clock: Callable[[], int] = now_ms,
    ):
        self.status_repo = status_repo
        self.settings_repo = settings_repo
        self.interval_ms = interval_ms
        self.clock = clock
        self._in_flight: Optional[SyncTrigger] = None
        self._attempts: Deque[SyncAttempt] = deque(maxlen=MAX_RECENT_ATTEMPTS)
        self._auto_times: List[int] = []

    @property
    def state(self) -> GuardState:
        if self._in_flight is not None:
            return GuardState.SYNCING
        last = self.status_repo.load().last_sync_at
        if last is not None and self.clock() - last < self.interval_ms:
            return GuardState.COOLING_DOWN
        return GuardState.IDLE

    def recent_attempts(self) -> List[SyncAttempt]:
        return list(self._attempts)

    def try_enter(self, trigger: SyncTrigger | str) -> GuardDecision:
        trigger = SyncTrigger(trigger)
        now = self.clock()
        reason = self._refusal(trigger, now)
        decision = GuardDecision(granted=reason is None, trigger=trigger, reason=reason)
        self._attempts.append(SyncAttempt(trigger=trigger, at=now, granted=decision.granted, reason=reason))
        if not decision.granted:
            return decision

        self._in_flight = trigger
        if trigger is SyncTrigger.DAILY_AUTO:
            try:
                self.status_repo.save_daily_attempt(now)
            except StorageError as e:
                log.error("Failed to record daily sync attempt: %s", e)
        return decision

    def _refusal(self, trigger: SyncTrigger, now: int) -> Optional[str]:
        if self._in_flight is not None:
            return f"a sync is already running ({self._in_flight.value})"
        if trigger is SyncTrigger.EXPLICIT:
            return None

        self._auto_times = [t for t in self._auto_times if now - t < LOOP_WINDOW_MS]
        self._auto_times.append(now)
        if len(self._auto_times) >= LOOP_THRESHOLD:
            log.warning("Sync loop suspected: %d attempts within %d ms.", len(self._auto_times), LOOP_WINDOW_MS)
            return "too many sync attempts in a short time"
        if trigger in _RECOVERY:
            return None

        if self.settings_repo is not None and not self.settings_repo.load().auto_sync_enabled:
            return "automatic sync is disabled"
        status = self.status_repo.load()
        if status.last_sync_at is not None and now - status.last_sync_at < self.interval_ms:
            return f"last sync was {_hours(now - status.last_sync_at)} ago"
        attempted = self.status_repo.load_daily_attempt()
        if attempted is not None and now - attempted < self.interval_ms:
            return f"daily sync already attempted {_hours(now - attempted)} ago"
        return None

    def complete(self, trigger: SyncTrigger | str, result: Optional[SyncResult]) -> None:
        trigger = SyncTrigger(trigger)
        if self._in_flight is None:
            log.warning("complete(%s) called with no sync in flight.", trigger.value)
        self._in_flight = None
        if trigger in _RECOVERY or result is None or not result.success or result.completed_at is None:
            return
        status = self.status_repo.load()
        status.last_sync_at = result.completed_at
        status.last_upload_count = result.uploaded
        status.last_download_count = result.downloaded
        self._save_status(status)

    async def run(self, trigger: SyncTrigger | str, engine: CloudSyncEngine) -> SyncOutcome:
        decision = self.try_enter(trigger)
        trigger = decision.trigger
        if not decision.granted:
            log.info("Sync (%s) blocked: %s", trigger.value, decision.reason)
            return SyncOutcome(status=OUTCOME_BLOCKED, trigger=trigger, reason=decision.reason)

        result: Optional[SyncResult] = None
        try:
            result = await self._execute(trigger, engine)
        except Exception as e:
            log.error("Sync (%s) raised: %s", trigger.value, e)
            result = SyncResult(success=False, error=str(e) or type(e).__name__, completed_at=self.clock())
        finally:
            self.complete(trigger, result)

        if result.success:
            log.info("Sync (%s) done: %d up, %d down.", trigger.value, result.uploaded, result.downloaded)
            return SyncOutcome(status=OUTCOME_COMPLETED, trigger=trigger, result=result)
        log.warning("Sync (%s) failed: %s", trigger.value, result.error)
        return SyncOutcome(status=OUTCOME_FAILED, trigger=trigger, reason=result.error, result=result)

    async def _execute(self, trigger: SyncTrigger, engine: CloudSyncEngine) -> SyncResult:
        if trigger is SyncTrigger.RECOVERY_UPLOAD:
            up = await engine.upload_all()
            if not up.success:
                return SyncResult(success=False, error=up.error, completed_at=self.clock())
            trash = await engine.upload_trash()
            return SyncResult(
                success=True,
                uploaded=up.uploaded,
                trash_uploaded=trash.uploaded,
                completed_at=self.clock(),
            )
        if trigger is SyncTrigger.RECOVERY_DOWNLOAD:
            down = await engine.download_all()
            if not down.success:
                return SyncResult(success=False, error=down.error, completed_at=self.clock())
            trash = await engine.download_trash()
            return SyncResult(
                success=True,
                downloaded=down.downloaded,
                trash_downloaded=trash.downloaded,
                completed_at=self.clock(),
            )
        return await engine.sync_all()

    def reset(self) -> None:
        """Forget everything, e.g. on sign-out."""
        self._in_flight = None
        self._attempts.clear()
        self._auto_times = []
        try:
            self.status_repo.clear()
        except StorageError as e:
            log.error("Failed to clear sync status: %s", e)

    def _save_status(self, status) -> None:
        try:
            self.status_repo.save(status)
        except StorageError as e:
            log.error("Failed to record sync status: %s", e)
