import logging
import time
from dataclasses import dataclass

from apscheduler.schedulers.background import BackgroundScheduler

from .retention import RetentionStore
from .storage import BlobDirectory

logger = logging.getLogger(__name__)

JOB_ID = "expiry-sweep"


@dataclass
class SweepResult:
    scanned: int = 0
    deleted: int = 0
    failed: int = 0
    pruned_groups: int = 0


class ExpirySweeper:
    """Deletes blobs whose modification time is older than the retention window.

    Each file is handled on its own: a failure is logged and counted, and the
    sweep moves on. With ``prune_stale_groups`` the sweeper also drops groups
    none of whose blobs remain; otherwise the group map is left alone.
    """

    def __init__(
        self,
        blobs: BlobDirectory,
        expiry_hours: float,
        interval_minutes: float,
        store: RetentionStore | None = None,
        prune_stale_groups: bool = False,
    ):
        self.blobs = blobs
        self.expiry_seconds = expiry_hours * 3600
        self.interval_minutes = interval_minutes
        self.store = store
        self.prune_stale_groups = prune_stale_groups
        self._scheduler: BackgroundScheduler | None = None

    def sweep(self, now: float | None = None) -> SweepResult:
        now = time.time() if now is None else now
        result = SweepResult()
        logger.info("Running cleanup check...")

        for blob in self.blobs.iter_blobs():
            result.scanned += 1
            if now - blob.mtime <= self.expiry_seconds:
                continue
            try:
                if self.blobs.delete(blob.name):
                    result.deleted += 1
                    logger.info("Deleted expired file: %s", blob.name)
            except OSError:
                result.failed += 1
                logger.exception("Failed to delete expired file: %s", blob.name)

        if self.prune_stale_groups and self.store is not None:
            result.pruned_groups = self._prune_groups()

        logger.info(
            "Cleanup finished: scanned=%d deleted=%d failed=%d pruned_groups=%d",
            result.scanned, result.deleted, result.failed, result.pruned_groups,
        )
        return result

    def _prune_groups(self) -> int:
        stale = []
        for group_id in self.store.group_ids():
            entries = self.store.get_group(group_id) or []
            if not any(self.blobs.exists(e) for e in entries):
                stale.append(group_id)
        if not stale:
            return 0
        try:
            removed = self.store.remove_groups(stale)
        except Exception:
            logger.exception("Failed to prune %d stale group(s)", len(stale))
            return 0
        logger.info("Pruned %d stale group(s)", removed)
        return removed

    def _run(self) -> None:
        try:
            self.sweep()
        except Exception:
            logger.exception("Cleanup error")

    def start(self) -> None:
        if self._scheduler is not None:
            return
        scheduler = BackgroundScheduler()
        scheduler.add_job(
            self._run,
            "interval",
            minutes=self.interval_minutes,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "Expiry sweeper started: every %g min, expiry %g h",
            self.interval_minutes, self.expiry_seconds / 3600,
        )

    def shutdown(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
