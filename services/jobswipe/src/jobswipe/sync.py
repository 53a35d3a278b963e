from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable, Callable

from common.utils import now_utc_iso
from fastapi.concurrency import run_in_threadpool

from jobswipe.config import DEFAULT_SYNC_INTERVAL_HOURS
from jobswipe.feed import FeedFetchError, fetch_jobs
from jobswipe.models import JobDraft, SyncResult
from jobswipe.repository import JobStorage

LOGGER = logging.getLogger("jobswipe.sync")

Fetcher = Callable[[str], Awaitable[list[JobDraft]]]


class FeedSynchronizer:
    """Pulls the feed into the job table, at most one sync at a time.

    The in-flight flag and scheduler task are per-process state. Running
    several instances against one database needs an external lock instead.
    """

    def __init__(
        self,
        repository: JobStorage,
        *,
        feed_url: str,
        fetcher: Fetcher = fetch_jobs,
        interval_seconds: float = DEFAULT_SYNC_INTERVAL_HOURS * 3600,
    ) -> None:
        self.repository = repository
        self.feed_url = feed_url
        self.fetcher = fetcher
        self.interval_seconds = interval_seconds
        self.last_result: SyncResult | None = None
        self._in_flight = False
        self._task: asyncio.Task[None] | None = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def scheduler_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sync_once(self, feed_url: str | None = None) -> SyncResult:
        started_at = now_utc_iso()
        resolved_url = feed_url or self.feed_url
        # Checked and set with no await in between, so it is atomic on the event loop.
        if self._in_flight:
            LOGGER.info(json.dumps({"event": "sync_skipped", "feed_url": resolved_url}))
            return SyncResult(
                status="skipped",
                feed_url=resolved_url,
                started_at=started_at,
                finished_at=now_utc_iso(),
            )

        self._in_flight = True
        try:
            result = await self._run(resolved_url, started_at)
        finally:
            self._in_flight = False
        self.last_result = result
        return result

    async def _run(self, feed_url: str, started_at: str) -> SyncResult:
        LOGGER.info(json.dumps({"event": "sync_started", "feed_url": feed_url}))
        try:
            drafts = await self.fetcher(feed_url)
        except FeedFetchError as exc:
            LOGGER.warning(
                json.dumps({"event": "sync_failed", "feed_url": feed_url, "error": str(exc)})
            )
            return SyncResult(
                status="error",
                feed_url=feed_url,
                started_at=started_at,
                finished_at=now_utc_iso(),
                error=str(exc),
            )

        added = 0
        skipped_duplicates = 0
        for draft in drafts:
            existing = await run_in_threadpool(
                self.repository.get_job_by_external_id,
                draft.external_id,
            )
            if existing is not None:
                skipped_duplicates += 1
                continue
            created = await run_in_threadpool(self.repository.create_job, draft)
            if created is None:
                skipped_duplicates += 1
            else:
                added += 1

        result = SyncResult(
            status="ok",
            feed_url=feed_url,
            processed=len(drafts),
            added=added,
            skipped_duplicates=skipped_duplicates,
            started_at=started_at,
            finished_at=now_utc_iso(),
        )
        LOGGER.info(
            json.dumps(
                {
                    "event": "sync_complete",
                    "feed_url": feed_url,
                    "processed": result.processed,
                    "added": result.added,
                    "skipped_duplicates": result.skipped_duplicates,
                }
            )
        )
        return result

    async def _run_forever(self) -> None:
        while True:
            try:
                result = await self.sync_once()
                if result.status == "error":
                    LOGGER.error(
                        json.dumps(
                            {
                                "event": "scheduled_sync_failed",
                                "feed_url": result.feed_url,
                                "error": result.error,
                            }
                        )
                    )
            except Exception:
                LOGGER.exception(json.dumps({"event": "scheduled_sync_crashed", "feed_url": self.feed_url}))
            await asyncio.sleep(self.interval_seconds)

    def start_scheduler(self) -> asyncio.Task[None]:
        task = self._task
        if task is not None and not task.done():
            return task
        task = asyncio.create_task(self._run_forever())
        self._task = task
        LOGGER.info(
            json.dumps(
                {
                    "event": "scheduler_started",
                    "feed_url": self.feed_url,
                    "interval_hours": round(self.interval_seconds / 3600, 3),
                }
            )
        )
        return task

    async def stop_scheduler(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
