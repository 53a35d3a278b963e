from __future__ import annotations

import json
import logging
import math
import random
import time
from collections.abc import Callable
from dataclasses import dataclass

from fastapi.concurrency import run_in_threadpool

from jobswipe.config import DEFAULT_CACHE_POOL_SIZE, DEFAULT_CACHE_TTL_SECONDS, DEFAULT_EXCLUDE_LIMIT
from jobswipe.models import Job, JobFilter, Page
from jobswipe.repository import JobStorage

LOGGER = logging.getLogger("jobswipe.catalog")

ShapeKey = tuple[str | None, bool | None, str | None]


@dataclass(frozen=True)
class CacheEntry:
    jobs: tuple[Job, ...]
    stored_at: float


class PoolCache:
    """Random-mode job pools keyed by filter shape.

    Entries are replaced whole and dropped once older than the TTL.
    Concurrent refreshes of one shape are last-writer-wins.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[ShapeKey, CacheEntry] = {}

    def get(self, key: ShapeKey) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self.ttl_seconds:
            self._entries.pop(key, None)
            return None
        return entry

    def put(self, key: ShapeKey, jobs: list[Job]) -> CacheEntry:
        entry = CacheEntry(jobs=tuple(jobs), stored_at=self._clock())
        self._entries[key] = entry
        return entry

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class CatalogStore:
    def __init__(
        self,
        repository: JobStorage,
        *,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        pool_size: int = DEFAULT_CACHE_POOL_SIZE,
        exclude_limit: int = DEFAULT_EXCLUDE_LIMIT,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repository = repository
        self.pool_size = pool_size
        self.exclude_limit = exclude_limit
        self.cache = PoolCache(cache_ttl_seconds, clock=clock)
        self._rng = rng or random.Random()

    async def query_jobs(self, job_filter: JobFilter, page: Page) -> list[Job]:
        try:
            return await self._query(job_filter, page)
        except Exception as exc:
            LOGGER.exception(
                json.dumps(
                    {
                        "event": "catalog_degraded",
                        "order_by": job_filter.order_by,
                        "limit": page.limit,
                        "error": str(exc),
                    }
                )
            )
            return await self._fallback(page.limit)

    async def _fallback(self, limit: int) -> list[Job]:
        try:
            return await run_in_threadpool(self.repository.select_jobs, limit=limit)
        except Exception:
            LOGGER.exception(json.dumps({"event": "catalog_fallback_failed", "limit": limit}))
            return []

    def _sql_exclusions(self, exclude_ids: list[int]) -> list[int]:
        unique_ids = list(dict.fromkeys(exclude_ids))
        if len(unique_ids) > self.exclude_limit:
            LOGGER.info(
                json.dumps(
                    {
                        "event": "catalog_exclusions_dropped",
                        "requested": len(unique_ids),
                        "limit": self.exclude_limit,
                    }
                )
            )
            return []
        return unique_ids

    async def _query(self, job_filter: JobFilter, page: Page) -> list[Job]:
        exclude_ids = self._sql_exclusions(job_filter.exclude_ids)
        if job_filter.order_by == "recent":
            batch = await run_in_threadpool(
                self.repository.select_jobs,
                exclude_ids=exclude_ids,
                category=job_filter.category,
                is_remote=job_filter.is_remote,
                location=job_filter.location,
                order="recent",
                offset=page.offset,
                limit=page.limit,
            )
        else:
            batch = await self._random_batch(job_filter, exclude_ids, page)

        result = apply_skill_filter(batch, job_filter.skills, page.limit)
        LOGGER.debug(
            json.dumps(
                {
                    "event": "catalog_query",
                    "order_by": job_filter.order_by,
                    "category": job_filter.category,
                    "is_remote": job_filter.is_remote,
                    "location": job_filter.location,
                    "skills": len(job_filter.skills),
                    "exclude_ids": len(job_filter.exclude_ids),
                    "returned": len(result),
                }
            )
        )
        return result

    async def _random_batch(
        self,
        job_filter: JobFilter,
        exclude_ids: list[int],
        page: Page,
    ) -> list[Job]:
        key = job_filter.shape_key()
        entry = self.cache.get(key)
        if entry is not None:
            excluded = set(job_filter.exclude_ids)
            remaining = [job for job in entry.jobs if job.id not in excluded]
            if len(remaining) >= page.limit:
                LOGGER.debug(
                    json.dumps(
                        {"event": "catalog_cache_hit", "shape": list(key), "pool": len(entry.jobs)}
                    )
                )
                return remaining[page.offset : page.offset + page.limit]

        total = await run_in_threadpool(
            self.repository.count_jobs,
            exclude_ids=exclude_ids,
            category=job_filter.category,
            is_remote=job_filter.is_remote,
            location=job_filter.location,
        )
        if total == 0:
            return []

        # Random window start instead of ORDER BY RANDOM() over the whole table.
        start = math.floor(self._rng.random() * max(1, total - page.limit))
        window = await run_in_threadpool(
            self.repository.select_jobs,
            exclude_ids=exclude_ids,
            category=job_filter.category,
            is_remote=job_filter.is_remote,
            location=job_filter.location,
            order="primary_key",
            offset=start,
            limit=max(page.limit, self.pool_size),
        )
        self.cache.put(key, window[: self.pool_size])
        LOGGER.debug(
            json.dumps(
                {
                    "event": "catalog_cache_refresh",
                    "shape": list(key),
                    "total": total,
                    "start": start,
                    "pool": min(len(window), self.pool_size),
                }
            )
        )
        return window[: page.limit]


def apply_skill_filter(batch: list[Job], skills: list[str], limit: int) -> list[Job]:
    wanted = [skill.strip().lower() for skill in skills if skill.strip()]
    if not wanted:
        return batch

    matched = [
        job
        for job in batch
        if any(term in job_skill.lower() for job_skill in job.skills for term in wanted)
    ]
    if len(matched) >= limit * 0.5:
        return matched

    matched_ids = {job.id for job in matched}
    backfill = [job for job in batch if job.id not in matched_ids][: max(0, limit - len(matched))]
    return matched + backfill
