from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import replace
from functools import partial

import uvicorn
from common.utils import now_utc_iso
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError, model_validator

from jobswipe.catalog import CatalogStore
from jobswipe.config import EngineSettings
from jobswipe.feed import fetch_jobs
from jobswipe.models import (
    Actor,
    Interaction,
    InteractionAction,
    Job,
    JobFilter,
    OrderBy,
    Page,
    SessionRecord,
    Sentiment,
    SyncResult,
)
from jobswipe.repository import JobRepository
from jobswipe.scoring import Recommender
from jobswipe.sync import FeedSynchronizer

LOGGER = logging.getLogger("jobswipe.api")


class SyncRequest(BaseModel):
    feed_url: str | None = Field(default=None, min_length=1)


class InteractionRequest(BaseModel):
    user_id: int | None = None
    session_id: str | None = Field(default=None, min_length=1)
    job_id: int
    action: InteractionAction
    sentiment: Sentiment | None = None

    @model_validator(mode="after")
    def validate_actor(self) -> InteractionRequest:
        if (self.user_id is None) == (self.session_id is None):
            raise ValueError("Provide exactly one of user_id or session_id.")
        return self


class SessionLocationRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class MetricsSnapshot(BaseModel):
    generated_at: str
    totals: dict[str, int]
    endpoints: dict[str, dict[str, float | int]]
    sync: SyncResult | None = None


class MetricsStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._totals = {"requests": 0, "errors": 0}
        self._endpoints: dict[str, dict[str, float | int]] = {}

    def observe(self, *, method: str, path: str, status_code: int, duration_ms: float) -> None:
        key = f"{method} {path}"
        bucket = f"{status_code // 100}xx"
        with self._lock:
            self._totals["requests"] += 1
            if status_code >= 400:
                self._totals["errors"] += 1
            endpoint = self._endpoints.setdefault(
                key,
                {
                    "count": 0,
                    "2xx": 0,
                    "4xx": 0,
                    "5xx": 0,
                    "latency_ms_sum": 0.0,
                    "latency_ms_avg": 0.0,
                },
            )
            endpoint["count"] = int(endpoint["count"]) + 1
            if bucket in ("2xx", "4xx", "5xx"):
                endpoint[bucket] = int(endpoint[bucket]) + 1
            endpoint["latency_ms_sum"] = float(endpoint["latency_ms_sum"]) + duration_ms
            endpoint["latency_ms_avg"] = (
                float(endpoint["latency_ms_sum"]) / int(endpoint["count"])
            )

    def snapshot(self, sync: SyncResult | None = None) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                generated_at=now_utc_iso(),
                totals=dict(self._totals),
                endpoints={key: dict(value) for key, value in self._endpoints.items()},
                sync=sync,
            )


def parse_id_list(raw: str | None) -> list[int]:
    if not raw:
        return []
    ids: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=f"Invalid job id: {part!r}") from exc
    return ids


def parse_term_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def create_app(
    *,
    database_path: str | None = None,
    feed_url: str | None = None,
    start_scheduler: bool | None = None,
    settings: EngineSettings | None = None,
) -> FastAPI:
    resolved = settings or EngineSettings.from_env()
    if database_path is not None:
        resolved = replace(resolved, database_path=database_path)
    if feed_url is not None:
        resolved = replace(resolved, feed_url=feed_url)
    if start_scheduler is not None:
        resolved = replace(resolved, sync_enabled=start_scheduler)

    repository = JobRepository(database_path=resolved.database_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(repository.connect)
        catalog = CatalogStore(
            repository,
            cache_ttl_seconds=resolved.cache_ttl_seconds,
            pool_size=resolved.cache_pool_size,
            exclude_limit=resolved.exclude_limit,
        )
        synchronizer = FeedSynchronizer(
            repository,
            feed_url=resolved.feed_url,
            fetcher=partial(fetch_jobs, listing_path=resolved.listing_path),
            interval_seconds=resolved.sync_interval_seconds,
        )
        app.state.settings = resolved
        app.state.repository = repository
        app.state.catalog = catalog
        app.state.recommender = Recommender(repository, catalog)
        app.state.synchronizer = synchronizer
        app.state.metrics = MetricsStore()
        if resolved.sync_enabled:
            synchronizer.start_scheduler()
        try:
            yield
        finally:
            await synchronizer.stop_scheduler()
            await run_in_threadpool(repository.close)

    app = FastAPI(title="JobSwipe Engine", version="0.1.0", lifespan=lifespan)

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.perf_counter() - started) * 1000
            request.app.state.metrics.observe(
                method=request.method,
                path=request.url.path,
                status_code=500,
                duration_ms=duration_ms,
            )
            LOGGER.exception(
                json.dumps(
                    {
                        "event": "request_complete",
                        "request_id": request_id,
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": 500,
                        "duration_ms": round(duration_ms, 3),
                        "error": str(exc),
                    }
                )
            )
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error", "request_id": request_id},
                headers={"x-request-id": request_id},
            )

        duration_ms = (time.perf_counter() - started) * 1000
        request.app.state.metrics.observe(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        response.headers["x-request-id"] = request_id
        LOGGER.info(
            json.dumps(
                {
                    "event": "request_complete",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 3),
                    "source_ip": request.client.host if request.client else None,
                }
            )
        )
        return response

    @app.get("/health")
    async def health(request: Request) -> dict[str, str | bool]:
        synchronizer: FeedSynchronizer = request.app.state.synchronizer
        return {
            "status": "ok",
            "service": "jobswipe",
            "sync_in_flight": synchronizer.in_flight,
            "scheduler_running": synchronizer.scheduler_running,
        }

    @app.get("/metrics", response_model=MetricsSnapshot)
    async def metrics(request: Request) -> MetricsSnapshot:
        return request.app.state.metrics.snapshot(request.app.state.synchronizer.last_result)

    @app.post("/sync-jobs", response_model=SyncResult)
    async def sync_jobs(request: Request, payload: SyncRequest | None = None) -> SyncResult:
        synchronizer: FeedSynchronizer = request.app.state.synchronizer
        result = await synchronizer.sync_once(payload.feed_url if payload else None)
        if result.status == "error":
            raise HTTPException(
                status_code=502,
                detail={"feed_url": result.feed_url, "error": result.error},
            )
        return result

    @app.get("/jobs", response_model=list[Job])
    async def list_jobs(
        request: Request,
        user_id: int | None = Query(default=None),
        session_id: str | None = Query(default=None, min_length=1),
        limit: int = Query(default=20, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
        exclude_ids: str | None = Query(default=None),
        order_by: OrderBy = Query(default="recent"),
        category: str | None = Query(default=None),
        is_remote: bool | None = Query(default=None),
        location: str | None = Query(default=None),
        skills: str | None = Query(default=None),
    ) -> list[Job]:
        actor: Actor | None = None
        if user_id is not None or session_id is not None:
            try:
                actor = Actor(user_id=user_id, session_id=session_id)
            except ValidationError as exc:
                raise HTTPException(
                    status_code=422,
                    detail="Provide at most one of user_id or session_id.",
                ) from exc

        job_filter = JobFilter(
            exclude_ids=parse_id_list(exclude_ids),
            category=category,
            is_remote=is_remote,
            location=location,
            skills=parse_term_list(skills),
            order_by=order_by,
        )
        page = Page(limit=limit, offset=offset)
        return await request.app.state.recommender.recommend(actor, job_filter, page)

    @app.get("/jobs/{job_id}", response_model=Job)
    async def get_job(job_id: int, request: Request) -> Job:
        job = await run_in_threadpool(request.app.state.repository.get_job, job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Unknown job_id")
        return job

    @app.post("/interactions", response_model=Interaction, status_code=201)
    async def record_interaction(payload: InteractionRequest, request: Request) -> Interaction:
        repository: JobRepository = request.app.state.repository
        job = await run_in_threadpool(repository.get_job, payload.job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Unknown job_id")
        actor = Actor(user_id=payload.user_id, session_id=payload.session_id)
        if actor.user_id is not None:
            user = await run_in_threadpool(repository.get_user, actor.user_id)
            if user is None:
                raise HTTPException(status_code=404, detail="Unknown user_id")
        return await run_in_threadpool(
            repository.record_interaction,
            actor,
            payload.job_id,
            payload.action,
            payload.sentiment,
        )

    @app.get("/users/{user_id}/saved-jobs", response_model=list[Job])
    async def saved_jobs(user_id: int, request: Request) -> list[Job]:
        repository: JobRepository = request.app.state.repository
        user = await run_in_threadpool(repository.get_user, user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="Unknown user_id")
        return await run_in_threadpool(repository.get_liked_jobs, Actor(user_id=user_id))

    @app.get("/users/{user_id}/applied-jobs", response_model=list[Job])
    async def applied_jobs(user_id: int, request: Request) -> list[Job]:
        repository: JobRepository = request.app.state.repository
        user = await run_in_threadpool(repository.get_user, user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="Unknown user_id")
        return await run_in_threadpool(repository.get_jobs_by_actions, Actor(user_id=user_id), ("apply",))

    @app.get("/sessions/{session_id}/liked-jobs", response_model=list[Job])
    async def session_liked_jobs(session_id: str, request: Request) -> list[Job]:
        repository: JobRepository = request.app.state.repository
        return await run_in_threadpool(repository.get_jobs_by_actions, Actor(session_id=session_id), ("like",))

    @app.put("/sessions/{session_id}/location", response_model=SessionRecord)
    async def update_session_location(
        session_id: str,
        payload: SessionLocationRequest,
        request: Request,
    ) -> SessionRecord:
        return await run_in_threadpool(
            request.app.state.repository.upsert_anonymous_session,
            session_id,
            latitude=payload.latitude,
            longitude=payload.longitude,
        )

    return app


app = create_app()


def run() -> None:
    settings = EngineSettings.from_env()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
    uvicorn.run("jobswipe.main:app", host=settings.host, port=settings.port)
