"""Heuristic job ranking for a user or anonymous session.

Scores add up skill and category affinity (from the actor's likes and saves),
a recency bonus, and a geo bonus or penalty, plus a little random jitter so
repeated requests do not return an identical deck.
"""

from __future__ import annotations

import json
import logging
import math
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from common.utils import parse_iso_datetime, tokenize
from fastapi.concurrency import run_in_threadpool

from jobswipe.catalog import CatalogStore
from jobswipe.geo import (
    HOME_COUNTRY,
    UNKNOWN,
    BoundingBoxClassifier,
    Coordinates,
    GeoClassifier,
    KnownCoordinates,
    distance_km,
    location_matches_country,
    location_matches_region,
    location_mentions_country_name,
)
from jobswipe.models import Actor, Job, JobFilter, Page
from jobswipe.repository import JobStorage

LOGGER = logging.getLogger("jobswipe.scoring")

MAX_CANDIDATE_POOL = 500
CANDIDATE_POOL_FACTOR = 10
MIN_TOKEN_LENGTH = 4

SKILL_MATCH_POINTS = 5.0
CATEGORY_MATCH_POINTS = 10.0
MAX_RECENCY_POINTS = 5.0
REMOTE_POINTS = 15.0
DISTANCE_TIERS: tuple[tuple[float, float], ...] = (
    (25.0, 30.0),
    (50.0, 25.0),
    (100.0, 20.0),
    (200.0, 15.0),
)
FAR_PENALTY_HOME = 30.0
FAR_PENALTY_ABROAD = 10.0
HOME_KEYWORD_POINTS = 40.0
HOME_COUNTRY_NAME_POINTS = 25.0
HOME_OUTSIDE_PENALTY = 20.0
SAME_COUNTRY_POINTS = 12.0
SAME_REGION_POINTS = 8.0
MAX_JITTER = 2.0


@dataclass
class AffinityProfile:
    skills: set[str] = field(default_factory=set)
    categories: set[str] = field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return not self.skills and not self.categories


@dataclass(frozen=True)
class ScoreContext:
    coordinates: Coordinates = UNKNOWN
    country: str | None = None
    region: str | None = None
    home_country: str = HOME_COUNTRY

    @property
    def in_home_country(self) -> bool:
        return self.country is not None and self.country == self.home_country


def _label_tokens(label: str | None) -> set[str]:
    if not label:
        return set()
    return {token for token in tokenize(label) if len(token) >= MIN_TOKEN_LENGTH}


def build_affinity_profile(occupation_labels: list[str], liked_jobs: list[Job]) -> AffinityProfile:
    profile = AffinityProfile()
    for label in occupation_labels:
        profile.skills.update(_label_tokens(label))
    for job in liked_jobs:
        profile.skills.update(_label_tokens(job.title))
        profile.skills.update(skill.lower() for skill in job.skills if skill)
        if job.category:
            profile.categories.add(job.category.lower())
    return profile


def recency_points(created_at: str | None, now: datetime) -> float:
    created = parse_iso_datetime(created_at)
    if created is None:
        return 0.0
    days = math.floor((now - created).total_seconds() / 86400)
    return max(0.0, MAX_RECENCY_POINTS - days / 7)


def _distance_points(distance: float, context: ScoreContext) -> float:
    for threshold, points in DISTANCE_TIERS:
        if distance <= threshold:
            return points
    return -(FAR_PENALTY_HOME if context.in_home_country else FAR_PENALTY_ABROAD)


def _location_text_points(location: str, context: ScoreContext) -> float:
    if context.in_home_country:
        if location_matches_country(location, context.home_country):
            return HOME_KEYWORD_POINTS
        if location_mentions_country_name(location, context.home_country):
            return HOME_COUNTRY_NAME_POINTS
        return -HOME_OUTSIDE_PENALTY
    if context.country and location_mentions_country_name(location, context.country):
        return SAME_COUNTRY_POINTS
    if context.region and location_matches_region(location, context.region):
        return SAME_REGION_POINTS
    return 0.0


def geo_points(job: Job, context: ScoreContext) -> float:
    actor_coordinates = context.coordinates
    job_coordinates = job.coordinates
    if isinstance(actor_coordinates, KnownCoordinates) and isinstance(job_coordinates, KnownCoordinates):
        if job.is_remote:
            return REMOTE_POINTS
        distance = distance_km(
            actor_coordinates.latitude,
            actor_coordinates.longitude,
            job_coordinates.latitude,
            job_coordinates.longitude,
        )
        return _distance_points(distance, context)
    if job.is_remote:
        return REMOTE_POINTS
    if isinstance(actor_coordinates, KnownCoordinates) and job.location:
        return _location_text_points(job.location, context)
    return 0.0


def score_job(job: Job, profile: AffinityProfile, context: ScoreContext, *, now: datetime) -> float:
    score = 0.0
    for skill in job.skills:
        if skill.lower() in profile.skills:
            score += SKILL_MATCH_POINTS
    if job.category and job.category.lower() in profile.categories:
        score += CATEGORY_MATCH_POINTS
    score += recency_points(job.created_at, now)
    score += geo_points(job, context)
    return score


def prioritize_home_country(jobs: list[Job], home_country: str) -> list[Job]:
    local: list[Job] = []
    remote: list[Job] = []
    others: list[Job] = []
    for job in jobs:
        if job.is_remote:
            remote.append(job)
        elif job.location and location_matches_country(job.location, home_country):
            local.append(job)
        else:
            others.append(job)
    return local + remote + others


class Recommender:
    def __init__(
        self,
        repository: JobStorage,
        catalog: CatalogStore,
        *,
        classifier: GeoClassifier | None = None,
        home_country: str = HOME_COUNTRY,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.catalog = catalog
        self.classifier = classifier or BoundingBoxClassifier()
        self.home_country = home_country
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(UTC))

    async def build_profile(self, actor: Actor) -> AffinityProfile:
        labels: list[str] = []
        if actor.user_id is not None:
            labels = await run_in_threadpool(self.repository.get_liked_occupation_labels, actor.user_id)
        liked_jobs = await run_in_threadpool(self.repository.get_liked_jobs, actor)
        return build_affinity_profile(labels, liked_jobs)

    async def resolve_context(self, actor: Actor) -> ScoreContext:
        coordinates: Coordinates = UNKNOWN
        if actor.user_id is not None:
            user = await run_in_threadpool(self.repository.get_user, actor.user_id)
            if user is not None:
                coordinates = user.coordinates
        elif actor.session_id is not None:
            session = await run_in_threadpool(self.repository.get_anonymous_session, actor.session_id)
            if session is not None:
                coordinates = session.coordinates

        if not isinstance(coordinates, KnownCoordinates):
            return ScoreContext(home_country=self.home_country)
        return ScoreContext(
            coordinates=coordinates,
            country=self.classifier.country_of(coordinates.latitude, coordinates.longitude),
            region=self.classifier.region_of(coordinates.latitude, coordinates.longitude),
            home_country=self.home_country,
        )

    async def recommend(self, actor: Actor | None, job_filter: JobFilter, page: Page) -> list[Job]:
        if actor is None:
            return await self.catalog.query_jobs(job_filter, page)

        profile = await self.build_profile(actor)
        context = await self.resolve_context(actor)

        pool_limit = min(MAX_CANDIDATE_POOL, page.limit * CANDIDATE_POOL_FACTOR)
        candidate_filter = job_filter.model_copy(
            update={"location": self.home_country if context.in_home_country else job_filter.location}
        )
        candidates = await self.catalog.query_jobs(candidate_filter, Page(limit=pool_limit, offset=0))

        interactions = await run_in_threadpool(self.repository.get_interactions_for, actor)
        excluded = set(job_filter.exclude_ids) | {interaction.job_id for interaction in interactions}
        pool = [job for job in candidates if job.id not in excluded]
        if context.in_home_country:
            pool = prioritize_home_country(pool, self.home_country)

        now = self._clock()
        scored = [
            (score_job(job, profile, context, now=now) + self._rng.random() * MAX_JITTER, job)
            for job in pool
        ]
        scored.sort(key=lambda item: item[0], reverse=True)

        LOGGER.info(
            json.dumps(
                {
                    "event": "recommendations_ranked",
                    "actor": actor.key,
                    "candidates": len(candidates),
                    "excluded": len(candidates) - len(pool),
                    "home_country": context.in_home_country,
                    "profile_skills": len(profile.skills),
                    "profile_categories": len(profile.categories),
                }
            )
        )
        return [job for _, job in scored[page.offset : page.offset + page.limit]]
