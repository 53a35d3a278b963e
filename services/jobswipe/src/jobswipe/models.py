from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from jobswipe.geo import Coordinates, coordinates_from

InteractionAction = Literal["like", "save", "dislike", "reject", "apply", "view"]
Sentiment = Literal["excited", "interested", "neutral", "doubtful", "negative"]
OrderBy = Literal["recent", "random"]
SyncStatus = Literal["ok", "skipped", "error"]

POSITIVE_ACTIONS: tuple[str, ...] = ("like", "save")


class JobDraft(BaseModel):
    external_id: str = Field(..., min_length=1)
    title: str
    company: str | None = None
    location: str | None = None
    description: str | None = None
    category: str | None = None
    job_type: str | None = None
    salary: str | None = None
    skills: list[str] = Field(default_factory=list)
    latitude: float | None = None
    longitude: float | None = None
    is_remote: bool = False
    posted_at: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def coordinates(self) -> Coordinates:
        return coordinates_from(self.latitude, self.longitude)


class Job(JobDraft):
    id: int
    created_at: str


class Actor(BaseModel):
    user_id: int | None = None
    session_id: str | None = None

    @model_validator(mode="after")
    def validate_exactly_one_identity(self) -> Actor:
        if (self.user_id is None) == (self.session_id is None):
            raise ValueError("Actor requires exactly one of user_id or session_id.")
        return self

    @property
    def key(self) -> str:
        if self.user_id is not None:
            return f"user:{self.user_id}"
        return f"session:{self.session_id}"


class Interaction(BaseModel):
    id: int
    user_id: int | None = None
    session_id: str | None = None
    job_id: int
    action: InteractionAction
    sentiment: Sentiment | None = None
    created_at: str


class JobFilter(BaseModel):
    exclude_ids: list[int] = Field(default_factory=list)
    category: str | None = None
    is_remote: bool | None = None
    location: str | None = None
    skills: list[str] = Field(default_factory=list)
    order_by: OrderBy = "recent"

    def shape_key(self) -> tuple[str | None, bool | None, str | None]:
        location = self.location.strip().lower() if self.location else None
        return (self.category, self.is_remote, location or None)


class Page(BaseModel):
    limit: int = Field(default=20, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class SyncResult(BaseModel):
    status: SyncStatus
    feed_url: str | None = None
    processed: int = 0
    added: int = 0
    skipped_duplicates: int = 0
    started_at: str
    finished_at: str | None = None
    error: str | None = None


class UserRecord(BaseModel):
    id: int
    username: str
    latitude: float | None = None
    longitude: float | None = None
    created_at: str

    @property
    def coordinates(self) -> Coordinates:
        return coordinates_from(self.latitude, self.longitude)


class SessionRecord(BaseModel):
    session_id: str
    latitude: float | None = None
    longitude: float | None = None
    created_at: str
    updated_at: str

    @property
    def coordinates(self) -> Coordinates:
        return coordinates_from(self.latitude, self.longitude)


class OccupationRecord(BaseModel):
    id: int
    preferred_label: str
    isco_group: str | None = None
