from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from jobswipe.feed import FeedFetchError
from jobswipe.main import create_app
from jobswipe.models import JobDraft
from jobswipe.repository import JobRepository

pytestmark = pytest.mark.integration


@pytest.fixture
def client(tmp_path: Path) -> Iterator[TestClient]:
    db_path = tmp_path / "jobswipe.sqlite3"
    app = create_app(database_path=str(db_path), start_scheduler=False)
    with TestClient(app) as test_client:
        yield test_client


def repository_of(client: TestClient) -> JobRepository:
    return client.app.state.repository


def seed_jobs(client: TestClient, count: int, **fields: object) -> list[int]:
    repository = repository_of(client)
    ids = []
    for index in range(count):
        draft = JobDraft(
            external_id=f"seed-{index}-{fields.get('category', 'any')}",
            title=f"Backend Engineer {index}",
            location="Madrid, España",
            skills=["Python"],
            **fields,
        )
        job = repository.create_job(draft)
        assert job is not None
        ids.append(job.id)
    return ids


def test_list_jobs_returns_recent_jobs_first(client: TestClient) -> None:
    ids = seed_jobs(client, 3)

    response = client.get("/jobs", params={"limit": 2})

    assert response.status_code == 200
    assert [job["id"] for job in response.json()] == [ids[2], ids[1]]


def test_list_jobs_parses_exclusions_and_skills(client: TestClient) -> None:
    ids = seed_jobs(client, 3)

    response = client.get(
        "/jobs",
        params={"exclude_ids": f"{ids[2]}, {ids[0]}", "skills": "python,", "order_by": "random"},
    )

    assert response.status_code == 200
    assert [job["id"] for job in response.json()] == [ids[1]]


def test_list_jobs_rejects_malformed_exclusions(client: TestClient) -> None:
    response = client.get("/jobs", params={"exclude_ids": "1,two"})
    assert response.status_code == 422


def test_list_jobs_rejects_two_actor_identities(client: TestClient) -> None:
    response = client.get("/jobs", params={"user_id": 1, "session_id": "anon"})
    assert response.status_code == 422


def test_list_jobs_ranks_for_a_session(client: TestClient) -> None:
    ids = seed_jobs(client, 2)
    location = client.put("/sessions/anon-9/location", json={"latitude": 40.4168, "longitude": -3.7038})
    assert location.status_code == 200

    response = client.get("/jobs", params={"session_id": "anon-9", "limit": 5})

    assert response.status_code == 200
    assert {job["id"] for job in response.json()} == set(ids)


def test_get_job_by_id(client: TestClient) -> None:
    (job_id,) = seed_jobs(client, 1)

    found = client.get(f"/jobs/{job_id}")
    missing = client.get("/jobs/9999")

    assert found.status_code == 200
    assert found.json()["external_id"] == "seed-0-any"
    assert missing.status_code == 404


def test_interactions_feed_saved_jobs(client: TestClient) -> None:
    saved_id, skipped_id = seed_jobs(client, 2)
    user = repository_of(client).create_user("lucia")

    saved = client.post(
        "/interactions",
        json={"user_id": user.id, "job_id": saved_id, "action": "save", "sentiment": "excited"},
    )
    rejected = client.post(
        "/interactions",
        json={"user_id": user.id, "job_id": skipped_id, "action": "reject"},
    )
    saved_jobs = client.get(f"/users/{user.id}/saved-jobs")
    deck = client.get("/jobs", params={"user_id": user.id})

    assert saved.status_code == 201
    assert saved.json()["sentiment"] == "excited"
    assert rejected.status_code == 201
    assert [job["id"] for job in saved_jobs.json()] == [saved_id]
    assert deck.status_code == 200
    assert deck.json() == []


@pytest.mark.parametrize(
    "payload",
    [
        {"job_id": 1, "action": "like"},
        {"user_id": 1, "session_id": "anon", "job_id": 1, "action": "like"},
        {"session_id": "anon", "job_id": 1, "action": "bookmark"},
    ],
)
def test_interactions_validate_payload(client: TestClient, payload: dict[str, object]) -> None:
    seed_jobs(client, 1)
    assert client.post("/interactions", json=payload).status_code == 422


def test_interactions_reject_unknown_job_or_user(client: TestClient) -> None:
    (job_id,) = seed_jobs(client, 1)

    unknown_job = client.post("/interactions", json={"session_id": "anon", "job_id": 404, "action": "view"})
    unknown_user = client.post("/interactions", json={"user_id": 77, "job_id": job_id, "action": "view"})

    assert unknown_job.status_code == 404
    assert unknown_user.status_code == 404


def test_saved_jobs_for_unknown_user(client: TestClient) -> None:
    assert client.get("/users/12345/saved-jobs").status_code == 404


def test_session_location_is_validated_and_upserted(client: TestClient) -> None:
    invalid = client.put("/sessions/anon-1/location", json={"latitude": 120, "longitude": 0})
    first = client.put("/sessions/anon-1/location", json={"latitude": 40.0, "longitude": -3.0})
    second = client.put("/sessions/anon-1/location", json={"latitude": 41.0, "longitude": 2.0})

    assert invalid.status_code == 422
    assert first.status_code == 200
    assert second.json()["latitude"] == 41.0
    assert second.json()["created_at"] == first.json()["created_at"]


def sync_client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, fetch) -> TestClient:
    monkeypatch.setattr("jobswipe.main.fetch_jobs", fetch)
    app = create_app(
        database_path=str(tmp_path / "sync.sqlite3"),
        feed_url="https://feeds.example.com/jobs.xml",
        start_scheduler=False,
    )
    return TestClient(app)


def test_sync_endpoint_ingests_feed(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[tuple[str, str]] = []

    async def fake_fetch(feed_url: str, *, listing_path: str) -> list[JobDraft]:
        seen.append((feed_url, listing_path))
        return [
            JobDraft(external_id="feed-1", title="Data Engineer"),
            JobDraft(external_id="feed-1", title="Data Engineer"),
            JobDraft(external_id="feed-2", title="QA Analyst"),
        ]

    with sync_client(tmp_path, monkeypatch, fake_fetch) as client:
        first = client.post("/sync-jobs")
        second = client.post("/sync-jobs", json={"feed_url": "https://mirror.example.com/jobs.xml"})
        metrics = client.get("/metrics")

    assert first.status_code == 200
    assert (first.json()["processed"], first.json()["added"]) == (3, 2)
    assert second.json()["added"] == 0
    assert seen == [
        ("https://feeds.example.com/jobs.xml", "source/job"),
        ("https://mirror.example.com/jobs.xml", "source/job"),
    ]
    assert metrics.json()["sync"]["feed_url"] == "https://mirror.example.com/jobs.xml"


def test_sync_endpoint_reports_feed_failures(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    async def failing_fetch(feed_url: str, *, listing_path: str) -> list[JobDraft]:
        raise FeedFetchError(f"Feed request failed for {feed_url}: 503")

    with sync_client(tmp_path, monkeypatch, failing_fetch) as client:
        response = client.post("/sync-jobs")
        health = client.get("/health")

    assert response.status_code == 502
    assert "503" in response.json()["detail"]["error"]
    assert health.json()["sync_in_flight"] is False


def test_applied_jobs_list_most_recent_application_first(client: TestClient) -> None:
    first_id, second_id, liked_id = seed_jobs(client, 3)
    user = repository_of(client).create_user("nerea")
    for job_id, action in ((first_id, "apply"), (liked_id, "like"), (second_id, "apply")):
        response = client.post("/interactions", json={"user_id": user.id, "job_id": job_id, "action": action})
        assert response.status_code == 201

    applied = client.get(f"/users/{user.id}/applied-jobs")
    missing = client.get("/users/4040/applied-jobs")

    assert [job["id"] for job in applied.json()] == [second_id, first_id]
    assert missing.status_code == 404


def test_session_liked_jobs_only_include_likes(client: TestClient) -> None:
    liked_id, saved_id = seed_jobs(client, 2)
    for job_id, action in ((liked_id, "like"), (saved_id, "save")):
        response = client.post("/interactions", json={"session_id": "anon-5", "job_id": job_id, "action": action})
        assert response.status_code == 201

    liked = client.get("/sessions/anon-5/liked-jobs")
    fresh = client.get("/sessions/never-seen/liked-jobs")

    assert [job["id"] for job in liked.json()] == [liked_id]
    assert fresh.status_code == 200
    assert fresh.json() == []
