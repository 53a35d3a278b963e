from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from jobswipe.main import create_app
from jobswipe.models import Actor, JobDraft
from pytest_bdd import given, parsers, scenario, then, when

pytestmark = pytest.mark.bdd


@scenario("features/jobs.feature", "A liked category lifts a remote job above a distant one")
def test_liked_category_lifts_remote_job() -> None:
    pass


@scenario("features/jobs.feature", "Asking for two identities at once is rejected")
def test_two_identities_are_rejected() -> None:
    pass


@pytest.fixture
def client(tmp_path: Path):
    app = create_app(database_path=str(tmp_path / "deck.sqlite3"), start_scheduler=False)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def context() -> dict[str, object]:
    return {}


@given("a user located in Madrid who liked an engineering job")
def given_user_with_a_like(client: TestClient, context: dict[str, object]) -> None:
    repository = client.app.state.repository
    user = repository.create_user("marta", latitude=40.4168, longitude=-3.7038)
    liked = repository.create_job(
        JobDraft(external_id="liked-1", title="Backend Engineer", location="Madrid", category="engineering")
    )
    repository.record_interaction(Actor(user_id=user.id), liked.id, "like")
    context["user_id"] = user.id
    context["liked_id"] = liked.id


@given("a remote engineering job and a distant sales job in Spain")
def given_candidate_jobs(client: TestClient) -> None:
    repository = client.app.state.repository
    repository.create_job(
        JobDraft(
            external_id="remote-1",
            title="Remote Platform Engineer",
            location="Valencia (remoto)",
            category="engineering",
            is_remote=True,
        )
    )
    repository.create_job(
        JobDraft(
            external_id="far-1",
            title="Sales Representative",
            location="Sevilla, España",
            category="sales",
            latitude=37.3891,
            longitude=-5.9845,
        )
    )


@when("the user requests their job deck", target_fixture="response")
def when_user_requests_deck(client: TestClient, context: dict[str, object]):
    return client.get("/jobs", params={"user_id": context["user_id"], "limit": 10})


@when("a deck is requested for both a user and a session", target_fixture="response")
def when_deck_requested_for_two_identities(client: TestClient):
    return client.get("/jobs", params={"user_id": 1, "session_id": "anon-1"})


@then("the deck response is successful")
def then_deck_is_successful(response) -> None:
    assert response.status_code == 200


@then(parsers.parse("the deck response status is {status_code:d}"))
def then_deck_status_is(response, status_code: int) -> None:
    assert response.status_code == status_code


@then(parsers.parse('the first job in the deck is "{title}"'))
def then_first_job_is(response, title: str) -> None:
    assert response.json()[0]["title"] == title


@then("the liked job is not in the deck")
def then_liked_job_is_excluded(response, context: dict[str, object]) -> None:
    assert context["liked_id"] not in {job["id"] for job in response.json()}
