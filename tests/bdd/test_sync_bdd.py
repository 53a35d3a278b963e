from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient
from jobswipe import feed
from jobswipe.main import create_app
from pytest_bdd import given, parsers, scenario, then, when

pytestmark = pytest.mark.bdd

FEED_URL = "https://feeds.example.com/jobs.xml"


@scenario("features/sync.feature", "Duplicate feed entries are stored once")
def test_duplicate_entries_are_stored_once() -> None:
    pass


@scenario("features/sync.feature", "An empty feed is not an error")
def test_empty_feed_is_not_an_error() -> None:
    pass


@scenario("features/sync.feature", "An unreachable feed is reported as a bad gateway")
def test_unreachable_feed_is_bad_gateway() -> None:
    pass


@pytest.fixture
def context() -> dict[str, object]:
    return {"status_code": 200, "body": b""}


@given(parsers.parse('a feed listing "{external_id}" twice'))
def given_duplicate_feed(context: dict[str, object], external_id: str) -> None:
    entry = f"<job><id>{external_id}</id><title>Backend Engineer</title></job>"
    context["body"] = f"<source>{entry}{entry}</source>".encode()


@given("an empty feed")
def given_empty_feed(context: dict[str, object]) -> None:
    context["body"] = b"<source></source>"


@given(parsers.parse("a feed that answers with status {status_code:d}"))
def given_failing_feed(context: dict[str, object], status_code: int) -> None:
    context["status_code"] = status_code
    context["body"] = b"Service Unavailable"


@when("the feed is synchronised through the API", target_fixture="outcome")
def when_feed_is_synchronised(
    context: dict[str, object],
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> dict[str, object]:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(int(context["status_code"]), content=context["body"])

    async def fetch_from_mock(feed_url: str, *, listing_path: str):
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await feed.fetch_jobs(feed_url, client=client, listing_path=listing_path)

    monkeypatch.setattr("jobswipe.main.fetch_jobs", fetch_from_mock)
    app = create_app(
        database_path=str(tmp_path / "bdd.sqlite3"),
        feed_url=FEED_URL,
        start_scheduler=False,
    )
    with TestClient(app) as client:
        response = client.post("/sync-jobs")
        stored = client.app.state.repository.count_all_jobs()
    return {"response": response, "stored": stored}


@then("the sync response is successful")
def then_sync_is_successful(outcome: dict[str, object]) -> None:
    assert outcome["response"].status_code == 200


@then(parsers.parse("the sync response status is {status_code:d}"))
def then_sync_status_is(outcome: dict[str, object], status_code: int) -> None:
    assert outcome["response"].status_code == status_code


@then(parsers.parse("the sync reports {processed:d} processed and {added:d} added"))
def then_sync_reports_counts(outcome: dict[str, object], processed: int, added: int) -> None:
    body = outcome["response"].json()
    assert body["processed"] == processed
    assert body["added"] == added


@then(parsers.re(r"the catalog holds (?P<count>\d+) jobs?"), converters={"count": int})
def then_catalog_holds(outcome: dict[str, object], count: int) -> None:
    assert outcome["stored"] == count
