from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from jobswipe.models import JobDraft
from jobswipe.repository import JobRepository


@pytest.fixture
def repository(tmp_path: Path) -> Iterator[JobRepository]:
    repo = JobRepository(database_path=str(tmp_path / "jobswipe.sqlite3"))
    repo.connect()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture
def make_draft() -> Callable[..., JobDraft]:
    counter = {"value": 0}

    def factory(**overrides: Any) -> JobDraft:
        counter["value"] += 1
        fields: dict[str, Any] = {
            "external_id": f"job-{counter['value']}",
            "title": f"Backend Engineer {counter['value']}",
            "company": "Acme Labs",
            "location": "Madrid, España",
            "description": "Build Python services",
            "category": "engineering",
            "skills": ["Python"],
        }
        fields.update(overrides)
        return JobDraft(**fields)

    return factory
