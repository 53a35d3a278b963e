from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from jobswipe.main import create_app

pytestmark = pytest.mark.integration


def test_health(tmp_path: Path) -> None:
    app = create_app(database_path=str(tmp_path / "health.sqlite3"), start_scheduler=False)
    with TestClient(app) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "service": "jobswipe",
        "sync_in_flight": False,
        "scheduler_running": False,
    }
