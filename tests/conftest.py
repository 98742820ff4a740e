from datetime import datetime, timezone

import pytest

from manager import JobManager
from models import Job
from storage import Storage


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "rat.db"


@pytest.fixture
def storage(db_path):
    db = Storage(db_path)
    yield db
    db.close()


@pytest.fixture
def manager(storage):
    return JobManager(storage)


@pytest.fixture
def workdir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def make_job(workdir):
    def _make(script="true", run_at=None, name=None, cwd=None):
        return Job(
            script=script,
            run_at=run_at or datetime.now(timezone.utc),
            cwd=cwd or workdir,
            name=name,
        )
    return _make


class FakeSleep:
    """Records requested sleeps instead of waiting."""

    def __init__(self, on_sleep=None):
        self.calls = []
        self.on_sleep = on_sleep

    def __call__(self, seconds):
        self.calls.append(seconds)
        if self.on_sleep:
            self.on_sleep()


@pytest.fixture
def fake_sleep():
    return FakeSleep()
