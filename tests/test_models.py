import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from models import Job, JobResult, JobState


def test_job_defaults_to_queued(workdir):
    job = Job(script="echo hi", run_at=datetime.now(timezone.utc), cwd=workdir)
    assert job.state == JobState.QUEUED
    assert job.id is None
    assert job.name is None


def test_run_at_is_normalized_to_utc(workdir):
    cet = timezone(timedelta(hours=1))
    job = Job(script="true", run_at=datetime(2024, 5, 1, 13, 0, tzinfo=cet), cwd=workdir)
    assert job.run_at == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert job.run_at.tzinfo == timezone.utc


def test_naive_run_at_is_rejected(workdir):
    with pytest.raises(ValueError):
        Job(script="true", run_at=datetime(2024, 5, 1, 12, 0), cwd=workdir)


@pytest.mark.parametrize("script", ["", "   "])
def test_empty_script_is_rejected(script, workdir):
    with pytest.raises(ValueError):
        Job(script=script, run_at=datetime.now(timezone.utc), cwd=workdir)


def test_cwd_accepts_raw_bytes():
    raw = b"/tmp/caf\xe9"
    job = Job(script="true", run_at=datetime.now(timezone.utc), cwd=raw)
    assert isinstance(job.cwd, Path)
    assert os.fsencode(job.cwd) == raw


def test_state_parse():
    assert JobState.parse("running") == JobState.RUNNING
    assert JobState.DEQUEUED.label == "dequeued"
    with pytest.raises(ValueError):
        JobState.parse("finished")


def test_result_succeeded():
    assert JobResult(job_id=1, status=0).succeeded
    assert not JobResult(job_id=1, status=2).succeeded
    assert not JobResult(job_id=1, status=None).succeeded
