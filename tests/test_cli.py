import logging
from datetime import datetime, timedelta, timezone

import pytest
from click.testing import CliRunner

from cli import cli, parse_run_at
from manager import JobManager
from models import JobState
from storage import Storage
from worker import Worker


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.delenv("RAT_LOG_FILE", raising=False)
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield CliRunner()
    # the CLI reconfigures the root logger
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def invoke(runner, db_path):
    def _invoke(*args):
        return runner.invoke(cli, ["--db", str(db_path), *args])
    return _invoke


@pytest.fixture
def db(db_path):
    storage = Storage(db_path)
    yield JobManager(storage)
    storage.close()


def test_parse_run_at_relative():
    now = datetime(2030, 1, 1, tzinfo=timezone.utc)
    assert parse_run_at("now", now=now) == now
    assert parse_run_at("+90", now=now) == now + timedelta(seconds=90)


def test_parse_run_at_absolute():
    assert parse_run_at("2030-01-01T10:00:00+02:00") == datetime(2030, 1, 1, 8, 0, tzinfo=timezone.utc)
    assert parse_run_at("2030-01-01T10:00:00").tzinfo == timezone.utc


@pytest.mark.parametrize("value", ["+soon", "tomorrow", ""])
def test_parse_run_at_invalid(value):
    with pytest.raises(ValueError):
        parse_run_at(value)


def test_add_and_list(invoke, db, workdir):
    result = invoke("add", "--name", "hello", "+3600", "echo hi", str(workdir))
    assert result.exit_code == 0, result.output
    assert "Job 1 enqueued" in result.stdout

    job = db.get_job(1)
    assert job.name == "hello"
    assert job.script == "echo hi"
    assert job.cwd == workdir
    assert job.state == JobState.QUEUED

    result = invoke("list")
    assert result.exit_code == 0
    assert "1 | hello | state=queued" in result.stdout
    assert "echo hi" in result.stdout


def test_add_defaults_cwd_to_current_directory(runner, db_path, db, workdir, monkeypatch):
    monkeypatch.chdir(workdir)
    result = runner.invoke(cli, ["--db", str(db_path), "add", "now", "true"])
    assert result.exit_code == 0, result.output
    assert db.get_job(1).cwd.resolve() == workdir.resolve()


def test_add_rejects_bad_run_at(invoke, db):
    result = invoke("add", "whenever", "true")
    assert result.exit_code == 1
    assert "Invalid run_at" in result.stderr
    assert db.get_all_jobs() == []


def test_list_empty(invoke):
    result = invoke("list")
    assert result.exit_code == 0
    assert "No jobs found." in result.stdout


def test_list_shows_result_summary_and_filters(invoke, db, make_job):
    done = db.enqueue(make_job(script="exit 4"))
    db.enqueue(make_job(script="sleep 100", run_at=datetime.now(timezone.utc) + timedelta(days=1)))
    Worker(db, sleep=lambda seconds: None).tick()

    result = invoke("list", "--state", "done")
    assert result.exit_code == 0
    assert f"{done.id} | - | state=done" in result.stdout
    assert "result=exit=4" in result.stdout
    assert "sleep 100" not in result.stdout


def test_delete(invoke, db, make_job):
    job = db.enqueue(make_job())

    result = invoke("delete", str(job.id))

    assert result.exit_code == 0
    assert db.get_job(job.id) is None


def test_delete_missing_job(invoke):
    result = invoke("delete", "42")
    assert result.exit_code == 1
    assert "Job 42 not found" in result.stderr


def test_delete_running_job(invoke, db, make_job):
    job = db.enqueue(make_job())
    db.storage.update_job_state(job, JobState.RUNNING)

    result = invoke("delete", str(job.id))

    assert result.exit_code == 1
    assert "Cannot delete" in result.stderr
    assert db.get_job(job.id).state == JobState.RUNNING


def test_cancel(invoke, db, make_job):
    job = db.enqueue(make_job())

    assert invoke("cancel", str(job.id)).exit_code == 0
    assert db.get_job(job.id).state == JobState.CANCELED

    result = invoke("cancel", str(job.id))
    assert result.exit_code == 1
    assert "Cannot cancel" in result.stderr


def test_log_prints_stdout_and_stderr(invoke, db, make_job):
    job = db.enqueue(make_job(script="echo hi; echo warn >&2"))
    Worker(db, sleep=lambda seconds: None).tick()

    result = invoke("log", str(job.id))

    assert result.exit_code == 0
    assert result.stdout == "hi\n"
    assert "warn\n" in result.stderr


def test_log_missing_job(invoke):
    result = invoke("log", "9")
    assert result.exit_code == 1
    assert "Job 9 not found" in result.stderr


def test_log_without_result(invoke, db, make_job):
    job = db.enqueue(make_job())
    result = invoke("log", str(job.id))
    assert result.exit_code == 1
    assert "has no result" in result.stderr


def test_rescue(invoke, db, make_job):
    job = db.enqueue(make_job())
    db.storage.update_job_state(job, JobState.DEQUEUED)

    result = invoke("rescue")

    assert result.exit_code == 0
    assert f"Returned 1 job(s) to the queue: {job.id}" in result.stdout
    assert db.get_job(job.id).state == JobState.QUEUED
    assert "No orphaned jobs found." in invoke("rescue").stdout


def test_config_commands(invoke):
    assert "poll_interval not set" in invoke("config", "get", "poll_interval").stdout
    assert "poll_interval=1.0 (default)" in invoke("config", "get", "poll_interval", "--default", "1.0").stdout

    assert invoke("config", "set", "poll_interval", "0.5").exit_code == 0
    assert "poll_interval=0.5" in invoke("config", "get", "poll_interval").stdout
    assert "poll_interval=0.5 (updated_at=" in invoke("config", "list").stdout


def test_config_rejects_bad_poll_interval(invoke):
    result = invoke("config", "set", "poll_interval", "0")
    assert result.exit_code == 1
    assert "No config keys set." in invoke("config", "list").stdout


def test_run_rejects_non_numeric_stored_poll_interval(invoke, db):
    db.storage.set_config("poll_interval", "fast")

    result = invoke("run")

    assert result.exit_code == 1
    assert "poll_interval must be a positive number of seconds, got 'fast'" in result.stderr


def test_run_rejects_non_positive_poll_interval(invoke):
    result = invoke("run", "--poll-interval", "0")

    assert result.exit_code == 1
    assert "must be a positive number of seconds" in result.stderr
