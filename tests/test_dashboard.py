import pytest
from fastapi.testclient import TestClient

from dashboard import create_app
from worker import Worker


@pytest.fixture
def client(manager):
    return TestClient(create_app(manager))


@pytest.fixture
def finished_job(manager, make_job):
    job = manager.enqueue(make_job(script="echo '<hi>'; echo err >&2", name="greet"))
    Worker(manager, sleep=lambda seconds: None).tick()
    return job


def test_home_lists_jobs(client, finished_job, manager, make_job):
    pending = manager.enqueue(make_job(script="true"))

    response = client.get("/")

    assert response.status_code == 200
    assert f"/jobs/{finished_job.id}" in response.text
    assert f"/jobs/{pending.id}" in response.text
    assert "&lt;hi&gt;" in response.text
    assert "queued" in response.text


def test_home_empty(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "No jobs found." in response.text


def test_jobs_json(client, finished_job, workdir):
    response = client.get("/jobs.json")

    assert response.status_code == 200
    assert response.json() == [{
        "id": finished_job.id,
        "name": "greet",
        "state": "done",
        "script": "echo '<hi>'; echo err >&2",
        "run_at": finished_job.run_at.isoformat(),
        "cwd": str(workdir),
        "status": 0,
    }]


def test_job_detail(client, finished_job):
    response = client.get(f"/jobs/{finished_job.id}")

    assert response.status_code == 200
    assert "done" in response.text
    assert "&lt;hi&gt;" in response.text
    assert f"/jobs/{finished_job.id}/stderr" in response.text


def test_job_detail_missing(client):
    assert client.get("/jobs/404").status_code == 404


def test_raw_output(client, finished_job):
    stdout = client.get(f"/jobs/{finished_job.id}/stdout")
    stderr = client.get(f"/jobs/{finished_job.id}/stderr")

    assert stdout.status_code == 200
    assert stdout.text == "<hi>\n"
    assert stderr.text == "err\n"
    assert client.get(f"/jobs/{finished_job.id}/other").status_code == 404


def test_raw_output_without_result(client, manager, make_job):
    job = manager.enqueue(make_job())
    assert client.get(f"/jobs/{job.id}/stdout").status_code == 404
