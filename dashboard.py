# dashboard.py
# Read-only web view of the job database:
#   uvicorn dashboard:create_app --factory
from contextlib import asynccontextmanager
from html import escape

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse

from config import ensure_data_dir, get_db_path
from manager import JobManager
from models import JobState
from storage import Storage

# ---------- Shared UI ----------
BASE_STYLE = """
  body { font-family: Arial, sans-serif; margin: 0; background: #f9f9f9; color: #333; }
  h1 { background: #2196F3; color: white; padding: 15px; margin: 0; }
  h2 { margin-top: 30px; color: #2196F3; }
  .container { padding: 20px; }
  .navbar { background: #1976D2; padding: 10px 20px; display: flex; gap: 20px; }
  .navbar a { color: white; text-decoration: none; font-weight: bold; }
  table { border-collapse: collapse; width: 100%; margin-top: 10px; background: white; }
  th, td { border: 1px solid #ddd; padding: 8px; text-align: left; }
  th { background-color: #2196F3; color: white; }
  tr:nth-child(even) { background-color: #f2f2f2; }
  a { color: #1976D2; }
  .cards { display: grid; grid-template-columns: repeat(auto-fit,minmax(220px,1fr)); gap: 16px; margin-top: 20px; }
  .card { background: white; border: 1px solid #ddd; border-radius: 6px; padding: 12px; }
  .muted { color: #555; }
"""


def page(title: str, body_html: str) -> str:
    return f"""
    <html>
    <head>
      <title>{title}</title>
      <style>{BASE_STYLE}</style>
    </head>
    <body>
      <h1>{title}</h1>
      <div class="navbar">
        <a href="/">🏠 Jobs</a>
        <a href="/jobs.json">🧾 JSON</a>
      </div>
      <div class="container">
        {body_html}
      </div>
    </body>
    </html>
    """


def _status_text(result):
    if result is None:
        return "-"
    return "killed" if result.status is None else str(result.status)


def _get_job(manager: JobManager, job_id: int):
    job = manager.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return job


def create_app(manager: JobManager = None) -> FastAPI:
    owns_manager = manager is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.manager is None:
            app.state.manager = JobManager(Storage(ensure_data_dir(get_db_path())))
        yield
        if owns_manager:
            app.state.manager.close()

    app = FastAPI(title="rat dashboard", lifespan=lifespan)
    app.state.manager = manager

    # ---------- Home ----------
    @app.get("/", response_class=HTMLResponse)
    def home(request: Request):
        manager = request.app.state.manager
        jobs = manager.get_all_jobs()

        body = """
        <h2>Jobs</h2>
        <table>
          <tr><th>ID</th><th>Name</th><th>State</th><th>Run at (UTC)</th><th>Exit status</th><th>Script</th></tr>
        """
        if not jobs:
            body += "</table><p class='muted'>No jobs found.</p>"
            return page("📊 Scheduled jobs", body)

        for job in jobs:
            result = manager.get_result(job) if job.state == JobState.DONE else None
            body += (
                f"<tr><td><a href='/jobs/{job.id}'>{job.id}</a></td><td>{escape(job.name or '-')}</td>"
                f"<td>{job.state.label}</td><td>{job.run_at.isoformat()}</td>"
                f"<td>{_status_text(result)}</td><td><code>{escape(job.script)}</code></td></tr>"
            )
        body += "</table>"
        return page("📊 Scheduled jobs", body)

    # ---------- JSON ----------
    @app.get("/jobs.json", response_class=JSONResponse)
    def jobs_json(request: Request):
        manager = request.app.state.manager
        rows = []
        for job in manager.get_all_jobs():
            result = manager.get_result(job) if job.state == JobState.DONE else None
            rows.append({
                "id": job.id,
                "name": job.name,
                "state": job.state.label,
                "script": job.script,
                "run_at": job.run_at.isoformat(),
                "cwd": str(job.cwd),
                "status": result.status if result else None,
            })
        return rows

    # ---------- Job detail ----------
    @app.get("/jobs/{job_id}", response_class=HTMLResponse)
    def job_detail(request: Request, job_id: int):
        manager = request.app.state.manager
        job = _get_job(manager, job_id)
        result = manager.get_result(job)

        body = f"""
          <h2>Job {job.id}</h2>
          <div class="cards">
            <div class="card"><b>Name</b><p>{escape(job.name or '-')}</p></div>
            <div class="card"><b>State</b><p>{job.state.label}</p></div>
            <div class="card"><b>Run at (UTC)</b><p>{job.run_at.isoformat()}</p></div>
            <div class="card"><b>Exit status</b><p>{_status_text(result)}</p></div>
          </div>

          <h3>Script</h3>
          <pre>{escape(job.script)}</pre>
          <p class="muted">in {escape(str(job.cwd))}</p>
        """
        if result is not None:
            body += f"""
          <h3>Stdout</h3>
          <pre>{escape(result.stdout) or "(no output)"}</pre>
          <h3>Stderr</h3>
          <pre>{escape(result.stderr) or "(no output)"}</pre>
          <p><a href="/jobs/{job.id}/stdout">⬇ stdout</a> <a href="/jobs/{job.id}/stderr">⬇ stderr</a></p>
            """
        return page(f"🔎 Job {job.id}", body)

    # ---------- Raw output ----------
    @app.get("/jobs/{job_id}/{stream}", response_class=PlainTextResponse)
    def job_output(request: Request, job_id: int, stream: str):
        if stream not in ("stdout", "stderr"):
            raise HTTPException(status_code=404, detail=f"Unknown stream {stream}")
        manager = request.app.state.manager
        result = manager.get_result(_get_job(manager, job_id))
        if result is None:
            raise HTTPException(status_code=404, detail=f"Job {job_id} has no result")
        return PlainTextResponse(getattr(result, stream), media_type="text/plain")

    return app
