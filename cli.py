# cli.py
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import click

from config import (
    DEFAULT_POLL_INTERVAL,
    POLL_INTERVAL_KEY,
    ensure_data_dir,
    get_db_path,
    get_log_file,
)
from exceptions import InvalidState, NotFound, RatError
from manager import JobManager
from models import Job, JobState
from storage import Storage

logger = logging.getLogger(__name__)


def setup_logging(verbose=False, log_file=None):
    """Send log records to stderr, and to log_file when given."""
    level = logging.DEBUG if verbose else logging.INFO

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    handlers = [console_handler]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        ))
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)


def parse_run_at(value, now=None):
    """Parse 'now', '+SECONDS' or an ISO timestamp (naive means local time) into UTC."""
    now = now or datetime.now(timezone.utc)
    value = value.strip()
    if value == "now":
        return now
    if value.startswith("+"):
        return now + timedelta(seconds=int(value[1:]))
    scheduled = datetime.fromisoformat(value)
    if scheduled.tzinfo is None:
        scheduled = scheduled.astimezone()
    return scheduled.astimezone(timezone.utc)


def _fail(message):
    click.echo(f"❌ {message}", err=True)
    sys.exit(1)


def _get_job_or_fail(manager, job_id):
    job = manager.get_job(job_id)
    if job is None:
        _fail(f"Job {job_id} not found.")
    return job


def _result_summary(result):
    if result is None:
        return "-"
    if result.status is None:
        return "killed"
    return f"exit={result.status}"


@click.group()
@click.option("--db", "db_path", default=None, type=click.Path(dir_okay=False, path_type=Path),
              help="Job database (default: $RAT_DB or $RAT_DATA_DIR/rat.db)")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, db_path, verbose):
    """rat - run shell commands at a given time"""
    setup_logging(verbose=verbose, log_file=get_log_file())
    db_path = ensure_data_dir(db_path or get_db_path())
    try:
        storage = Storage(db_path)
    except RatError as e:
        raise click.ClickException(str(e)) from e
    ctx.obj = JobManager(storage)
    ctx.call_on_close(storage.close)


# ---------------- Add ----------------
@cli.command()
@click.argument("run_at")
@click.argument("script")
@click.argument("cwd", required=False, type=click.Path(file_okay=False, path_type=Path))
@click.option("--name", default=None, help="Label shown in listings")
@click.pass_obj
def add(manager, run_at, script, cwd, name):
    """Enqueue SCRIPT to run at RUN_AT (ISO timestamp, 'now' or +seconds) in CWD"""
    try:
        scheduled = parse_run_at(run_at)
    except ValueError as e:
        _fail(f"Invalid run_at value: {run_at} ({e})")

    try:
        job = Job(script=script, run_at=scheduled, cwd=(cwd or Path.cwd()).absolute(), name=name)
    except ValueError as e:
        _fail(f"Invalid job: {e}")

    job = manager.enqueue(job)
    click.echo(f"✅ Job {job.id} enqueued (run_at={job.run_at.isoformat()}).")


# ---------------- List Jobs ----------------
@cli.command(name="list")
@click.option("--state", default=None, type=click.Choice([s.label for s in JobState]),
              help="Only show jobs in this state")
@click.pass_obj
def list_jobs(manager, state):
    """List jobs"""
    jobs = manager.get_all_jobs(JobState.parse(state) if state else None)
    if not jobs:
        click.echo("No jobs found.")
        return

    for job in jobs:
        result = manager.get_result(job) if job.state == JobState.DONE else None
        click.echo(
            f"{job.id} | {job.name or '-'} | state={job.state.label} | "
            f"run_at={job.run_at.isoformat()} | result={_result_summary(result)} | {job.script}"
        )


# ---------------- Delete ----------------
@cli.command()
@click.argument("job_id", type=int)
@click.pass_obj
def delete(manager, job_id):
    """Delete a job and its result"""
    job = _get_job_or_fail(manager, job_id)
    try:
        manager.delete(job)
    except (NotFound, InvalidState) as e:
        _fail(str(e))
    click.echo(f"🗑 Job {job_id} deleted.")


# ---------------- Cancel ----------------
@cli.command()
@click.argument("job_id", type=int)
@click.pass_obj
def cancel(manager, job_id):
    """Cancel a job that has not started yet"""
    try:
        manager.cancel(job_id)
    except (NotFound, InvalidState) as e:
        _fail(str(e))
    click.echo(f"🚫 Job {job_id} canceled.")


# ---------------- Log ----------------
@cli.command()
@click.argument("job_id", type=int)
@click.pass_obj
def log(manager, job_id):
    """Print a finished job's stdout (and its stderr on stderr)"""
    job = _get_job_or_fail(manager, job_id)
    result = manager.get_result(job)
    if result is None:
        _fail(f"Job {job_id} has no result (state={job.state.label}).")
    click.echo(result.stdout, nl=False)
    click.echo(result.stderr, nl=False, err=True)


# ---------------- Rescue ----------------
@cli.command()
@click.pass_obj
def rescue(manager):
    """Return jobs orphaned in the dequeued state to the queue (worker must be stopped)"""
    ids = manager.recover()
    if not ids:
        click.echo("No orphaned jobs found.")
        return
    click.echo(f"🔧 Returned {len(ids)} job(s) to the queue: {', '.join(str(i) for i in ids)}")


# ---------------- Worker ----------------
def _poll_interval(manager, value):
    if value is None:
        value = manager.storage.get_config(POLL_INTERVAL_KEY, default=DEFAULT_POLL_INTERVAL)
    try:
        seconds = float(value)
    except ValueError:
        _fail(f"{POLL_INTERVAL_KEY} must be a positive number of seconds, got {value!r}")
    if seconds <= 0:
        _fail(f"{POLL_INTERVAL_KEY} must be a positive number of seconds, got {value!r}")
    return seconds


@cli.command()
@click.option("--poll-interval", default=None, type=float,
              help="Seconds between queue checks (uses config if set)")
@click.pass_obj
def run(manager, poll_interval):
    """Run the scheduler in the foreground"""
    from worker import Worker

    poll_interval = _poll_interval(manager, poll_interval)

    recovered = manager.recover()
    if recovered:
        click.echo(f"🔧 Requeued {len(recovered)} orphaned job(s).")

    worker = Worker(manager, poll_interval=poll_interval)
    worker.install_signal_handlers()
    click.echo(f"🚀 Scheduler running (poll={poll_interval}s). Press Ctrl+C to stop after the current job, twice to abort.")
    try:
        worker.run()
    except KeyboardInterrupt:
        click.echo("\n🛑 Scheduler aborted.")
        return
    click.echo("\n🛑 Scheduler stopped.")


# ---------------- Config management ----------------
@cli.group()
def config():
    """Runtime configuration for the scheduler"""
    pass

@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_obj
def config_set(manager, key, value):
    """Set a config key to a value"""
    if key == POLL_INTERVAL_KEY:
        try:
            if float(value) <= 0:
                raise ValueError
        except ValueError:
            _fail(f"{key} must be a positive number of seconds")
    manager.storage.set_config(key, value)
    click.echo(f"🛠️ Config '{key}' set to '{value}'.")

@config.command("get")
@click.argument("key")
@click.option("--default", default=None, help="Fallback if key not set")
@click.pass_obj
def config_get(manager, key, default):
    """Get a config key"""
    value = manager.storage.get_config(key)
    if value is None:
        if default is not None:
            click.echo(f"{key}={default} (default)")
        else:
            click.echo(f"{key} not set")
        return
    click.echo(f"{key}={value}")

@config.command("list")
@click.pass_obj
def config_list(manager):
    """List all config keys"""
    rows = manager.storage.list_config()
    if not rows:
        click.echo("No config keys set.")
        return
    for key, value, updated_at in rows:
        click.echo(f"{key}={value} (updated_at={updated_at})")


# ---------------- Entrypoint ----------------
if __name__ == "__main__":
    cli()
