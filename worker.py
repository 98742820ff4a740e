# worker.py
import logging
import signal
import subprocess
import threading
import time
from datetime import datetime, timezone

from config import DEFAULT_POLL_INTERVAL
from exceptions import ExecutionError, RatError
from models import JobResult

logger = logging.getLogger(__name__)


def spawn(job):
    """Start job.script in a shell inside job.cwd."""
    try:
        return subprocess.Popen(
            job.script,
            shell=True,
            cwd=job.cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as e:
        raise ExecutionError(f"Cannot start job {job.id} in {job.cwd}: {e}") from e


def collect(process):
    """Wait for process and return (status, stdout, stderr).

    status is None when the process was killed by a signal.
    """
    try:
        out, err = process.communicate()
    except BaseException:
        process.kill()
        process.wait()
        raise
    status = process.returncode if process.returncode >= 0 else None
    return (
        status,
        out.decode("utf-8", errors="replace"),
        err.decode("utf-8", errors="replace"),
    )


class Worker:
    """Runs due jobs one at a time until stopped."""

    def __init__(self, manager, poll_interval=DEFAULT_POLL_INTERVAL, stop_event=None, sleep=None, clock=None):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.manager = manager
        self.poll_interval = poll_interval
        self.stop_event = stop_event or threading.Event()
        self._sleep = sleep or self.stop_event.wait
        self._clock = clock

    def _now(self):
        if self._clock:
            return self._clock()
        return datetime.now(timezone.utc)

    def stop(self):
        self.stop_event.set()

    def handle_signal(self, signum, frame):
        """First signal: finish the current job, then stop. Second signal: abort."""
        if self.stop_event.is_set():
            raise KeyboardInterrupt
        logger.info(f"Received signal {signum}, stopping after the current job")
        self.stop()

    def install_signal_handlers(self):
        for signum in (signal.SIGINT, signal.SIGTERM):
            signal.signal(signum, self.handle_signal)

    def run(self):
        logger.info(f"Worker started (poll_interval={self.poll_interval}s)")
        while not self.stop_event.is_set():
            try:
                self.tick()
            except RatError:
                # Whatever the lease could roll back is back in the queue
                logger.exception("Tick failed")
                self._sleep(self.poll_interval)
        logger.info("Worker stopped")

    def tick(self):
        """
        Process at most one job:
        - nothing queued: sleep one poll interval
        - next job due later than one poll interval: sleep one interval and
          give the job back to the queue
        - otherwise wait until it is due, run it and save the result
        Returns the saved JobResult, or None if nothing ran.
        """
        lease = self.manager.dequeue()
        if lease is None:
            self._sleep(self.poll_interval)
            return None

        with lease:
            job = lease.job
            wait = (job.run_at - self._now()).total_seconds()
            if wait > self.poll_interval:
                self._sleep(self.poll_interval)
                return None
            if wait > 0:
                self._sleep(wait)
                if self.stop_event.is_set():
                    return None

            # deleted or canceled while waiting
            lease.verify()
            process = spawn(job)
            try:
                lease.mark_running()
            except BaseException:
                process.kill()
                process.wait()
                raise

            logger.info(f"Job {job.id}: started `{job.script}` (pid={process.pid}, cwd={job.cwd})")
            start = time.monotonic()
            status, stdout, stderr = collect(process)
            duration = time.monotonic() - start
            result = lease.save_result(JobResult(job_id=job.id, status=status, stdout=stdout, stderr=stderr))
            logger.info(f"Job {job.id}: finished (status={status}, duration={duration:.3f}s)")
            return result
