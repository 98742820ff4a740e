# lease.py
import logging

from exceptions import InvalidState, NotFound
from models import JobState

logger = logging.getLogger(__name__)


def log_transition(job_id, old_state, new_state, extra=""):
    logger.info(f"Job {job_id}: {old_state.label} → {new_state.label} {extra}".rstrip())


class JobLease:
    """
    Exclusive custody of one dequeued job.

    Only JobManager creates leases, after the job has already been persisted
    as Dequeued. Use it as a context manager: leaving the block without
    save_result() or cancel() having succeeded puts the job back in the queue,
    but only if it is still Dequeued at that moment. Once mark_running() has
    committed the job stays Running.
    """

    def __init__(self, storage, job):
        if job.state != JobState.DEQUEUED:
            raise InvalidState(job.id, job.state, "lease")
        self._storage = storage
        self._job = job
        self._resolved = False
        self._released = False

    def __repr__(self):
        return f"<JobLease job={self._job.id} state={self._job.state.label} resolved={self._resolved}>"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

    @property
    def job(self):
        return self._job

    @property
    def resolved(self):
        return self._resolved

    def _require(self, state, action):
        if self._resolved:
            raise InvalidState(self._job.id, self._job.state, f"{action} (lease already resolved)")
        if self._job.state != state:
            raise InvalidState(self._job.id, self._job.state, action)

    def _lost(self, action):
        current = self._storage.select_job(self._job.id)
        if current is None:
            return NotFound(self._job.id)
        return InvalidState(self._job.id, current.state, action)

    def verify(self):
        """Raise unless the job is still persisted as Dequeued."""
        self._require(JobState.DEQUEUED, "start")
        current = self._storage.select_job(self._job.id)
        if current is None:
            raise NotFound(self._job.id)
        if current.state != JobState.DEQUEUED:
            raise InvalidState(self._job.id, current.state, "start")

    def mark_running(self):
        self._require(JobState.DEQUEUED, "start")
        if not self._storage.update_job_state(self._job, JobState.RUNNING, expected_state=JobState.DEQUEUED):
            raise self._lost("start")
        self._job.state = JobState.RUNNING
        log_transition(self._job.id, JobState.DEQUEUED, JobState.RUNNING)

    def cancel(self):
        self._require(JobState.DEQUEUED, "cancel")
        if not self._storage.update_job_state(self._job, JobState.CANCELED, expected_state=JobState.DEQUEUED):
            raise self._lost("cancel")
        self._job.state = JobState.CANCELED
        self._resolved = True
        log_transition(self._job.id, JobState.DEQUEUED, JobState.CANCELED)

    def save_result(self, result):
        """Store the outcome of the run; the job becomes Done. Single use."""
        if result.job_id != self._job.id:
            raise ValueError(f"result belongs to job {result.job_id}, lease holds job {self._job.id}")
        self._require(JobState.RUNNING, "save result for")
        result.id = self._storage.insert_job_result(result)
        self._job.state = JobState.DONE
        self._resolved = True
        log_transition(self._job.id, JobState.RUNNING, JobState.DONE, f"(status={result.status})")
        return result

    def release(self):
        """Return an unresolved job to the queue if nobody advanced it."""
        if self._released:
            return
        self._released = True
        if self._resolved:
            return
        try:
            requeued = self._storage.update_job_state(
                self._job, JobState.QUEUED, expected_state=JobState.DEQUEUED
            )
        except Exception:
            # Nothing is left to react to the failure; the job is recovered at next startup
            logger.warning(f"Job {self._job.id}: could not release lease", exc_info=True)
            return
        if requeued:
            self._job.state = JobState.QUEUED
            log_transition(self._job.id, JobState.DEQUEUED, JobState.QUEUED, "(lease released)")
