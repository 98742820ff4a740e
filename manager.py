# manager.py
import logging

from exceptions import InvalidState, NotFound
from lease import JobLease, log_transition
from models import JobState

logger = logging.getLogger(__name__)


class JobManager:
    """Entry point for everything that reads or changes jobs."""

    def __init__(self, storage):
        self.storage = storage

    def close(self):
        self.storage.close()

    def enqueue(self, job):
        """Persist job as Queued and return it with its new id. Past run_at means due now."""
        job.state = JobState.QUEUED
        job.id = self.storage.insert_job(job)
        logger.info(f"Job {job.id} enqueued (run_at={job.run_at.isoformat()})")
        return job

    def dequeue(self):
        """Lease the queued job that is due first, or return None when the queue is empty."""
        job = self.storage.claim_job()
        if job is None:
            return None
        log_transition(job.id, JobState.QUEUED, JobState.DEQUEUED)
        return JobLease(self.storage, job)

    def get_job(self, job_id):
        return self.storage.select_job(job_id)

    def get_all_jobs(self, state=None):
        if state is None:
            return self.storage.select_all_jobs()
        return self.storage.select_jobs_by_state(state)

    def get_result(self, job):
        return self.storage.select_job_result(job.id)

    def delete(self, job):
        if job.state == JobState.RUNNING:
            raise InvalidState(job.id, job.state, "delete")
        self.storage.delete_job(job.id)
        logger.info(f"Job {job.id} deleted")

    def cancel(self, job_id):
        """Cancel a job that is still waiting in the queue.

        The job is leased first, the same way the worker takes it, so the
        two can never both own it.
        """
        job = self.storage.claim_job(job_id)
        if job is None:
            current = self.storage.select_job(job_id)
            if current is None:
                raise NotFound(job_id)
            raise InvalidState(job_id, current.state, "cancel")
        log_transition(job.id, JobState.QUEUED, JobState.DEQUEUED, "(cancel requested)")
        with JobLease(self.storage, job) as lease:
            lease.cancel()
        return lease.job

    def recover(self):
        """Requeue jobs left Dequeued by a worker that died without releasing them.

        Only safe while no worker is running; returns the requeued ids.
        """
        recovered = []
        for job in self.storage.select_jobs_by_state(JobState.DEQUEUED):
            if self.storage.update_job_state(job, JobState.QUEUED, expected_state=JobState.DEQUEUED):
                log_transition(job.id, JobState.DEQUEUED, JobState.QUEUED, "(recovered orphaned lease)")
                recovered.append(job.id)
        return recovered
