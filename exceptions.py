# exceptions.py


class RatError(Exception):
    """Base class for scheduler errors"""


class NotFound(RatError):
    """Job or result does not exist"""

    def __init__(self, job_id, what="Job"):
        self.job_id = job_id
        super().__init__(f"{what} {job_id} not found")


class InvalidState(RatError):
    """Operation is not allowed for the job's current state"""

    def __init__(self, job_id, state, action):
        self.job_id = job_id
        self.state = state
        self.action = action
        super().__init__(f"Cannot {action} job {job_id} in state {getattr(state, 'label', state)}")


class StorageError(RatError):
    """A database read, write or transaction failed"""


class ExecutionError(RatError):
    """The job's command could not be spawned"""
