# models.py
import enum
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class JobState(enum.IntEnum):
    QUEUED = 0
    DEQUEUED = 1
    RUNNING = 2
    DONE = 3
    CANCELED = 4

    @property
    def label(self):
        return self.name.lower()

    @classmethod
    def parse(cls, value):
        try:
            return cls[value.upper()]
        except KeyError:
            raise ValueError(f"unknown job state: {value}") from None


@dataclass
class Job:
    script: str
    run_at: datetime
    cwd: Path = field(default_factory=Path.cwd)
    name: Optional[str] = None
    id: Optional[int] = None
    state: JobState = JobState.QUEUED

    def __post_init__(self):
        if not self.script or not self.script.strip():
            raise ValueError("script must not be empty")
        if self.run_at.tzinfo is None:
            raise ValueError("run_at must be timezone-aware")
        self.run_at = self.run_at.astimezone(timezone.utc)
        self.cwd = Path(os.fsdecode(self.cwd))
        self.state = JobState(self.state)


@dataclass
class JobResult:
    job_id: int
    status: Optional[int] = None  # None when the process died from a signal
    stdout: str = ""
    stderr: str = ""
    id: Optional[int] = None

    @property
    def succeeded(self):
        return self.status == 0
