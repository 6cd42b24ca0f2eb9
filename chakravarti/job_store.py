"""
JobStore - Persist job records.

The JobStore manages Job records: the spec, config, attempt history (with
plans, step results and verdicts) and the current RunState. The orchestrator
saves the job after every attempt and when it reaches a terminal state.

Storage backends:
- In-memory (for testing)
- File-based (one JSON document per job)
"""

import json
import logging
import random
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from chakravarti.schemas import Job, RunState

logger = logging.getLogger(__name__)

DEFAULT_JOBS_DIR = "jobs"


def generate_ulid() -> str:
    """
    Generate a ULID (Universally Unique Lexicographically Sortable Identifier).

    ULIDs are 26 characters, encoding:
    - 48 bits of timestamp (milliseconds since Unix epoch)
    - 80 bits of randomness

    Sorting job ids sorts jobs by creation time.
    """
    # Crockford's Base32 alphabet (excludes I, L, O, U)
    alphabet = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = []
    for _ in range(10):
        timestamp_chars.append(alphabet[timestamp_ms & 0x1F])
        timestamp_ms >>= 5
    timestamp_part = "".join(reversed(timestamp_chars))

    random_part = "".join(random.choice(alphabet) for _ in range(16))
    return timestamp_part + random_part


class JobStore(ABC):
    """
    Abstract base class for job storage.

    Implementations must provide methods to save, fetch and list jobs.
    """

    @abstractmethod
    def save_job(self, job: Job) -> None:
        """
        Store or update a job record.

        Args:
            job: The Job to store
        """
        pass

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Job]:
        """
        Retrieve a job by ID.

        Returns:
            The Job if found, None otherwise
        """
        pass

    @abstractmethod
    def list_jobs(self, state: Optional[RunState] = None) -> list[Job]:
        """
        List stored jobs, oldest first.

        Args:
            state: Only return jobs in this state
        """
        pass


class InMemoryJobStore(JobStore):
    """
    In-memory implementation of JobStore for testing.

    Stores serialized snapshots, so later mutation of a Job does not leak
    into what was saved.
    """

    def __init__(self):
        self._jobs: dict[str, dict] = {}

    def save_job(self, job: Job) -> None:
        self._jobs[job.id] = job.to_dict()

    def get_job(self, job_id: str) -> Optional[Job]:
        data = self._jobs.get(job_id)
        return Job.from_dict(data) if data is not None else None

    def list_jobs(self, state: Optional[RunState] = None) -> list[Job]:
        jobs = [Job.from_dict(self._jobs[job_id]) for job_id in sorted(self._jobs)]
        if state is not None:
            jobs = [j for j in jobs if j.state == state]
        return jobs

    def clear(self) -> None:
        """Clear all stored data (for testing)."""
        self._jobs.clear()


class FileJobStore(JobStore):
    """
    File-based implementation of JobStore.

    Stores one JSON file per job:
        store_dir/
            jobs/
                {job_id}.json
    """

    def __init__(self, store_dir: Path | str):
        self._store_dir = Path(store_dir)
        self._jobs_dir = self._store_dir / DEFAULT_JOBS_DIR
        self._jobs_dir.mkdir(parents=True, exist_ok=True)

    @property
    def store_dir(self) -> Path:
        return self._store_dir

    def _path(self, job_id: str) -> Path:
        return self._jobs_dir / f"{job_id}.json"

    def save_job(self, job: Job) -> None:
        path = self._path(job.id)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(job.to_dict(), f, indent=2)
        tmp_path.replace(path)

    def get_job(self, job_id: str) -> Optional[Job]:
        path = self._path(job_id)
        if not path.exists():
            return None
        with open(path) as f:
            data = json.load(f)
        return Job.from_dict(data)

    def list_jobs(self, state: Optional[RunState] = None) -> list[Job]:
        jobs = []
        for path in sorted(self._jobs_dir.glob("*.json")):
            try:
                with open(path) as f:
                    job = Job.from_dict(json.load(f))
            except (json.JSONDecodeError, KeyError, ValueError) as e:
                logger.warning("Skipping unreadable job record %s: %s", path.name, e)
                continue
            if state is None or job.state == state:
                jobs.append(job)
        return jobs
