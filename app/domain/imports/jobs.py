"""
In-process registry of parsed uploads.

Parsed rows are kept between the upload, validate and process calls so the
file is parsed exactly once. Entries expire after ``import_job_ttl_seconds``;
the original file itself is never stored.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from app.core.config import settings
from app.domain.imports.errors import ImportJobNotFound
from app.domain.imports.models import ImportJob, RawRow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _StoredJob:
    job: ImportJob
    rows: Tuple[RawRow, ...]
    stored_at: float


class ImportJobStore:
    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = settings.import_job_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._jobs: Dict[str, _StoredJob] = {}
        self._lock = threading.Lock()

    def _evict_expired(self) -> None:
        now = self._clock()
        expired = [job_id for job_id, entry in self._jobs.items() if now - entry.stored_at > self.ttl_seconds]
        for job_id in expired:
            del self._jobs[job_id]
        if expired:
            logger.info("Evicted %d expired import jobs", len(expired))

    def add(self, job: ImportJob, rows: List[RawRow]) -> None:
        with self._lock:
            self._evict_expired()
            self._jobs[job.id] = _StoredJob(job=job, rows=tuple(rows), stored_at=self._clock())

    def get(self, job_id: str) -> Tuple[ImportJob, Tuple[RawRow, ...]]:
        """
        Return the job and its rows.

        Raises:
            ImportJobNotFound: Unknown or expired job.
        """
        with self._lock:
            self._evict_expired()
            entry = self._jobs.get(job_id)
        if entry is None:
            raise ImportJobNotFound(job_id)
        return entry.job, entry.rows

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
