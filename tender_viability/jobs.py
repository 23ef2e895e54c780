"""
jobs.py — In-memory registry of long-running jobs (analyses, syncs).

One JobRegistry per process, passed to whoever needs it (the API creates
one at startup). Each job moves running → completed | failed exactly
once; anything else is a programming error and raises ValueError.
Readers always get a copy, never the live record.
"""

import logging
import threading
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from tender_viability.schemas import Job, TenantId

logger = logging.getLogger(__name__)


class JobRegistry:
    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def create(self, kind: str, tenant_id: Optional[TenantId] = None, message: str = "") -> Job:
        job = Job(job_id=uuid.uuid4().hex, kind=kind, tenant_id=tenant_id, message=message)
        with self._lock:
            self._jobs[job.job_id] = job
        logger.info("Job %s created (%s)", job.job_id, kind)
        return job.model_copy(deep=True)

    def _running(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(f"Unknown job: {job_id}")
        if job.status != "running":
            raise ValueError(f"Job {job_id} is already {job.status}")
        return job

    def update_progress(self, job_id: str, progress: int, message: str = "") -> None:
        with self._lock:
            job = self._running(job_id)
            job.progress = max(job.progress, min(100, max(0, int(progress))))
            if message:
                job.message = message

    def complete(self, job_id: str, result: Optional[Dict[str, Any]] = None, message: str = "") -> None:
        with self._lock:
            job = self._running(job_id)
            job.status = "completed"
            job.progress = 100
            job.result = result
            job.message = message or "Concluído"
            job.finished_at = datetime.now()
        logger.info("Job %s completed", job_id)

    def fail(self, job_id: str, error: str) -> None:
        with self._lock:
            job = self._running(job_id)
            job.status = "failed"
            job.error = error
            job.message = "Falhou"
            job.finished_at = datetime.now()
        logger.warning("Job %s failed: %s", job_id, error)

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job is not None else None

    def list(self, tenant_id: Optional[TenantId] = None) -> List[Job]:
        with self._lock:
            jobs = [j.model_copy(deep=True) for j in self._jobs.values()]
        if tenant_id is not None:
            jobs = [j for j in jobs if str(j.tenant_id) == str(tenant_id)]
        return sorted(jobs, key=lambda j: j.created_at)
