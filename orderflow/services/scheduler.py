from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..utils.clock import utcnow
from .errors import NotFoundError
from .logging import log_event


@dataclass
class Job:
    name: str
    interval_seconds: float
    func: Callable[[datetime], Any]
    last_run_at: Optional[datetime] = None
    runs: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class JobScheduler:
    """Runs named jobs on fixed intervals, one daemon thread per job.

    Each job receives ``now`` from the injected clock. A run that is still in
    progress when the next tick arrives is skipped rather than overlapped.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._jobs: Dict[str, Job] = {}
        self._threads: List[threading.Thread] = []
        self._stop = threading.Event()

    def add_job(self, name: str, interval_seconds: float, func: Callable[[datetime], Any]) -> Job:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        job = Job(name=name, interval_seconds=interval_seconds, func=func)
        self._jobs[name] = job
        return job

    @property
    def job_names(self) -> List[str]:
        return sorted(self._jobs)

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def run_now(self, name: str) -> Any:
        job = self._jobs.get(name)
        if job is None:
            raise NotFoundError("Job", name)
        return self._run(job, wait=True)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._threads = []
        for job in self._jobs.values():
            t = threading.Thread(target=self._loop, args=(job,), name=f"job-{job.name}", daemon=True)
            t.start()
            self._threads.append(t)
        log_event("info", "scheduler.started", jobs=self.job_names)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        for t in self._threads:
            t.join(timeout=timeout)
        self._threads = []
        log_event("info", "scheduler.stopped")

    def _loop(self, job: Job) -> None:
        while not self._stop.wait(job.interval_seconds):
            try:
                self._run(job, wait=False)
            except Exception as exc:
                log_event("error", "scheduler.job_failed", job=job.name, error=str(exc))

    def _run(self, job: Job, wait: bool) -> Any:
        if not job.lock.acquire(blocking=wait):
            log_event("warning", "scheduler.job_busy", job=job.name)
            return None
        try:
            now = self._clock()
            result = job.func(now)
            job.last_run_at = now
            job.runs += 1
            return result
        finally:
            job.lock.release()
