"""
Scheduler bridge — the runner's only view of the job system.

The runner calls enqueue(run_id) to start a fresh run, to continue a run whose
invocation budget ran out, and to re-enqueue an interrupted run. Delivery is
at-least-once; resume_or_run() is idempotent against duplicates.
"""
import logging
from abc import ABC, abstractmethod
from datetime import timedelta

from maintenance_tasks.config import JOB_TIMEOUT_SECONDS

logger = logging.getLogger('services.scheduler')

# Dotted path so RQ workers import the job function themselves
JOB_FUNCTION = 'maintenance_tasks.jobs.perform_run'


class SchedulerBridge(ABC):
    """Schedules a Run continuation to execute later, possibly in another process."""

    @abstractmethod
    def enqueue(self, run_id: int, delay: float = None) -> str:
        """
        Schedule resume_or_run(run_id).

        Args:
            run_id: The Run to continue.
            delay:  Seconds to wait before the job becomes runnable (throttling).

        Returns:
            The job id assigned by the job system.
        """
        ...


class RQScheduler(SchedulerBridge):
    """
    RQ-backed bridge.

    Delayed jobs go through enqueue_in(), which needs the worker to run with
    `rq worker --with-scheduler`.
    """

    def __init__(self, queue=None, job_timeout: int = JOB_TIMEOUT_SECONDS):
        self._queue = queue
        self.job_timeout = job_timeout

    @property
    def queue(self):
        if self._queue is None:
            from maintenance_tasks.extensions import get_queue
            self._queue = get_queue()
        return self._queue

    def enqueue(self, run_id: int, delay: float = None) -> str:
        if delay:
            job = self.queue.enqueue_in(
                timedelta(seconds=delay), JOB_FUNCTION, run_id, job_timeout=self.job_timeout,
            )
        else:
            job = self.queue.enqueue(JOB_FUNCTION, run_id, job_timeout=self.job_timeout)
        logger.info("Enqueued run %s as job %s%s", run_id, job.id, f' (in {delay}s)' if delay else '')
        return job.id
