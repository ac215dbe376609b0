"""
Worker process for executing jobs.

The worker polls the jobs table, leases one job at a time, executes it,
and repeats until its iteration budget runs out or it is told to stop.
"""

import logging
import random
import signal
import socket
import threading

from sqlalchemy.exc import SQLAlchemyError

from dbqueue.config import Settings, get_settings
from dbqueue.constants import CandidateOrder
from dbqueue.db import JobStore, engine_from_settings
from dbqueue.lease import Lease
from dbqueue.observability.logging import bind_context, setup_logging
from dbqueue.observability.metrics import MetricsCollector, get_metrics, setup_metrics
from dbqueue.observability.tracing import setup_tracing
from dbqueue.types.job import WorkerRunSummary
from dbqueue.worker.executor import JobExecutor
from dbqueue.worker.handlers import HandlerRegistry, default_registry

logger = logging.getLogger(__name__)


def resolve_hostname() -> str:
    """Get this machine's host name, or "Unknown" if it cannot be resolved."""
    try:
        return socket.gethostname() or "Unknown"
    except OSError:
        logger.warning("Hostname can not be resolved")
        return "Unknown"


class Worker:
    """
    Job worker that polls for and executes jobs.

    Features:
    - Lease acquisition through a single conditional UPDATE per candidate
    - Candidate shuffling to spread competing workers over different rows
    - One job at a time; parallelism comes from running more workers
    - Releases every lease it holds when it stops
    """

    def __init__(
        self,
        store: JobStore,
        worker_prefix: str | None = None,
        queue: str | None = None,
        count: int | None = None,
        sleep: float | None = None,
        max_attempts: int | None = None,
        fail_on_output: bool | None = None,
        candidate_order: CandidateOrder | None = None,
        registry: HandlerRegistry | None = None,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
        rng: random.Random | None = None,
    ):
        """
        Initialize the worker.

        Arguments left as None are taken from the settings.

        Args:
            store: The job store.
            worker_prefix: Prefix of the worker identity "<prefix>@<host>".
            queue: The queue to work on.
            count: How many polling iterations to run before exiting. 0 = no limit.
            sleep: Seconds to sleep when no job could be leased.
            max_attempts: Attempts allowed per job before it fails permanently.
            fail_on_output: Fail jobs whose handler writes to stdout.
            candidate_order: Order in which claimable jobs are considered.
            registry: Handler registry used to rebuild handlers.
            settings: Settings supplying defaults.
            metrics: Metrics collector.
            rng: Random source for candidate shuffling.
        """
        settings = settings or get_settings()

        def pick(value, default):
            return default if value is None else value

        self.store = store
        self.queue = pick(queue, settings.queue)
        self.count = pick(count, settings.worker_count)
        self.sleep = pick(sleep, settings.worker_sleep_seconds)
        self.max_attempts = pick(max_attempts, settings.max_attempts)
        self.fail_on_output = pick(fail_on_output, settings.fail_on_output)
        self.candidate_order = pick(candidate_order, settings.candidate_order)
        self.registry = registry or default_registry

        self.hostname = resolve_hostname()
        self.name = f"{pick(worker_prefix, settings.worker_prefix)}@{self.hostname}"

        self._stop_event = threading.Event()
        self._metrics = metrics or get_metrics()
        self._rng = rng or random.Random()

    def stop(self) -> None:
        """Ask the worker to stop after the current job."""
        logger.info("Worker stopping", extra={"worker_name": self.name})
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def release_locks(self) -> int:
        """
        Release all leases this worker identity holds.

        Returns:
            Number of released leases.
        """
        return self.store.release_worker_locks(self.name)

    def get_new_job(self) -> JobExecutor | None:
        """
        Lease a job and wrap it in an executor.

        Candidates are ordered by creation time and then shuffled, so workers
        polling at the same moment tend to try different rows first.

        Returns:
            An executor for the leased job, or None if nothing could be leased.
        """
        try:
            candidates = self.store.find_candidates(
                queue=self.queue,
                worker_name=self.name,
                max_attempts=self.max_attempts,
                order=self.candidate_order,
            )
        except SQLAlchemyError:
            logger.exception("Failed to poll for jobs", extra={"queue": self.queue})
            return None

        self._rng.shuffle(candidates)

        for job_id in candidates:
            lease = Lease(self.store, job_id, self.name)
            try:
                acquired = lease.acquire()
            except SQLAlchemyError:
                logger.exception("Failed to acquire lease", extra={"job_id": job_id})
                continue

            if not acquired:
                self._metrics.record_lease_contended(self.name)
                continue

            self._metrics.record_lease_acquired(self.name)
            return JobExecutor(
                store=self.store,
                job_id=job_id,
                worker_name=self.name,
                max_attempts=self.max_attempts,
                fail_on_output=self.fail_on_output,
                registry=self.registry,
                metrics=self._metrics,
            )

        return None

    def run_job(self, executor: JobExecutor) -> None:
        """
        Run one leased job, surviving storage errors.

        A storage error while resolving the job abandons it: the lease is
        given back if the store allows it, and the row is left for a later
        poll. Anything else propagates.
        """
        try:
            executor.run()
        except SQLAlchemyError:
            logger.exception(
                "Storage error while running job",
                extra={"job_id": executor.job_id, "worker_name": self.name},
            )
            try:
                executor.lease.release()
            except SQLAlchemyError:
                logger.exception("Failed to release lease", extra={"job_id": executor.job_id})

    def run(self) -> WorkerRunSummary:
        """
        Run the polling loop.

        Returns:
            How many iterations ran and how many jobs were executed.

        Raises:
            Any non-storage error escaping job execution, after this
            worker's leases have been released.
        """
        logger.info(
            "Worker starting",
            extra={"worker_name": self.name, "queue": self.queue, "count": self.count},
        )

        iterations = 0
        jobs_run = 0
        try:
            while not self.stopped and (self.count == 0 or iterations < self.count):
                iterations += 1
                executor = self.get_new_job()

                if executor is None:
                    logger.debug(
                        "Failed to get a job, queue may be empty",
                        extra={"queue": self.queue},
                    )
                    self._stop_event.wait(self.sleep)
                    continue

                jobs_run += 1
                self.run_job(executor)
        except Exception:
            logger.exception("Unhandled exception in worker loop", extra={"worker_name": self.name})
            raise
        finally:
            self.release_locks()
            logger.info(
                f"Worker shutting down after running {jobs_run} jobs, over {iterations} polling iterations",
                extra={"worker_name": self.name},
            )

        return WorkerRunSummary(worker_name=self.name, iterations=iterations, jobs_run=jobs_run)


def run() -> None:
    """Run a worker configured from the environment."""
    settings = get_settings()
    setup_logging(settings)
    setup_tracing(settings)
    setup_metrics(settings.prometheus_port)

    store = JobStore(engine_from_settings(settings), table_name=settings.jobs_table)
    store.init_schema()

    worker = Worker(store, settings=settings)
    bind_context(worker_name=worker.name)

    # Handle shutdown signals
    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, lambda signum, frame: worker.stop())

    worker.run()


if __name__ == "__main__":
    run()
