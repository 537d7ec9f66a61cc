"""
Batch job runner for periodic consolidation and mining passes.

Each eligible instance gets one pass per run. A failure on one instance is
logged and counted without stopping the others. Passes over the same instance
are serialized, and instances not started before the wall-clock cap are
reported as skipped.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from ..models.core import BatchReport, InstanceInfo
from ..utils.config import MemoryEngineConfig, config
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


class BatchJobRunner:
    """Runs a per-instance job across many instances."""

    def __init__(self, settings: Optional[MemoryEngineConfig] = None, monotonic: Callable[[], float] = time.monotonic):
        self.settings = settings or config.memory
        self.monotonic = monotonic
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def lock_for(self, instance_id: str) -> threading.Lock:
        with self._locks_guard:
            if instance_id not in self._locks:
                self._locks[instance_id] = threading.Lock()
            return self._locks[instance_id]

    def run_one(self, instance_id: str, job: Callable[[str], Any]) -> Any:
        """Run a job for one instance while holding that instance's lock."""
        with self.lock_for(instance_id):
            return job(instance_id)

    def run(self, job_name: str, instances: List[InstanceInfo], job: Callable[[str], Any]) -> BatchReport:
        """
        Run a job once for every eligible instance.

        Args:
            job_name: Label used in logs and the report
            instances: Candidate instances; ineligible ones are ignored
            job: Callable taking an instance id

        Returns:
            BatchReport with per-instance results and errors
        """
        report = BatchReport(job=job_name)
        report_lock = threading.Lock()
        eligible = [instance for instance in instances if instance.eligible]
        deadline = self.monotonic() + self.settings.batch_time_limit_seconds

        logger.info(f'Starting {job_name} for {len(eligible)} eligible instances')

        def process(instance: InstanceInfo) -> None:
            instance_id = instance.instance_id
            if self.monotonic() >= deadline:
                with report_lock:
                    report.skipped += 1
                return

            try:
                result = self.run_one(instance_id, job)
            except Exception as e:
                logger.error(f'{job_name} failed for instance {instance_id}: {e}')
                with report_lock:
                    report.failed += 1
                    report.errors[instance_id] = str(e)
                return

            with report_lock:
                report.succeeded += 1
                report.results[instance_id] = result

        workers = max(1, self.settings.batch_workers)
        if workers == 1:
            for instance in eligible:
                process(instance)
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=job_name) as executor:
                list(executor.map(process, eligible))

        if report.skipped:
            logger.warning(f'{job_name} hit its time limit, {report.skipped} instances skipped')
        logger.info(f'Finished {job_name}: {report.succeeded} succeeded, {report.failed} failed, '
                    f'{report.skipped} skipped')
        return report
