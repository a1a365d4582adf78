import datetime as dt
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from utils.config import GroupSpec, Settings
from utils.helpers import cycle_stamp, utc_now_iso

from .connections import ConnectionManager
from .orchestrator import GroupOutcome, MergeOrchestrator, remove_quietly

logger = logging.getLogger(__name__)

JOB_ID = "merge_refresh"


@dataclass
class CycleResult:
    timestamp: str
    results: Dict[str, bool] = field(default_factory=dict)
    outcomes: Dict[str, GroupOutcome] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return bool(self.results) and all(self.results.values())

    def to_dict(self) -> dict:
        payload = {"success": self.success}
        payload.update(self.results)
        payload["timestamp"] = self.timestamp
        payload["details"] = {name: o.to_dict() for name, o in self.outcomes.items()}
        return payload


class RefreshScheduler:
    """
    Runs refresh cycles for every configured group: once at startup, then on a
    fixed interval, and on demand via run_cycle().
    Each group has an in-progress lock: timer cycles skip a group that is still
    refreshing, on-demand cycles wait for it.
    """

    def __init__(self, settings: Settings, manager: ConnectionManager,
                 orchestrator: Optional[MergeOrchestrator] = None):
        self.settings = settings
        self.manager = manager
        self.orchestrator = orchestrator or MergeOrchestrator(
            settings.downloads_dir,
            retries=settings.fetch_retries,
            retry_delay=settings.fetch_retry_delay,
            timeout=settings.fetch_timeout,
        )
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)
        self._group_locks = {g.name: threading.Lock() for g in settings.groups}

    def _output_path(self, group: str) -> str:
        return os.path.join(self.settings.data_dir, f"{group}-{cycle_stamp()}.sqlite")

    def refresh(self, spec: GroupSpec, blocking: bool = True) -> GroupOutcome:
        lock = self._group_locks[spec.name]
        if not lock.acquire(blocking=blocking):
            logger.warning(f"Refresh of {spec.name} still running; skipping this cycle")
            return GroupOutcome(group=spec.name, success=False, output_path="", skipped=True,
                                sources_total=len(spec.urls), error="refresh already in progress")
        try:
            os.makedirs(self.settings.data_dir, exist_ok=True)
            outcome = self.orchestrator.run(spec.urls, self._output_path(spec.name), spec.name)
            if outcome.success:
                activated = self.manager.activate_group(spec.name, outcome.output_path,
                                                        source_count=outcome.sources_merged)
                if not activated:
                    outcome.success = False
                    outcome.error = "merged file could not be activated"
                    remove_quietly(outcome.output_path)
            return outcome
        finally:
            lock.release()

    def run_cycle(self, blocking: bool = True) -> CycleResult:
        """Refresh all groups concurrently and activate the ones that succeeded."""
        groups = self.settings.groups
        result = CycleResult(timestamp=utc_now_iso())
        if not groups:
            return result
        with ThreadPoolExecutor(max_workers=len(groups), thread_name_prefix="refresh") as pool:
            futures = {g.name: pool.submit(self.refresh, g, blocking) for g in groups}
            for name, future in futures.items():
                outcome = future.result()
                result.outcomes[name] = outcome
                result.results[name] = outcome.success
        logger.info(f"Refresh cycle finished: {result.results}")
        return result

    def _job(self):
        try:
            self.run_cycle(blocking=False)
        except Exception as e:
            logger.exception(f"Scheduled refresh failed: {e}")

    def start(self, run_immediately: bool = True):
        trigger = IntervalTrigger(minutes=self.settings.refresh_interval_minutes)
        kwargs = {}
        if run_immediately:
            kwargs["next_run_time"] = dt.datetime.now(dt.timezone.utc)
        self.scheduler.add_job(
            self._job,
            trigger,
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **kwargs,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(f"Refresh scheduled every {self.settings.refresh_interval_minutes} minutes")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.manager.close_all()
