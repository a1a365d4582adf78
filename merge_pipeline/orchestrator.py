import logging
import os
import shutil
import sqlite3
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import requests

from .errors import PipelineError
from .fetcher import DEFAULT_RETRIES, DEFAULT_RETRY_DELAY, DownloadResult, SourceDescriptor, fetch_database
from .merger import MergeReport, merge_group
from .schema import extract_schema

logger = logging.getLogger(__name__)


@dataclass
class GroupOutcome:
    group: str
    success: bool
    output_path: str
    sources_total: int = 0
    downloads: List[DownloadResult] = field(default_factory=list)
    report: Optional[MergeReport] = None
    error: Optional[str] = None
    skipped: bool = False
    duration_seconds: float = 0.0

    @property
    def sources_merged(self) -> int:
        return sum(1 for d in self.downloads if d.success)

    def to_dict(self) -> dict:
        return {
            "group": self.group,
            "success": self.success,
            "skipped": self.skipped,
            "sources_total": self.sources_total,
            "sources_merged": self.sources_merged,
            "downloads": [d.to_dict() for d in self.downloads],
            "report": self.report.to_dict() if self.report else None,
            "error": self.error,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class MergeOrchestrator:
    """
    Runs fetch -> schema -> merge -> cleanup for one group of sources.
    - run: full outcome (downloads, merge report, timings)
    - refresh_group: True when a merged file was produced at output_path
    """

    def __init__(
        self,
        downloads_dir: str,
        session: Optional[requests.Session] = None,
        retries: int = DEFAULT_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: Optional[float] = None,
        max_workers: Optional[int] = None,
    ):
        self.downloads_dir = downloads_dir
        self.session = session or requests.Session()
        self.retries = retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.max_workers = max_workers
        self._last: Dict[str, GroupOutcome] = {}
        self._lock = threading.Lock()

    def last_outcome(self, group: str) -> Optional[GroupOutcome]:
        with self._lock:
            return self._last.get(group)

    def _fetch(self, source: SourceDescriptor) -> DownloadResult:
        return fetch_database(
            source.url,
            source.local_path,
            session=self.session,
            retries=self.retries,
            retry_delay=self.retry_delay,
            timeout=self.timeout,
        )

    def fetch_all(self, sources: Sequence[SourceDescriptor]) -> List[DownloadResult]:
        """Fetch every source concurrently; results keep declaration order."""
        if not sources:
            return []
        workers = self.max_workers or len(sources)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as pool:
            return list(pool.map(self._fetch, sources))

    def run(self, urls: Sequence[str], output_path: str, group_name: str) -> GroupOutcome:
        started = time.monotonic()
        outcome = GroupOutcome(group=group_name, success=False, output_path=output_path, sources_total=len(urls))
        scratch = os.path.join(self.downloads_dir, f"{group_name}-{uuid.uuid4().hex[:12]}")
        try:
            if not urls:
                outcome.error = "no sources configured"
                logger.warning(f"{group_name}: no sources configured; keeping current data")
                return outcome

            os.makedirs(scratch, exist_ok=True)
            sources = [
                SourceDescriptor(url=url, group=group_name, local_path=os.path.join(scratch, f"source-{i}.sqlite"))
                for i, url in enumerate(urls)
            ]
            outcome.downloads = self.fetch_all(sources)
            ok = [d for d in outcome.downloads if d.success]
            if not ok:
                outcome.error = "all sources failed to download"
                logger.error(f"{group_name}: all {len(urls)} sources failed; keeping current data")
                return outcome

            logger.info(f"{group_name}: {len(ok)}/{len(urls)} sources downloaded, merging")
            try:
                schema = extract_schema(ok[0].local_path)
                outcome.report = merge_group(ok, output_path, schema=schema)
                outcome.success = True
            except (PipelineError, sqlite3.Error, OSError) as e:
                outcome.error = f"merge failed: {e}"
                logger.exception(f"{group_name}: merge into {output_path} failed")
                remove_quietly(output_path)
            return outcome
        finally:
            shutil.rmtree(scratch, ignore_errors=True)
            outcome.duration_seconds = time.monotonic() - started
            with self._lock:
                self._last[group_name] = outcome

    def refresh_group(self, urls: Sequence[str], output_path: str, group_name: str) -> bool:
        return self.run(urls, output_path, group_name).success


def remove_quietly(path: str):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")
