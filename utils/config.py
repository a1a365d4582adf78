"""Runtime settings read from the environment (.env is loaded by app.py)"""

import os
import tempfile
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from utils.constants import (
    DATA_DIR_NAME,
    DEFAULT_BASELINE_TABLE,
    DEFAULT_FETCH_RETRIES,
    DEFAULT_FETCH_RETRY_DELAY,
    DEFAULT_LIGHTHOUSE_TABLE,
    DEFAULT_PORT,
    DEFAULT_REFRESH_INTERVAL_MINUTES,
    DEFAULT_SOURCE_FILES,
    DEFAULT_STORAGE_BASE_URL,
    DOWNLOADS_DIR_NAME,
    GROUPS,
)
from utils.helpers import join_url, parse_csv_list


@dataclass
class GroupSpec:
    name: str
    urls: List[str] = field(default_factory=list)


@dataclass
class Settings:
    groups: List[GroupSpec]
    data_dir: str
    refresh_interval_minutes: float = DEFAULT_REFRESH_INTERVAL_MINUTES
    fetch_retries: int = DEFAULT_FETCH_RETRIES
    fetch_retry_delay: float = DEFAULT_FETCH_RETRY_DELAY
    fetch_timeout: Optional[float] = None
    lighthouse_table: str = DEFAULT_LIGHTHOUSE_TABLE
    baseline_table: str = DEFAULT_BASELINE_TABLE
    port: int = DEFAULT_PORT
    timezone: str = 'UTC'

    @property
    def downloads_dir(self) -> str:
        return os.path.join(self.data_dir, DOWNLOADS_DIR_NAME)

    def group(self, name: str) -> GroupSpec:
        for spec in self.groups:
            if spec.name == name:
                return spec
        raise KeyError(name)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'Settings':
        env = os.environ if env is None else env
        base_url = env.get('STORAGE_BASE_URL', DEFAULT_STORAGE_BASE_URL)

        groups = []
        for name in GROUPS:
            override = env.get(f'{name.upper()}_DB_URLS')
            if override is not None:
                urls = parse_csv_list(override)
            else:
                urls = [join_url(base_url, f) for f in DEFAULT_SOURCE_FILES[name]]
            groups.append(GroupSpec(name=name, urls=urls))

        timeout = env.get('FETCH_TIMEOUT', '').strip()
        return cls(
            groups=groups,
            data_dir=env.get('DATA_DIR') or os.path.join(tempfile.gettempdir(), DATA_DIR_NAME),
            refresh_interval_minutes=float(env.get('REFRESH_INTERVAL_MINUTES', DEFAULT_REFRESH_INTERVAL_MINUTES)),
            fetch_retries=int(env.get('FETCH_RETRIES', DEFAULT_FETCH_RETRIES)),
            fetch_retry_delay=float(env.get('FETCH_RETRY_DELAY', DEFAULT_FETCH_RETRY_DELAY)),
            fetch_timeout=float(timeout) if timeout else None,
            lighthouse_table=env.get('LIGHTHOUSE_TABLE', DEFAULT_LIGHTHOUSE_TABLE),
            baseline_table=env.get('BASELINE_TABLE', DEFAULT_BASELINE_TABLE),
            port=int(env.get('PORT', DEFAULT_PORT)),
            timezone=env.get('SCHED_TZ', 'UTC'),
        )

    def summary(self) -> Dict[str, object]:
        return {
            'groups': {g.name: len(g.urls) for g in self.groups},
            'data_dir': self.data_dir,
            'refresh_interval_minutes': self.refresh_interval_minutes,
        }
