"""General utility helper functions"""

import datetime as dt
import os
from typing import List, Optional


def parse_csv_list(value: Optional[str]) -> List[str]:
    """Split a comma separated env value, dropping blanks"""
    if not value:
        return []
    return [item.strip() for item in value.split(',') if item.strip()]


def join_url(base: str, name: str) -> str:
    return base.rstrip('/') + '/' + name.lstrip('/')


def utc_now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


def cycle_stamp(now: Optional[dt.datetime] = None) -> str:
    """Filesystem-safe UTC timestamp with microseconds, unique per cycle"""
    now = now or dt.datetime.now(dt.timezone.utc)
    return now.strftime('%Y%m%dT%H%M%S%fZ')


def file_metadata(path: str) -> dict:
    """Return size in bytes and ISO last-modified time for a file"""
    try:
        st = os.stat(path)
    except OSError:
        return {'file_size': None, 'last_modified': None}
    modified = dt.datetime.fromtimestamp(st.st_mtime, tz=dt.timezone.utc)
    return {'file_size': st.st_size, 'last_modified': modified.isoformat()}
