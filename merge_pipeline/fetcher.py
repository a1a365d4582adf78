import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from .errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0
CHUNK_SIZE = 1024 * 64


@dataclass
class SourceDescriptor:
    url: str
    group: str
    local_path: str


@dataclass
class DownloadResult:
    url: str
    local_path: str
    success: bool
    error: Optional[str] = None
    attempts: int = 0
    size_bytes: int = 0

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "success": self.success,
            "error": self.error,
            "attempts": self.attempts,
            "size_bytes": self.size_bytes,
        }


def _download(url: str, destination: str, session: requests.Session, timeout: Optional[float]) -> int:
    """Single attempt. Writes to a .part file and renames it into place."""
    partial = destination + ".part"
    try:
        with session.get(url, stream=True, timeout=timeout) as response:
            if not 200 <= response.status_code < 300:
                raise FetchError(url, "status", status=response.status_code)
            written = 0
            with open(partial, "wb") as fh:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        fh.write(chunk)
                        written += len(chunk)
    except requests.RequestException as e:
        _discard(partial)
        raise FetchError(url, "network", reason=str(e)) from e
    except (FetchError, OSError):
        _discard(partial)
        raise
    os.replace(partial, destination)
    return written


def _discard(path: str):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def fetch_database(
    url: str,
    destination: str,
    attempt: int = 0,
    session: Optional[requests.Session] = None,
    retries: int = DEFAULT_RETRIES,
    retry_delay: float = DEFAULT_RETRY_DELAY,
    timeout: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> DownloadResult:
    """
    Download ``url`` to ``destination``, overwriting any existing file.
    On failure retry up to ``retries`` more times with a fixed ``retry_delay``.
    Never raises for fetch failures: the returned result carries the last error
    and the caller decides whether to continue with the remaining sources.
    """
    session = session or requests.Session()
    try:
        os.makedirs(os.path.dirname(os.path.abspath(destination)), exist_ok=True)
    except OSError as e:
        logger.error(f"Cannot prepare download directory for {destination}: {e}")
        return DownloadResult(url=url, local_path=destination, success=False, error=str(e), attempts=0)
    last_error: Optional[FetchError] = None
    tries = 0
    while attempt <= retries:
        tries += 1
        try:
            size = _download(url, destination, session, timeout)
            logger.info(f"Fetched {url} ({size} bytes, attempt {attempt + 1})")
            return DownloadResult(url=url, local_path=destination, success=True, attempts=tries, size_bytes=size)
        except FetchError as e:
            last_error = e
            logger.warning(f"Fetch attempt {attempt + 1} failed for {url}: {e}")
        except OSError as e:
            last_error = FetchError(url, "network", reason=str(e))
            logger.warning(f"Fetch attempt {attempt + 1} could not write {destination}: {e}")
        attempt += 1
        if attempt <= retries:
            sleep(retry_delay)

    logger.error(f"Giving up on {url} after {tries} attempts: {last_error}")
    return DownloadResult(
        url=url,
        local_path=destination,
        success=False,
        error=str(last_error) if last_error else "no attempts made",
        attempts=tries,
    )
