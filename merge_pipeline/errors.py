from typing import Optional


class PipelineError(Exception):
    """Base class for errors raised by the merge pipeline."""


class FetchError(PipelineError):
    """A remote database file could not be downloaded.

    ``kind`` is ``"status"`` for a non-2xx response (``status`` holds the code)
    or ``"network"`` for a transport failure.
    """

    def __init__(self, url: str, kind: str, status: Optional[int] = None, reason: str = ""):
        self.url = url
        self.kind = kind
        self.status = status
        self.reason = reason
        if kind == "status":
            message = f"HTTP {status} fetching {url}"
        else:
            message = f"network error fetching {url}: {reason}"
        super().__init__(message)


class MergeError(PipelineError):
    """The merged output database could not be produced."""


class HandleUnavailableError(PipelineError):
    """No merged database has been activated for the group yet."""

    def __init__(self, group: str):
        self.group = group
        super().__init__(f"no data available for group '{group}'")


class TableNotFoundError(PipelineError):
    def __init__(self, group: str, table: str):
        self.group = group
        self.table = table
        super().__init__(f"table '{table}' not found in group '{group}'")
