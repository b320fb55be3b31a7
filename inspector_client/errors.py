from typing import Optional


class InspectorError(Exception):
    """Base class for every error raised by the client."""


class APIError(InspectorError):
    """The API answered with a non-success HTTP status."""

    def __init__(self, status: int, message: str, url: str):
        super().__init__(f"HTTP {status} at {url}: {message}")
        self.status = status
        self.message = message
        self.url = url


class DecodeError(InspectorError):
    """A payload could not be decoded into the requested model."""


class FetchError(InspectorError):
    """Transport or decode failure while fetching a resource. Never retried."""


class ReportFetchError(FetchError):
    def __init__(self, report_id: int, attempt: int):
        super().__init__(f"failed to get report {report_id} on attempt {attempt}")
        self.report_id = report_id
        self.attempt = attempt


class PageFetchError(FetchError):
    def __init__(self, offset: int, message: Optional[str] = None):
        super().__init__(message or f"failed to fetch page at offset {offset}")
        self.offset = offset


class PageDecodeError(PageFetchError):
    def __init__(self, offset: int):
        super().__init__(offset, f"failed to decode page at offset {offset}")


class TerminalJobError(InspectorError):
    """The server reports the job itself has failed."""


class ReportFailedError(TerminalJobError):
    def __init__(self, report_id: int, status: str):
        super().__init__(f"report {report_id} finished with status {status}")
        self.report_id = report_id
        self.status = status


class WaitAbortedError(InspectorError):
    """Waiting stopped before a terminal status was seen."""

    def __init__(self, report_id: int, attempt: int, reason: str):
        super().__init__(f"waiting for report {report_id} {reason} after {attempt} attempt(s)")
        self.report_id = report_id
        self.attempt = attempt


class ReportWaitTimeoutError(WaitAbortedError, TimeoutError):
    def __init__(self, report_id: int, attempt: int, timeout: float):
        super().__init__(report_id, attempt, f"timed out ({timeout}s)")
        self.timeout = timeout


class ReportWaitCancelledError(WaitAbortedError):
    def __init__(self, report_id: int, attempt: int):
        super().__init__(report_id, attempt, "was cancelled")


class PaginationError(InspectorError):
    pass


class PaginationLoopError(PaginationError):
    def __init__(self, offset: int):
        super().__init__(f"detected pagination loop at offset {offset}")
        self.offset = offset


class PageLimitExceededError(PaginationError):
    def __init__(self, max_pages: int):
        super().__init__(f"exceeded maximum page limit of {max_pages}")
        self.max_pages = max_pages
