from inspector_client.client import InspectorClient
from inspector_client.config import InspectorSettings
from inspector_client.models import Report, ReportStatus, ReportType, ReportWaitOptions, Sku
from inspector_client.pagination import PageIterator, parse_next_offset
from inspector_client.waiter import ReportWaiter, exponential_backoff, linear_backoff

__all__ = [
    "InspectorClient",
    "InspectorSettings",
    "PageIterator",
    "Report",
    "ReportStatus",
    "ReportType",
    "ReportWaitOptions",
    "ReportWaiter",
    "Sku",
    "exponential_backoff",
    "linear_backoff",
    "parse_next_offset",
]
