from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Callable, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_POLL_TIMEOUT = 60.0
DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_PAGE_SIZE = 100
MAX_PAGINATION_PAGES = 1000


class ReportStatus(str, Enum):
    NOT_READY = "NOT_READY"
    READY = "READY"
    ERROR = "ERROR"


class ReportType(str, Enum):
    FACING_COUNT = "FACING_COUNT"
    SHARE_OF_SPAC = "SHARE_OF_SPAC"
    REALOGRAM = "REALOGRAM"
    PRICE_TAGS = "PRICE_TAGS"
    MHL_COMPLIANCE = "MHL_COMPLIANCE"
    PLANOGRAM_COMPLIANCE = "PLANOGRAM_COMPLIANCE"


def _weak_str(value: Any) -> Any:
    """Coerce scalars to str the way a weak decoder would (True -> "1")."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    return value


WeakStr = Annotated[str, BeforeValidator(_weak_str)]


class Payload(BaseModel):
    """Base for API payloads: unknown keys are ignored, missing ones defaulted."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Image(Payload):
    id: int
    url: Optional[str] = None
    width: int = 0
    height: int = 0
    created_date: Optional[datetime] = None


class UploadByUrlRequest(Payload):
    url: str


class Visit(Payload):
    id: int
    shop: Optional[int] = None
    agent: Optional[str] = None
    started_date: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class RecognizeRequest(Payload):
    images: List[int]
    report_types: List[str]
    display: Optional[int] = None
    visit: Optional[int] = None
    visit_datetime: Optional[datetime] = Field(default=None, alias="datetime")
    webhook: Optional[str] = None
    country_code: Optional[str] = None
    retail_chain: Optional[str] = None


class RecognizeResponse(Payload):
    id: int
    images: List[int] = Field(default_factory=list)
    display: Optional[int] = None
    scene: str = ""
    reports: Dict[str, int] = Field(default_factory=dict)


class RecognitionErrorRequest(Payload):
    images: List[int]
    sku_id: int = Field(alias="sku_gid")
    scene: str
    message: str


class RecognitionErrorResponse(Payload):
    recognition_error_id: int


class Report(Payload):
    id: int
    # kept as a plain string so unknown statuses still decode (and stay non-terminal)
    status: str
    report_type: str = ""
    created_date: Optional[datetime] = None
    updated_date: Optional[datetime] = None
    visit: Optional[int] = None
    json_data: Any = Field(default=None, alias="json")

    @property
    def is_ready(self) -> bool:
        return self.status == ReportStatus.READY

    @property
    def is_failed(self) -> bool:
        return self.status == ReportStatus.ERROR


class PriceTag(Payload):
    brand: WeakStr = ""
    manufacturer: WeakStr = ""
    price: float = 0.0
    name: WeakStr = ""
    category: WeakStr = ""
    sku_image_url: WeakStr = ""
    promo: WeakStr = ""
    sku_id: int = 0


class FacingCount(Payload):
    count: int = 0
    sku_id: int = 0


class RealogramAnnotation(Payload):
    h: int = 0
    w: int = 0
    x: int = 0
    y: int = 0
    name: WeakStr = ""
    sku_id: int = 0
    duplicate: bool = False


class ShelfAnnotation(Payload):
    x1: int = 0
    y1: int = 0
    x2: int = 0
    y2: int = 0


class Realogram(Payload):
    image: int = 0
    annotations: List[RealogramAnnotation] = Field(default_factory=list)
    shelf_annotations: List[ShelfAnnotation] = Field(default_factory=list)


class WebhookReportSet(Payload):
    facing_count: List[FacingCount] = Field(default_factory=list, alias="FACING_COUNT_1_5")
    price_tags: List[PriceTag] = Field(default_factory=list, alias="PRICE_TAGS")
    realogram: List[Realogram] = Field(default_factory=list, alias="REALOGRAM_1_5")


class WebhookReports(Payload):
    id: int
    display: Optional[int] = None
    reports: WebhookReportSet = Field(default_factory=WebhookReportSet)


class Sku(Payload):
    id: int
    cid: WeakStr = ""
    ean13: Optional[WeakStr] = None
    image: Optional[int] = None
    name: WeakStr = ""
    brand: Optional[int] = None
    category: Optional[int] = None
    manufacturer: Optional[int] = None
    size_x_mm: Optional[float] = None
    size_y_mm: Optional[float] = None
    size_z_mm: Optional[float] = None


class Pagination(Payload):
    count: int = 0
    next: Optional[str] = None
    previous: Optional[str] = None
    results: Any = None


ProgressCallback = Callable[[Report], Any]
BackoffFunc = Callable[[int, float], float]


class ReportWaitOptions(BaseModel):
    """Polling configuration for a single wait.

    ``interval`` and ``timeout`` are seconds. A zero value falls back to the
    default; a ``None`` or negative ``timeout`` removes the deadline.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    interval: float = DEFAULT_POLL_INTERVAL
    timeout: Optional[float] = DEFAULT_POLL_TIMEOUT
    backoff: Optional[BackoffFunc] = None
    on_progress: Optional[ProgressCallback] = None

    def with_defaults(self) -> "ReportWaitOptions":
        update = {}
        if self.interval == 0:
            update["interval"] = DEFAULT_POLL_INTERVAL
        if self.timeout == 0:
            update["timeout"] = DEFAULT_POLL_TIMEOUT
        return self.model_copy(update=update) if update else self

    @property
    def deadline_seconds(self) -> Optional[float]:
        if self.timeout is None or self.timeout <= 0:
            return None
        return self.timeout
