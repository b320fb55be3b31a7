import asyncio
from typing import IO, TYPE_CHECKING, Any, List, Optional, Type, TypeVar, Union

import aiohttp
from pydantic import BaseModel, TypeAdapter, ValidationError

from inspector_client.errors import DecodeError
from inspector_client.models import (
    DEFAULT_PAGE_SIZE,
    FacingCount,
    Image,
    Pagination,
    PriceTag,
    Realogram,
    RecognitionErrorRequest,
    RecognitionErrorResponse,
    RecognizeRequest,
    RecognizeResponse,
    Report,
    ReportWaitOptions,
    Sku,
    UploadByUrlRequest,
    Visit,
    WebhookReports,
)
from inspector_client.pagination import PageIterator, collect_all
from inspector_client.waiter import ReportWaiter

if TYPE_CHECKING:
    from inspector_client.client import InspectorClient

M = TypeVar("M", bound=BaseModel)

ENDPOINT_UPLOADS = "uploads/"
ENDPOINT_UPLOADS_BY_URL = "uploads/upload_by_url/"
ENDPOINT_RECOGNIZE = "recognize/"
ENDPOINT_RECOGNITION_ERROR = "recognition_error/"
ENDPOINT_REPORT = "reports/{id}/"
ENDPOINT_SKU = "sku/"
ENDPOINT_VISITS = "visits/"


def decode_list(model: Type[M], payload: Any) -> List[M]:
    """Weakly decode a list of JSON objects into ``model`` instances.

    Extra keys are ignored, missing keys take the model defaults and numeric
    strings are coerced. ``None`` decodes to an empty list.
    """
    if payload is None:
        return []
    try:
        return TypeAdapter(List[model]).validate_python(payload)
    except ValidationError as e:
        raise DecodeError(f"failed to decode {model.__name__} list: {e}") from e


def _dump(request: BaseModel) -> dict:
    return request.model_dump(mode="json", by_alias=True, exclude_none=True)


class Service:
    def __init__(self, client: "InspectorClient"):
        self.client = client


class ImageService(Service):
    """Image uploads."""

    async def upload(self, file: Union[IO[bytes], bytes], filename: str) -> Image:
        form = aiohttp.FormData()
        form.add_field("file", file, filename=filename)
        data = await self.client.request("POST", ENDPOINT_UPLOADS, data=form)
        return Image.model_validate(data)

    async def upload_by_url(self, url: str) -> Image:
        body = _dump(UploadByUrlRequest(url=url))
        data = await self.client.request("POST", ENDPOINT_UPLOADS_BY_URL, json=body)
        return Image.model_validate(data)


class VisitService(Service):
    async def add_visit(self) -> Visit:
        data = await self.client.request("POST", ENDPOINT_VISITS, json={})
        return Visit.model_validate(data)


class RecognizeService(Service):
    async def recognize(self, request: RecognizeRequest) -> RecognizeResponse:
        """Start asynchronous recognition; the response maps report types to report IDs"""
        data = await self.client.request("POST", ENDPOINT_RECOGNIZE, json=_dump(request))
        return RecognizeResponse.model_validate(data)

    async def recognition_error(
        self, request: RecognitionErrorRequest
    ) -> RecognitionErrorResponse:
        data = await self.client.request(
            "POST", ENDPOINT_RECOGNITION_ERROR, json=_dump(request)
        )
        return RecognitionErrorResponse.model_validate(data)


class ReportService(Service):
    async def get_report(self, report_id: int) -> Report:
        data = await self.client.request("GET", ENDPOINT_REPORT.format(id=report_id))
        return Report.model_validate(data)

    async def wait_for_report(
        self,
        report_id: int,
        options: Optional[ReportWaitOptions] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Report:
        waiter = ReportWaiter(self.get_report)
        return await waiter.wait(report_id, options, cancel_event)

    def to_price_tags(self, payload: Any) -> List[PriceTag]:
        return decode_list(PriceTag, payload)

    def to_facing_count(self, payload: Any) -> List[FacingCount]:
        return decode_list(FacingCount, payload)

    def to_realogram(self, payload: Any) -> List[Realogram]:
        return decode_list(Realogram, payload)

    def parse_webhook_reports(self, body: Union[bytes, str]) -> WebhookReports:
        """Parse the JSON IC posts to a webhook once reports are generated"""
        try:
            return WebhookReports.model_validate_json(body)
        except ValidationError as e:
            raise DecodeError(f"failed to parse webhook reports: {e}") from e


class SkuService(Service):
    async def get_sku(self, offset: int, limit: int) -> Pagination:
        data = await self.client.request(
            "GET", ENDPOINT_SKU, params={"limit": limit, "offset": offset}
        )
        return Pagination.model_validate(data)

    def to_sku(self, payload: Any) -> List[Sku]:
        return decode_list(Sku, payload)

    def iterate_sku(self, page_size: int = DEFAULT_PAGE_SIZE) -> PageIterator[Sku]:
        return PageIterator(self.get_sku, self.to_sku, page_size)

    async def get_all_sku(self, page_size: int = DEFAULT_PAGE_SIZE) -> List[Sku]:
        return await collect_all(self.iterate_sku(page_size))
