from typing import Any, Dict, Optional
from urllib.parse import urljoin

import aiohttp
from loguru import logger

from inspector_client.config import InspectorSettings
from inspector_client.errors import APIError
from inspector_client.models import DEFAULT_HTTP_TIMEOUT
from inspector_client.services import (
    ImageService,
    RecognizeService,
    ReportService,
    SkuService,
    VisitService,
)

AUTH_SCHEME = "Token"


class InspectorClient:
    """Async client for the Inspector Cloud API.

    Use as an async context manager so the underlying aiohttp session is
    closed. An externally created session can be injected; it is then left
    open on exit.
    """

    def __init__(
        self,
        instance: str,
        api_key: str,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        # a trailing slash keeps relative endpoint paths under the instance path
        self.instance = instance.rstrip("/") + "/"
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.logger = logger
        self._session = session
        self._owns_session = session is None

        self.image = ImageService(self)
        self.recognize = RecognizeService(self)
        self.report = ReportService(self)
        self.sku = SkuService(self)
        self.visit = VisitService(self)

    @classmethod
    def from_settings(cls, settings: InspectorSettings) -> "InspectorClient":
        return cls(
            instance=settings.instance,
            api_key=settings.api_key.get_secret_value(),
            timeout=settings.http_timeout,
        )

    async def __aenter__(self) -> "InspectorClient":
        self._get_session()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"{AUTH_SCHEME} {self.api_key}"}

    def url_for(self, path: str) -> str:
        return urljoin(self.instance, path.lstrip("/"))

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        data: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send a request and return the decoded JSON body"""
        url = self.url_for(path)
        session = self._get_session()
        self.logger.debug(f"{method} {url} params={params} json={json}")

        try:
            async with session.request(
                method, url, json=json, data=data, params=params, headers=self._headers()
            ) as response:
                response.raise_for_status()
                body = await response.json(content_type=None)
                self.logger.debug(f"{method} {url} -> {response.status}")
                return body
        except aiohttp.ClientResponseError as e:
            self.logger.error(f"HTTP error {e.status} at {url}: {e.message}")
            raise APIError(e.status, e.message, url) from e
