import itertools
import random
from datetime import datetime, timezone

from aiohttp import web
from loguru import logger


class InspectorServer:
    """In-process stand-in for the IC API.

    Reports turn READY after ``polls_until_ready`` status requests, or ERROR
    with probability ``error_rate``. ``skus`` are served with limit/offset
    pagination and absolute ``next`` links.
    """

    def __init__(
        self,
        api_key: str = "test-key",
        polls_until_ready: int = 3,
        error_rate: float = 0.0,
        skus: list = None,
    ):
        self.api_key = api_key
        self.polls_until_ready = polls_until_ready
        self.error_rate = error_rate
        self.skus = skus if skus is not None else []
        self.report_polls = {}
        self.report_types = {}
        self.sku_requests = []
        self._ids = itertools.count(1)
        self.app = web.Application(middlewares=[self.auth_middleware])
        self.app.router.add_post("/uploads/", self.handle_upload)
        self.app.router.add_post("/uploads/upload_by_url/", self.handle_upload_by_url)
        self.app.router.add_post("/visits/", self.handle_visit)
        self.app.router.add_post("/recognize/", self.handle_recognize)
        self.app.router.add_post("/recognition_error/", self.handle_recognition_error)
        self.app.router.add_get("/reports/{id}/", self.handle_report)
        self.app.router.add_get("/sku/", self.handle_sku)
        self.logger = logger
        self.runner = None

    @web.middleware
    async def auth_middleware(self, request, handler):
        if request.headers.get("Authorization") != f"Token {self.api_key}":
            self.logger.info("Rejecting request without a valid token")
            return web.json_response({"detail": "Invalid token."}, status=401)
        return await handler(request)

    def _image(self, url=None):
        return {
            "id": next(self._ids),
            "url": url,
            "width": 1920,
            "height": 1080,
            "created_date": datetime.now(timezone.utc).isoformat(),
        }

    async def handle_upload(self, request):
        form = await request.post()
        upload = form.get("file")
        if upload is None or not hasattr(upload, "filename"):
            return web.json_response({"detail": "file is required"}, status=400)
        self.logger.info(f"Received upload {upload.filename}")
        return web.json_response(self._image())

    async def handle_upload_by_url(self, request):
        body = await request.json()
        return web.json_response(self._image(url=body["url"]))

    async def handle_visit(self, request):
        return web.json_response(
            {
                "id": next(self._ids),
                "shop": 1,
                "agent": "agent-1",
                "started_date": datetime.now(timezone.utc).isoformat(),
            }
        )

    async def handle_recognize(self, request):
        body = await request.json()
        reports = {}
        for report_type in body["report_types"]:
            report_id = next(self._ids)
            self.report_polls[report_id] = 0
            self.report_types[report_id] = report_type
            reports[report_type] = report_id
        return web.json_response(
            {
                "id": next(self._ids),
                "images": body["images"],
                "scene": "3f1c4a52-0b7e-4d3e-9c61-5b8a2d9e7f10",
                "reports": reports,
            }
        )

    async def handle_recognition_error(self, request):
        await request.json()
        return web.json_response({"recognition_error_id": next(self._ids)})

    async def handle_report(self, request):
        report_id = int(request.match_info["id"])
        if report_id not in self.report_polls:
            return web.json_response({"detail": "Not found."}, status=404)

        self.report_polls[report_id] += 1
        report = {
            "id": report_id,
            "report_type": self.report_types[report_id],
            "visit": 1,
        }

        if random.random() < self.error_rate:
            self.logger.info("Returning error status")
            return web.json_response({**report, "status": "ERROR"})

        if self.report_polls[report_id] >= self.polls_until_ready:
            self.logger.info(f"Returning ready status for report {report_id}")
            return web.json_response(
                {**report, "status": "READY", "json": [{"count": 2, "sku_id": 2176}]}
            )

        self.logger.info(
            f"Returning not ready status (poll {self.report_polls[report_id]})"
        )
        return web.json_response({**report, "status": "NOT_READY"})

    async def handle_sku(self, request):
        limit = int(request.query.get("limit", 100))
        offset = int(request.query.get("offset", 0))
        self.sku_requests.append((offset, limit))

        page = self.skus[offset : offset + limit]
        next_url = None
        if offset + limit < len(self.skus):
            next_url = str(request.url.update_query(offset=offset + limit, limit=limit))
        previous_url = None
        if offset > 0:
            previous_url = str(
                request.url.update_query(offset=max(offset - limit, 0), limit=limit)
            )
        return web.json_response(
            {
                "count": len(self.skus),
                "next": next_url,
                "previous": previous_url,
                "results": page,
            }
        )

    async def start(self, port: int = 8080):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
