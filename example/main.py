import asyncio
import io

from inspector_server import InspectorServer
from inspector_client.client import InspectorClient
from inspector_client.config import InspectorSettings, configure_logging
from inspector_client.errors import InspectorError, WaitAbortedError
from inspector_client.models import RecognizeRequest, ReportType
from inspector_client.waiter import exponential_backoff


async def report_progress(report):
    print(f"Report {report.id} status: {report.status}")


async def main():
    PORT = 8000
    API_KEY = "demo-key"

    # LOG_LEVEL, POLL_INTERVAL and POLL_TIMEOUT still come from the environment
    settings = InspectorSettings(API_KEY=API_KEY, INSTANCE=f"http://localhost:{PORT}")
    configure_logging(settings.log_level)

    skus = [{"id": i, "cid": f"C-{i}", "name": f"SKU {i}"} for i in range(1, 8)]
    server = InspectorServer(api_key=API_KEY, polls_until_ready=3, skus=skus)
    await server.start(port=PORT)
    print(f"Server started on {settings.instance}")

    options = settings.wait_options(
        backoff=exponential_backoff(factor=2.0, max_interval=4.0),
        on_progress=report_progress,
    )

    async with InspectorClient.from_settings(settings) as client:
        try:
            image = await client.image.upload(io.BytesIO(b"\xff\xd8\xff"), "shelf.jpg")
            print(f"Image uploaded: ID={image.id}, Size={image.width}x{image.height}")

            visit = await client.visit.add_visit()
            print(f"Visit created: ID={visit.id}")

            recognition = await client.recognize.recognize(
                RecognizeRequest(
                    images=[image.id],
                    report_types=[ReportType.FACING_COUNT.value, ReportType.PRICE_TAGS.value],
                    visit=visit.id,
                )
            )
            print(f"Recognition started: ID={recognition.id}, reports={recognition.reports}")

            for report_type, report_id in recognition.reports.items():
                report = await client.report.wait_for_report(report_id, options)
                if report_type == ReportType.FACING_COUNT:
                    parsed = client.report.to_facing_count(report.json_data)
                elif report_type == ReportType.PRICE_TAGS:
                    parsed = client.report.to_price_tags(report.json_data)
                else:
                    parsed = report.json_data
                print(f"{report_type} ready: {parsed}")

            catalog = await client.sku.get_all_sku(page_size=3)
            print(f"Catalog has {len(catalog)} SKUs")
        except WaitAbortedError as e:
            print(f"Polling stopped: {e}")
        except InspectorError as e:
            print(f"Error occurred: {e}")

    await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
