import time

import pytest
import pytest_asyncio
from aiohttp import web

from src.core.client import CrawlApiClient, CrawlApiError
from src.crawler.executor import ApiCrawlExecutor, CrawlError, CrawlErrorType, classify_error
from src.crawler.tasks import Source


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (TimeoutError(), CrawlErrorType.TIMEOUT),
        (ConnectionRefusedError("refused"), CrawlErrorType.NETWORK),
        (RuntimeError("net::ERR_NAME_NOT_RESOLVED"), CrawlErrorType.NETWORK),
        (RuntimeError("Navigation timeout of 30000 ms exceeded"), CrawlErrorType.TIMEOUT),
        (RuntimeError("Cannot read properties of undefined"), CrawlErrorType.PARSE),
        (CrawlApiError(429, "Crawl API returned 429: too many requests"), CrawlErrorType.RATE_LIMIT),
        (CrawlApiError(403), CrawlErrorType.BLOCKED),
        (RuntimeError("captcha page detected"), CrawlErrorType.BLOCKED),
        (CrawlApiError(500), CrawlErrorType.UNKNOWN),
    ],
)
def test_classify_error(error, expected):
    assert classify_error(error) is expected


class _CrawlService:
    """模拟采集服务，按预设响应依次返回。"""

    def __init__(self):
        self.requests: list[tuple[str, dict, dict]] = []
        self.responses: list[web.Response] = []

    async def handle(self, request: web.Request) -> web.Response:
        self.requests.append((request.match_info["source"], dict(request.headers), await request.json()))
        if self.responses:
            return self.responses.pop(0)
        return web.json_response({"success": True, "itemsCollected": 0})


@pytest_asyncio.fixture
async def crawl_service():
    service = _CrawlService()
    app = web.Application()
    app.add_routes([web.post("/api/crawl/{source}", service.handle)])
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = runner.addresses[0][1]

    client = CrawlApiClient(f"http://127.0.0.1:{port}/", requests_per_minute=600, cooldown_seconds_429=30)
    try:
        yield service, client
    finally:
        await client.close()
        await runner.cleanup()


@pytest.mark.asyncio
async def test_executor_posts_internal_request(crawl_service):
    service, client = crawl_service
    service.responses.append(web.json_response({"success": True, "itemsCollected": 12}))
    executor = ApiCrawlExecutor(client)

    result = await executor.execute(Source.AMAZON, "Electronics", ("tv", "4k"))

    assert result.items_collected == 12
    source, headers, body = service.requests[0]
    assert source == "amazon"
    assert headers["X-Internal-Request"] == "true"
    assert body == {"category": "Electronics", "keywords": ["tv", "4k"]}


@pytest.mark.asyncio
async def test_executor_defaults_missing_item_count_to_zero(crawl_service):
    service, client = crawl_service
    service.responses.append(web.json_response({"success": True}))

    result = await ApiCrawlExecutor(client).execute(Source.EBAY, None, ())

    assert result.items_collected == 0
    assert service.requests[0][2] == {"category": None, "keywords": []}


@pytest.mark.asyncio
async def test_executor_rejects_unparseable_item_count(crawl_service):
    service, client = crawl_service
    service.responses.append(web.json_response({"itemsCollected": "lots"}))

    with pytest.raises(CrawlError, match="parse"):
        await ApiCrawlExecutor(client).execute(Source.EBAY, "Motors", ())


@pytest.mark.asyncio
@pytest.mark.parametrize("value", [-3, 2.5, True])
async def test_executor_rejects_invalid_item_count(crawl_service, value):
    service, client = crawl_service
    service.responses.append(web.json_response({"itemsCollected": value}))

    with pytest.raises(CrawlError, match="Invalid itemsCollected"):
        await ApiCrawlExecutor(client).execute(Source.EBAY, "Motors", ())


@pytest.mark.asyncio
async def test_client_raises_on_error_status(crawl_service):
    service, client = crawl_service
    service.responses.append(web.json_response({"error": "boom"}, status=500))

    with pytest.raises(CrawlApiError) as excinfo:
        await client.crawl(Source.ALIEXPRESS, "Home Improvement", [])
    assert excinfo.value.status == 500


@pytest.mark.asyncio
async def test_client_sets_cooldown_on_429(crawl_service):
    service, client = crawl_service
    service.responses.append(web.json_response({"error": "slow down"}, status=429))

    with pytest.raises(CrawlApiError) as excinfo:
        await client.crawl(Source.AMAZON, "Electronics", [])

    assert excinfo.value.status == 429
    assert classify_error(excinfo.value) is CrawlErrorType.RATE_LIMIT
    assert client._cooldown_until > time.monotonic() + 20


def test_client_uses_one_limiter_per_source():
    client = CrawlApiClient("http://localhost:3000", requests_per_minute=5)

    amazon = client.limiter_for(Source.AMAZON)
    assert client.limiter_for(Source.AMAZON) is amazon
    assert client.limiter_for(Source.EBAY) is not amazon
    assert amazon.max_rate == 5
    assert amazon.time_period == 60


def test_client_requires_positive_rate():
    with pytest.raises(ValueError, match="requests_per_minute"):
        CrawlApiClient("http://localhost:3000", requests_per_minute=0)
