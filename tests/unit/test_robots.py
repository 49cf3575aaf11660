import httpx

from src.services.robots import RobotsPolicy

ROBOTS = """
User-agent: LeadCrawlBot
Disallow: /private
Crawl-delay: 2

User-agent: *
Disallow: /
"""


class TestRobotsPolicy:
    async def test_rules_for_our_agent(self, make_robots_client):
        policy = RobotsPolicy("LeadCrawlBot/1.0", client=make_robots_client(ROBOTS))

        assert await policy.is_allowed("https://acme-widgets.com/about")
        assert not await policy.is_allowed("https://acme-widgets.com/private/reports")
        assert await policy.crawl_delay("https://acme-widgets.com/") == 2.0

    async def test_other_agents_fall_back_to_wildcard(self, make_robots_client):
        policy = RobotsPolicy("LeadCrawlBot/1.0", client=make_robots_client(ROBOTS))

        assert not await policy.is_allowed("https://acme-widgets.com/about", "OtherBot/2.0")

    async def test_robots_fetched_once_per_origin(self, make_robots_client):
        client = make_robots_client(ROBOTS)
        policy = RobotsPolicy("LeadCrawlBot/1.0", client=client)

        for path in ("/", "/about", "/contact"):
            await policy.is_allowed(f"https://acme-widgets.com{path}")
        await policy.is_allowed("https://other-domain.com/")

        assert [str(r.url) for r in client.requests] == [
            "https://acme-widgets.com/robots.txt",
            "https://other-domain.com/robots.txt",
        ]

    async def test_missing_robots_allows_everything(self, make_robots_client):
        policy = RobotsPolicy("LeadCrawlBot/1.0", client=make_robots_client(None))

        assert await policy.is_allowed("https://acme-widgets.com/anything")
        assert await policy.crawl_delay("https://acme-widgets.com/") is None

    async def test_unreachable_robots_allows_everything(self, make_robots_client):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        policy = RobotsPolicy("LeadCrawlBot/1.0", client=client)

        assert await policy.is_allowed("https://acme-widgets.com/")
