from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.models.scraping import FetchEngine, FetchOptions
from src.scraping.fetcher.browser_fetcher import BrowserFetcher


class MockResponse:
    """Mock stealth browser response object."""

    def __init__(self, html_content: str = "", status: int = 200):
        self.html_content = html_content
        self.status = status


class TestBrowserFetcher:
    @pytest.fixture
    def fetcher(self):
        return BrowserFetcher()

    @pytest.mark.asyncio
    async def test_fetch_success(self, fetcher):
        mock_response = MockResponse(html_content="<html><body>" + "x" * 300 + "</body></html>")

        with patch("src.scraping.fetcher.browser_fetcher.StealthyFetcher", MagicMock()):
            with patch("asyncio.to_thread", new_callable=AsyncMock) as mock_thread:
                mock_thread.return_value = mock_response

                result = await fetcher.fetch("https://acme-widgets.com")

                assert result.status_code == 200
                assert result.engine == FetchEngine.BROWSER
                assert result.blocked is False

    @pytest.mark.asyncio
    async def test_proxy_passed_to_browser(self, fetcher):
        with patch("src.scraping.fetcher.browser_fetcher.StealthyFetcher", MagicMock()):
            with patch("asyncio.to_thread", new_callable=AsyncMock) as mock_thread:
                mock_thread.return_value = MockResponse(html_content="<html></html>")

                await fetcher.fetch(
                    "https://acme-widgets.com",
                    FetchOptions(proxy="http://user:pw@10.0.0.1:8080", timeout=15000),
                )

                kwargs = mock_thread.await_args.kwargs
                assert kwargs["proxy"] == {
                    "server": "http://10.0.0.1:8080",
                    "username": "user",
                    "password": "pw",
                }
                assert kwargs["timeout"] == 15000

    @pytest.mark.asyncio
    async def test_fetch_exception(self, fetcher):
        with patch("src.scraping.fetcher.browser_fetcher.StealthyFetcher", MagicMock()):
            with patch("asyncio.to_thread", new_callable=AsyncMock) as mock_thread:
                mock_thread.side_effect = Exception("Browser crashed")

                result = await fetcher.fetch("https://acme-widgets.com")

                assert result.status_code == 0
                assert result.blocked is True
                assert result.error == "Browser crashed"
                assert result.html == ""
