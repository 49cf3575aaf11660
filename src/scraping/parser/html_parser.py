import json
from typing import Any
from urllib.parse import urljoin

import structlog
from selectolax.parser import HTMLParser

from src.models.crawl import PageMetadata

log = structlog.get_logger()

_NON_CONTENT_TAGS = ["script", "style", "noscript"]


class HtmlParser:
    """General-purpose page parser using selectolax."""

    def __init__(self, html: str, base_url: str):
        self.html = html
        self.tree = HTMLParser(html)
        self.base_url = base_url

    def extract_title(self) -> str:
        title_tag = self.tree.css_first("title")
        if title_tag and title_tag.text(strip=True):
            return title_tag.text(strip=True)
        return self.extract_meta("og:title") or ""

    def extract_meta(self, name: str) -> str | None:
        """Extract a meta tag value by name or property."""
        for attr in ["name", "property"]:
            node = self.tree.css_first(f'meta[{attr}="{name}"]')
            if node:
                content = node.attributes.get("content")
                if content:
                    return content.strip()
        return None

    def extract_metadata(self) -> PageMetadata:
        description = self.extract_meta("description") or self.extract_meta("og:description")
        canonical = self.tree.css_first('link[rel="canonical"]')
        html_tag = self.tree.css_first("html")
        return PageMetadata(
            title=self.extract_title(),
            description=description or "",
            keywords=self.extract_meta("keywords") or "",
            author=self.extract_meta("author") or "",
            og_image=self.extract_meta("og:image") or "",
            canonical=(canonical.attributes.get("href") if canonical else None) or self.base_url,
            language=(html_tag.attributes.get("lang") if html_tag else None) or "en",
        )

    def extract_structured_data(self) -> list[Any]:
        """Parsed JSON-LD blocks, in document order. Malformed blocks are skipped."""
        blocks: list[Any] = []
        for script in self.tree.css('script[type="application/ld+json"]'):
            try:
                blocks.append(json.loads(script.text() or ""))
            except json.JSONDecodeError:
                log.debug("json_ld_malformed", url=self.base_url)
        return blocks

    def extract_links(self, base_url: str | None = None) -> list[str]:
        """Absolute hrefs of every anchor, deduplicated in document order."""
        base = base_url or self.base_url
        urls: list[str] = []
        for node in self.tree.css("a[href]"):
            href = (node.attributes.get("href") or "").strip()
            if not href or href.startswith(("#", "mailto:", "tel:", "javascript:")):
                continue
            try:
                urls.append(urljoin(base, href))
            except ValueError:
                continue
        return list(dict.fromkeys(urls))

    def extract_text(self) -> str:
        """Visible body text with whitespace collapsed."""
        tree = HTMLParser(self.html)
        tree.strip_tags(_NON_CONTENT_TAGS)
        body = tree.body
        if body is None:
            return ""
        return " ".join(body.text(separator=" ").split())
