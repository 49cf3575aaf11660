from urllib.parse import urljoin, urlparse, urlunparse

import tldextract

# Bundled public suffix snapshot only, never fetched over the network
_tld = tldextract.TLDExtract(suffix_list_urls=())


def normalize_url(url: str, base_url: str | None = None) -> str:
    """Normalize a URL: resolve relative, strip fragments, lowercase scheme/host."""
    if base_url and not url.startswith(("http://", "https://")):
        url = urljoin(base_url, url)

    parsed = urlparse(url)
    normalized = parsed._replace(
        scheme=parsed.scheme.lower(),
        netloc=parsed.netloc.lower(),
        fragment="",
    )
    # Strip trailing slash from path (unless it's just "/")
    path = normalized.path.rstrip("/") or "/"
    normalized = normalized._replace(path=path)

    return urlunparse(normalized)


def clean_domain(domain: str) -> str:
    """Reduce user input like 'https://www.Example.com/' to 'example.com'."""
    value = domain.strip().lower()
    for prefix in ("https://", "http://"):
        if value.startswith(prefix):
            value = value[len(prefix) :]
    value = value.split("/", 1)[0]
    return value.removeprefix("www.")


def registrable_domain(url: str) -> str:
    """Return the registrable domain of a URL or hostname.

    ``https://blog.example.co.uk/x`` and ``example.co.uk`` both give
    ``example.co.uk``. Hosts without a public suffix (localhost, IPs) are
    returned as-is.
    """
    extracted = _tld(url)
    if not extracted.suffix:
        return extracted.domain.lower()
    return f"{extracted.domain}.{extracted.suffix}".lower()


def is_valid_scrape_url(url: str) -> bool:
    """Check if a URL is worth scraping (not a file, mailto, anchor, etc.)."""
    if not url or url.startswith(("#", "mailto:", "tel:", "javascript:")):
        return False

    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False

    skip_extensions = {
        ".pdf",
        ".jpg",
        ".jpeg",
        ".png",
        ".gif",
        ".svg",
        ".webp",
        ".ico",
        ".css",
        ".js",
        ".json",
        ".woff",
        ".woff2",
        ".ttf",
        ".mp3",
        ".mp4",
        ".mov",
        ".zip",
        ".gz",
        ".xml",
        ".rss",
    }
    path_lower = parsed.path.lower()
    return not any(path_lower.endswith(ext) for ext in skip_extensions)
