import re
from urllib.parse import unquote, urljoin

from selectolax.parser import HTMLParser

from src.models.crawl import ContactInfo
from src.scraping.validator.email_validator import is_valid_email


class ContactParser:
    """Extracts emails, phone numbers, street addresses and social profiles."""

    EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
    PHONE_PATTERN = re.compile(r"(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}")
    ADDRESS_PATTERNS = [
        re.compile(
            r"\b\d{1,6}\s+(?:[A-Z][\w.]*\s+){1,4}"
            r"(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Lane|Ln"
            r"|Drive|Dr|Court|Ct|Place|Pl|Way)\b\.?"
            r"(?:,?\s+(?:Suite|Ste|Unit|#)\s*\d+\w?)?",
        ),
    ]

    # Checked in order; x.com is matched as twitter
    SOCIAL_PATTERNS = {
        "facebook": re.compile(
            r"https?://(?:www\.)?facebook\.com/(?!sharer|share|tr\b)[\w.\-]+", re.I
        ),
        "twitter": re.compile(r"https?://(?:www\.)?(?:twitter|x)\.com/(?!intent|share)\w+", re.I),
        "linkedin": re.compile(
            r"https?://(?:[a-z]{2,3}\.)?linkedin\.com/(?:company|in)/[\w\-%]+", re.I
        ),
        "instagram": re.compile(r"https?://(?:www\.)?instagram\.com/[\w.]+", re.I),
        "youtube": re.compile(
            r"https?://(?:www\.)?youtube\.com/(?:c/|channel/|user/|@)[\w\-]+", re.I
        ),
        "github": re.compile(r"https?://(?:www\.)?github\.com/[\w\-]+", re.I),
    }

    def __init__(self, html: str, base_url: str, text: str | None = None):
        self.tree = HTMLParser(html)
        self.base_url = base_url
        if text is None:
            text = self.tree.body.text(separator=" ") if self.tree.body else ""
        self.text = " ".join(text.split())

    def extract(self) -> ContactInfo:
        return ContactInfo(
            emails=self.extract_emails(),
            phones=self.extract_phones(),
            addresses=self.extract_addresses(),
            social_links=self.extract_social_links(),
        )

    def extract_emails(self) -> list[str]:
        candidates = self.EMAIL_PATTERN.findall(self.text)
        for href in self._hrefs("mailto:"):
            address = unquote(href[len("mailto:") :]).split("?", 1)[0]
            candidates.extend(a.strip() for a in address.split(","))

        emails = [e.lower() for e in candidates if is_valid_email(e)]
        return list(dict.fromkeys(emails))

    def extract_phones(self) -> list[str]:
        candidates = [m.strip() for m in self.PHONE_PATTERN.findall(self.text)]
        for href in self._hrefs("tel:"):
            candidates.append(unquote(href[len("tel:") :]).strip())

        phones: dict[str, str] = {}
        for phone in candidates:
            digits = re.sub(r"\D", "", phone)
            if 10 <= len(digits) <= 15:
                phones.setdefault(digits[-10:], phone)
        return list(phones.values())

    def extract_addresses(self) -> list[str]:
        addresses: list[str] = []
        for pattern in self.ADDRESS_PATTERNS:
            addresses.extend(m.group(0).strip() for m in pattern.finditer(self.text))
        return list(dict.fromkeys(addresses))

    def extract_social_links(self) -> dict[str, str]:
        """First profile link found per platform."""
        links: dict[str, str] = {}
        for node in self.tree.css("a[href]"):
            try:
                href = urljoin(self.base_url, (node.attributes.get("href") or "").strip())
            except ValueError:
                continue
            for platform, pattern in self.SOCIAL_PATTERNS.items():
                if platform not in links and pattern.match(href):
                    links[platform] = href
                    break
        return links

    def _hrefs(self, prefix: str) -> list[str]:
        hrefs: list[str] = []
        for node in self.tree.css("a[href]"):
            href = (node.attributes.get("href") or "").strip()
            if href.lower().startswith(prefix):
                hrefs.append(href)
        return hrefs
