from src.data.tech_signatures import TECH_SIGNATURES
from src.models.crawl import TechStack

_LIST_FIELDS = {
    "analytics": "analytics",
    "marketing": "marketing_tools",
    "chat": "chat_widgets",
    "framework": "frameworks",
    "payment": "payment",
}


class TechParser:
    """Detects the platform and third-party tools from HTML source and headers."""

    def __init__(self, html: str, headers: dict[str, str] | None = None):
        self.html = html.lower()
        self.headers = {k.lower(): v.lower() for k, v in (headers or {}).items()}

    def detect(self) -> TechStack:
        stack = TechStack()
        for sig in TECH_SIGNATURES:
            if not self._matches(sig["signals"]):
                continue
            category = sig["category"]
            if category == "cms":
                # First matching platform wins
                stack.platform = stack.platform or sig["name"]
            elif category in _LIST_FIELDS:
                getattr(stack, _LIST_FIELDS[category]).append(sig["name"])
        return stack

    def _matches(self, signals: list[str]) -> bool:
        for signal in signals:
            if signal in self.html:
                return True
            if any(signal in value for value in self.headers.values()):
                return True
        return False
