from enum import StrEnum

from pydantic import BaseModel


class FetchEngine(StrEnum):
    HTTP = "http"
    BROWSER = "browser"


class FetchResult(BaseModel):
    url: str
    status_code: int
    html: str
    headers: dict[str, str] = {}
    engine: FetchEngine | None = None
    duration_ms: int
    blocked: bool = False
    captcha_detected: bool = False
    error: str | None = None

    @property
    def network_failed(self) -> bool:
        """True when no HTTP response was received at all."""
        return self.status_code == 0


class FetchOptions(BaseModel):
    timeout: int = 30000
    user_agent: str | None = None
    proxy: str | None = None
    headers: dict[str, str] = {}
