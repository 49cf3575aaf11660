from datetime import datetime

from pydantic import BaseModel


class ProxyEndpoint(BaseModel):
    host: str
    port: int
    protocol: str = "http"
    username: str | None = None
    password: str | None = None
    consecutive_failures: int = 0
    last_used_at: datetime | None = None

    @property
    def key(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def url(self) -> str:
        auth = ""
        if self.username:
            auth = f"{self.username}:{self.password or ''}@"
        return f"{self.protocol}://{auth}{self.host}:{self.port}"
