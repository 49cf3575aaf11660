from datetime import datetime
from typing import Any

from pydantic import BaseModel


class CacheEntry(BaseModel):
    key: str
    value: Any
    expires_at: datetime
    last_updated: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
