"""Models of the GitHub App API."""

from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import AwareDatetime, BaseModel, ConfigDict


class AccessToken(BaseModel):
    """An installation access token and the instant it expires."""

    model_config = ConfigDict(frozen=True)

    token: str
    expires_at: AwareDatetime

    def remaining(self, now: datetime) -> timedelta:
        """Time left until the token expires."""
        return self.expires_at - now

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(expires_at={self.expires_at.isoformat()})"

    __str__ = __repr__
