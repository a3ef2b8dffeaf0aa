"""Authentication credentials and XRPC session models.

Credentials are owned by the calling application. The record client only reads them; it
never refreshes, mutates or persists them.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Tokens with less than this much validity left are treated as expired.
EXPIRY_MARGIN = timedelta(minutes=5)


class Credentials(BaseModel):
    """Authenticated identity used for record operations.

    Attributes:
        did: DID of the repository owner, used as the ``repo`` of every write
        handle: Handle the user logged in with
        access_token: Bearer token for authenticated XRPC calls
        refresh_token: Token accepted by com.atproto.server.refreshSession
        expires_at: When the access token stops being accepted
    """

    model_config = ConfigDict(frozen=True)

    did: str
    handle: str = ""
    access_token: str
    refresh_token: str
    expires_at: datetime

    @field_validator("expires_at")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if now is None:
            now = datetime.now(timezone.utc)
        return self.expires_at - now < EXPIRY_MARGIN

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return (
            len(self.handle) > 0
            and len(self.access_token) > 0
            and len(self.did) > 0
            and not self.is_expired(now)
        )


class Session(BaseModel):
    """Body returned by createSession and refreshSession."""

    model_config = ConfigDict(populate_by_name=True)

    access_jwt: str = Field(alias="accessJwt")
    refresh_jwt: str = Field(alias="refreshJwt")
    handle: str
    did: str
    active: Optional[bool] = None
    email: Optional[str] = None
    did_doc: Optional[Dict[str, Any]] = Field(None, alias="didDoc")

    def to_credentials(
        self, access_token_expiry: int, now: Optional[datetime] = None
    ) -> Credentials:
        """Build credentials from this session.

        Args:
            access_token_expiry: Access token lifetime in seconds
            now: Issue time, defaults to the current time
        """
        if now is None:
            now = datetime.now(timezone.utc)

        # TODO: Pull this from the access token JWT exp claim
        expires_at = now + timedelta(0, access_token_expiry)

        return Credentials(
            did=self.did,
            handle=self.handle,
            access_token=self.access_jwt,
            refresh_token=self.refresh_jwt,
            expires_at=expires_at,
        )
