"""
Shared test configuration and fixtures for Anchor Kit tests.

Provides settings, credentials and a record client wired to the in-memory FakePDS.
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.dropanchor.anchorkit.atproto.client import ATProtoClient
from app.dropanchor.anchorkit.config import Settings
from app.dropanchor.anchorkit.model.credentials import Credentials

from fakes import FakePDS, TEST_DID, TEST_PDS


@pytest.fixture
def settings() -> Settings:
    return Settings(pds_url=TEST_PDS)  # type: ignore


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(
        did=TEST_DID,
        handle="user.bsky.social",
        access_token="access-token",
        refresh_token="refresh-token",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=2),
    )


@pytest.fixture
def fake_pds() -> FakePDS:
    return FakePDS()


@pytest.fixture
def pds_client(fake_pds: FakePDS) -> ATProtoClient:
    return ATProtoClient(fake_pds, TEST_PDS)
