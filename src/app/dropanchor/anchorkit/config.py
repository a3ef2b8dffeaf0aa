"""
Configuration Module for Anchor Kit

This module defines the configuration system for Anchor Kit, using Pydantic for settings
validation. Settings are loaded once at process start and handed explicitly to the
components that need them (client, transport, discovery). There is no shared global
configuration object.

Key configuration areas include:
- PDS endpoints and the managed-hosting provider used for fallback guesses
- Identity resolution (PLC directory)
- Request identification and timeouts
- Token lifetimes
- Monitoring and observability
"""

from typing import Optional
import logging
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Settings for Anchor Kit clients.

    This class uses Pydantic's BaseSettings to load values from environment variables,
    with defaults that point at the public Bluesky network. For example, the PDS that
    receives requests can be set with the PDS_URL environment variable.
    """

    debug: bool = False
    """
    Enable debug mode for verbose request/response logging.
    Set with DEBUG=true environment variable.
    """

    pds_url: str = "https://bsky.social"
    """
    Base URL of the PDS that receives XRPC requests when none was discovered.
    Set with PDS_URL environment variable.
    """

    managed_pds_url: str = "https://bsky.social"
    """
    PDS of the managed hosting provider, returned by handle based guesses for handles
    under managed_handle_suffix.
    Set with MANAGED_PDS_URL environment variable.
    """

    managed_handle_suffix: str = ".bsky.social"
    """
    Handle suffix of accounts hosted by the managed hosting provider.
    Set with MANAGED_HANDLE_SUFFIX environment variable.
    """

    plc_hostname: str = "plc.directory"
    """
    Hostname for the PLC directory service for DID resolution.
    Set with PLC_HOSTNAME environment variable.
    """

    user_agent: str = "Anchor/1.0"
    """
    Product identifier sent in the User-Agent header of every request.
    Set with USER_AGENT environment variable.
    """

    request_timeout: float = 30.0
    """
    Total timeout in seconds applied by the transport to each request.
    Set with REQUEST_TIMEOUT environment variable.
    """

    access_token_expiry: int = 7200  # 2 hours
    """
    Lifetime in seconds assumed for access tokens returned by createSession and
    refreshSession.
    Set with ACCESS_TOKEN_EXPIRY environment variable.
    """

    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    metrics_backend: str = "none"
    """
    Metrics backend, either 'telegraf' or 'none'.
    Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    statsd_prefix: str = "anchorkit"
    """
    Prefix for all StatsD metrics emitted by this library.
    Set with STATSD_PREFIX environment variable.
    """

    @field_validator("pds_url", "managed_pds_url", mode="before")
    @classmethod
    def validate_base_url(cls, v) -> str:
        """
        Validate a PDS base URL.

        Accepts http and https URLs and strips a trailing slash so that XRPC paths can be
        appended directly.

        Raises:
            ValueError: If the value is not an http(s) URL
        """
        if not isinstance(v, str) or not v.startswith(("https://", "http://")):
            raise ValueError("PDS URLs must start with https:// or http://")
        return v.rstrip("/")

    @field_validator("metrics_backend", mode="before")
    @classmethod
    def validate_metrics_backend(cls, v) -> str:
        if not isinstance(v, str) or v.lower() not in ("telegraf", "none"):
            raise ValueError("metrics_backend must be 'telegraf' or 'none'")
        return v.lower()


# Lexicon collections written by the record client
CHECKIN_COLLECTION = "app.dropanchor.checkin"
"""Collection NSID for check-in records"""

ADDRESS_COLLECTION = "community.lexicon.location.address"
"""Collection NSID for address records referenced by check-ins"""

GEO_TYPE = "community.lexicon.location.geo"
"""Lexicon type of the coordinates object embedded in check-ins"""
