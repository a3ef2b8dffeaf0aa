"""PDS discovery.

Turns a user supplied identifier (handle or DID) into the base URL of the PDS that hosts
the account. Resolution is a lookup chain: a DID goes straight to DID document resolution,
a handle is first resolved to a DID. Any step coming back empty ends the chain with None.

The handle based guess is a separate, explicitly requested fallback. It is only consulted
when authoritative resolution found nothing.
"""

import logging
from typing import Optional, Protocol

from aiohttp import ClientSession

from app.dropanchor.anchorkit.config import Settings
from app.dropanchor.anchorkit.resolve.handle import (
    parse_input,
    resolve_did,
    resolve_handle,
)

logger = logging.getLogger(__name__)


class IdentityResolver(Protocol):
    """Resolution capability PDS discovery depends on."""

    async def handle_to_did(self, handle: str) -> Optional[str]: ...

    async def did_to_pds(self, did: str) -> Optional[str]: ...


class AtprotoIdentityResolver:
    """IdentityResolver backed by DNS, HTTPS well-known endpoints and DID documents."""

    def __init__(self, http_session: ClientSession, plc_hostname: str) -> None:
        self._http_session = http_session
        self._plc_hostname = plc_hostname

    async def handle_to_did(self, handle: str) -> Optional[str]:
        return await resolve_handle(self._http_session, handle)

    async def did_to_pds(self, did: str) -> Optional[str]:
        resolved = await resolve_did(self._http_session, self._plc_hostname, did)
        if resolved is None:
            return None
        return resolved.pds


class PDSDiscovery:
    def __init__(self, resolver: IdentityResolver, settings: Settings) -> None:
        self._resolver = resolver
        self._managed_pds_url = settings.managed_pds_url
        self._managed_handle_suffix = settings.managed_handle_suffix

    async def resolve_pds(self, identifier: str) -> Optional[str]:
        """Resolve a handle or DID to its PDS base URL.

        Args:
            identifier: Handle (user.bsky.social) or DID (did:plc:...)

        Returns:
            PDS URL, None if any resolution step fails
        """
        parsed = parse_input(identifier)
        if parsed is None:
            return None

        if parsed.is_did:
            pds = await self._resolver.did_to_pds(parsed.subject)
            if pds is None:
                logger.info(f"Failed to resolve DID to PDS: {parsed.subject}")
            return pds

        did = await self._resolver.handle_to_did(parsed.subject)
        if did is None:
            logger.info(f"Failed to resolve handle to DID: {parsed.subject}")
            return None

        pds = await self._resolver.did_to_pds(did)
        if pds is None:
            logger.info(f"Failed to resolve DID to PDS: {did}")
        return pds

    def guess_pds_from_handle(self, handle: str) -> Optional[str]:
        """Guess a PDS URL from the handle's domain.

        Handles under the managed hosting suffix map to the managed PDS. For any other
        handle the leftmost label is dropped and the rest is used as an https host.

        Returns:
            Guessed PDS URL, None for handles with fewer than two labels
        """
        handle = handle.strip().removeprefix("@").lower()
        labels = handle.split(".")
        if len(labels) < 2 or any(len(label) == 0 for label in labels):
            return None

        if handle.endswith(self._managed_handle_suffix):
            return self._managed_pds_url

        return "https://{domain}".format(domain=".".join(labels[1:]))

    async def resolve_pds_or_guess(self, identifier: str) -> Optional[str]:
        """Resolve authoritatively, guessing from the handle only if that fails."""
        pds = await self.resolve_pds(identifier)
        if pds is not None:
            return pds

        parsed = parse_input(identifier)
        if parsed is None or parsed.is_did:
            return None

        guess = self.guess_pds_from_handle(parsed.subject)
        if guess is not None:
            logger.warning(f"Using guessed PDS {guess} for {parsed.subject}")
        return guess
