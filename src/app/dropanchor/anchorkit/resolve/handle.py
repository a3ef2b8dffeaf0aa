"""AT Protocol handle and DID resolution utilities.

Resolves AT Protocol handles to DIDs using DNS TXT records and HTTPS well-known endpoints,
and DIDs to the PDS endpoint declared in their DID document. Supports both did:plc and
did:web DID methods.

Every function here is a lookup: failures are reported to Sentry and turned into None,
nothing is retried.
"""

import asyncio
from enum import IntEnum
from aiohttp import ClientSession
from pydantic import BaseModel
from aiodns import DNSResolver
from typing import Optional, Any, Dict, List
import logging
import sentry_sdk

logger = logging.getLogger(__name__)


class SubjectType(IntEnum):
    """AT Protocol subject type enumeration.

    Identifies whether a subject is a DID or handle requiring resolution.
    """

    did_method_plc = 1
    did_method_web = 2
    hostname = 3
    did_method_other = 4


class ParsedSubject(BaseModel):
    """Parsed AT Protocol subject input.

    Contains the classified subject type and normalized subject string.
    """

    subject_type: SubjectType
    subject: str

    @property
    def is_did(self) -> bool:
        return self.subject_type != SubjectType.hostname


class ResolvedSubject(BaseModel):
    """Resolved AT Protocol subject.

    The handle is only present when the DID document declares one.
    """

    did: str
    handle: Optional[str] = None
    pds: str


async def resolve_handle_dns(handle: str) -> Optional[str]:
    """Resolve AT Protocol handle to DID using DNS TXT record.

    Queries _atproto.{handle} TXT record and extracts DID from did= prefix.

    Args:
        handle: AT Protocol handle to resolve

    Returns:
        DID string if found, None if resolution fails
    """
    resolver = DNSResolver()
    try:
        results = await resolver.query(f"_atproto.{handle}", "TXT")
    except Exception as e:
        sentry_sdk.capture_exception(e)
        return None
    for result in results or []:
        text = result.text
        if isinstance(text, bytes):
            text = text.decode("utf-8")
        if text.startswith("did="):
            return text.removeprefix("did=")
    return None


async def resolve_handle_http(session: ClientSession, handle: str) -> Optional[str]:
    """Resolve AT Protocol handle to DID using HTTPS well-known endpoint.

    Fetches DID from https://{handle}/.well-known/atproto-did endpoint.

    Args:
        session: HTTP client session
        handle: AT Protocol handle to resolve

    Returns:
        DID string if found, None if resolution fails
    """
    try:
        async with session.get(f"https://{handle}/.well-known/atproto-did") as resp:
            if resp.status != 200:
                return None
            body = await resp.text()
            if body is None:
                return None
            body = body.strip()
            if body.startswith("did:"):
                return body
            return None
    except Exception as e:
        sentry_sdk.capture_exception(e)
        return None


async def resolve_handle(session: ClientSession, handle: str) -> Optional[str]:
    """Resolve AT Protocol handle to DID using DNS and HTTPS concurrently.

    Attempts both DNS TXT and HTTPS well-known resolution, preferring DNS.

    Args:
        session: HTTP client session
        handle: AT Protocol handle to resolve

    Returns:
        DID string if found via either method, None if both fail
    """
    async with asyncio.TaskGroup() as tg:
        dns_result = tg.create_task(resolve_handle_dns(handle))
        http_result = tg.create_task(resolve_handle_http(session, handle))
    dns_result = dns_result.result()
    http_result = http_result.result()
    if dns_result is not None:
        return dns_result
    return http_result


def handle_predicate(value: str) -> bool:
    """Check if value is an AT Protocol handle reference.

    Args:
        value: String to check

    Returns:
        True if value starts with at:// prefix
    """
    return isinstance(value, str) and value.startswith("at://")


def pds_predicate(value: Dict[str, Any]) -> bool:
    """Check if service entry is an AT Protocol PDS.

    Args:
        value: Service dictionary from DID document

    Returns:
        True if service is AtprotoPersonalDataServer with endpoint
    """
    return (
        isinstance(value, dict)
        and value.get("type", None) == "AtprotoPersonalDataServer"
        and isinstance(value.get("serviceEndpoint", None), str)
    )


def did_document_url(plc_hostname: str, did: str) -> Optional[str]:
    """Build the URL serving the DID document for a did:plc or did:web DID.

    did:web DIDs without a path use /.well-known/did.json, those with a path use
    /{path}/did.json.

    Returns:
        URL string, None for other DID methods or malformed did:web DIDs
    """
    if did.startswith("did:plc:"):
        return f"https://{plc_hostname}/{did}"

    if did.startswith("did:web:"):
        parts = did.removeprefix("did:web:").split(":")
        if len(parts[0]) == 0:
            return None

        if len(parts) == 1:
            parts.append(".well-known")

        return "https://{inner}/did.json".format(inner="/".join(parts))

    return None


async def fetch_did_document(
    session: ClientSession, plc_hostname: str, did: str
) -> Optional[Dict[str, Any]]:
    """Fetch a DID document.

    Args:
        session: HTTP client session
        plc_hostname: PLC directory hostname for did:plc resolution
        did: DID to fetch the document for

    Returns:
        The DID document, None if unsupported or the fetch fails
    """
    url = did_document_url(plc_hostname, did)
    if url is None:
        return None

    try:
        async with session.get(url) as resp:
            if resp.status != 200:
                logger.debug(f"DID document fetch for {did} returned {resp.status}")
                return None
            body = await resp.json(content_type=None)
    except Exception as e:
        sentry_sdk.capture_exception(e)
        return None

    if not isinstance(body, dict):
        return None
    return body


async def resolve_did(
    session: ClientSession, plc_hostname: str, did: str
) -> Optional[ResolvedSubject]:
    """Resolve DID to its PDS endpoint and declared handle.

    Args:
        session: HTTP client session
        plc_hostname: PLC directory hostname for did:plc resolution
        did: DID to resolve

    Returns:
        ResolvedSubject if the DID document declares a PDS, None otherwise
    """
    body = await fetch_did_document(session, plc_hostname, did)
    if body is None:
        return None

    handle = next(filter(handle_predicate, _list_field(body, "alsoKnownAs")), None)
    pds = next(filter(pds_predicate, _list_field(body, "service")), None)
    if pds is None:
        return None

    return ResolvedSubject(
        did=did,
        handle=handle.removeprefix("at://") if handle is not None else None,
        pds=pds["serviceEndpoint"],
    )


def _list_field(document: Dict[str, Any], name: str) -> List[Any]:
    # Anything but a list is treated as absent.
    value = document.get(name, None)
    if not isinstance(value, list):
        return []
    return value


def parse_input(subject: str) -> Optional[ParsedSubject]:
    """Parse and classify AT Protocol subject input.

    Normalizes input by removing prefixes and classifies as DID or handle.

    Args:
        subject: Raw subject string (handle, DID, or prefixed)

    Returns:
        ParsedSubject with type and normalized string, None for empty input
    """
    subject = subject.strip()
    subject = subject.removeprefix("at://")
    subject = subject.removeprefix("@")

    if len(subject) == 0:
        return None

    if subject.startswith("did:plc:"):
        return ParsedSubject(subject_type=SubjectType.did_method_plc, subject=subject)
    elif subject.startswith("did:web:"):
        return ParsedSubject(subject_type=SubjectType.did_method_web, subject=subject)
    elif subject.startswith("did:"):
        return ParsedSubject(
            subject_type=SubjectType.did_method_other, subject=subject
        )

    return ParsedSubject(subject_type=SubjectType.hostname, subject=subject.lower())
