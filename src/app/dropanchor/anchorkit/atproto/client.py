"""
AT Protocol Record Client

This module implements the XRPC client used to create, fetch, delete and verify records on
a single PDS. It also implements the two-record check-in write.

The PDS only offers single-record atomic writes, while a check-in is only meaningful if the
address it references exists and is linked by content hash. Check-ins are therefore written
in two steps:

1. Create the address record. If this fails nothing has been written and the error is raised.
2. Create the check-in record whose addressRef is the {uri, cid} StrongRef from step 1.
3. If step 2 fails, delete the address record from step 1 once, best effort, and raise the
   original step 2 error. A failing delete is logged, reported to Sentry and counted; it is
   never raised in place of the original error.

The compensating delete can itself fail (e.g. when the connection drops), so orphaned
address records remain possible.

The client keeps no mutable state beyond its configuration. It never refreshes tokens on
its own and never retries: every failure surfaces to the caller.
"""

from abc import ABC, abstractmethod
import json
import logging
from typing import Any, Dict, Optional, Tuple, Type, TypeVar, Union
from urllib.parse import urlparse

from multidict import CIMultiDict, CIMultiDictProxy
from pydantic import BaseModel, ValidationError
import sentry_sdk

from app.dropanchor.anchorkit.atproto.chain import ChainRequest, ChainResponse, Transport
from app.dropanchor.anchorkit.atproto.errors import (
    AuthenticationFailedException,
    DecodingException,
    HttpException,
    InvalidResponseException,
    InvalidURLException,
)
from app.dropanchor.anchorkit.atproto.uri import parse_at_uri
from app.dropanchor.anchorkit.config import (
    ADDRESS_COLLECTION,
    CHECKIN_COLLECTION,
    Settings,
)
from app.dropanchor.anchorkit.metrics import MetricsClient, NoOpMetricsClient
from app.dropanchor.anchorkit.model.credentials import Credentials, Session
from app.dropanchor.anchorkit.model.records import (
    AddressRecord,
    CheckinRecord,
    CreateRecordResponse,
    GeoCoordinates,
    GetRecordResponse,
    RecordModel,
    ResolvedCheckin,
    StrongRef,
    format_created_at,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

CREATE_SESSION = "com.atproto.server.createSession"
REFRESH_SESSION = "com.atproto.server.refreshSession"
CREATE_RECORD = "com.atproto.repo.createRecord"
DELETE_RECORD = "com.atproto.repo.deleteRecord"
GET_RECORD = "com.atproto.repo.getRecord"


class ATProtoClientBase(ABC):
    """Record operations exposed to the rest of the application."""

    @abstractmethod
    async def login(self, handle: str, password: str) -> Session:
        pass

    @abstractmethod
    async def refresh(self, refresh_token: str) -> Session:
        pass

    @abstractmethod
    async def create_record(
        self,
        repo: str,
        collection: str,
        record: Union[RecordModel, Dict[str, Any]],
        access_token: str,
        rkey: Optional[str] = None,
    ) -> CreateRecordResponse:
        pass

    @abstractmethod
    async def delete_record(
        self, repo: str, collection: str, rkey: str, access_token: str
    ) -> None:
        pass

    @abstractmethod
    async def get_record(self, uri: str, access_token: str) -> GetRecordResponse:
        pass

    @abstractmethod
    async def create_checkin_with_address(
        self,
        text: str,
        address: AddressRecord,
        coordinates: Union[GeoCoordinates, Tuple[float, float]],
        credentials: Credentials,
        category: Optional[str] = None,
        category_group: Optional[str] = None,
        category_icon: Optional[str] = None,
    ) -> str:
        pass

    @abstractmethod
    async def verify_strong_ref(self, ref: StrongRef, credentials: Credentials) -> bool:
        pass

    @abstractmethod
    async def resolve_checkin(
        self, uri: str, credentials: Credentials
    ) -> ResolvedCheckin:
        pass


class ATProtoClient(ATProtoClientBase):
    """XRPC record client bound to one PDS.

    Safe to share between tasks as long as the transport is.

    Args:
        transport: Transport used for every request
        base_url: PDS base URL, e.g. https://bsky.social
        user_agent: Product identifier sent as User-Agent
        metrics_client: Receives the compensation counters
        metrics_prefix: Prefix for metric names
    """

    def __init__(
        self,
        transport: Transport,
        base_url: str,
        user_agent: str = "Anchor/1.0",
        metrics_client: Optional[MetricsClient] = None,
        metrics_prefix: str = "anchorkit",
    ) -> None:
        parsed = urlparse(base_url)
        if parsed.scheme not in ("https", "http") or len(parsed.netloc) == 0:
            raise InvalidURLException(base_url, "PDS base URL must be http(s)")

        self._transport = transport
        self._base_url = base_url.rstrip("/")
        self._user_agent = user_agent
        self._metrics_client = metrics_client or NoOpMetricsClient()
        self._metrics_prefix = metrics_prefix

    @staticmethod
    def from_settings(
        settings: Settings,
        transport: Transport,
        metrics_client: Optional[MetricsClient] = None,
        base_url: Optional[str] = None,
    ) -> "ATProtoClient":
        return ATProtoClient(
            transport,
            base_url or settings.pds_url,
            user_agent=settings.user_agent,
            metrics_client=metrics_client,
            metrics_prefix=settings.statsd_prefix,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    # Authentication

    async def login(self, handle: str, password: str) -> Session:
        request = self._build_request(
            "POST", CREATE_SESSION, body={"identifier": handle, "password": password}
        )
        response = await self._send(request)
        if not response.ok:
            raise AuthenticationFailedException(response.status, response.body)
        return self._decode(response, Session, "createSession response")

    async def refresh(self, refresh_token: str) -> Session:
        # refreshSession authenticates with the refresh token in place of the access token.
        request = self._build_request("POST", REFRESH_SESSION, token=refresh_token)
        response = await self._send(request)
        if not response.ok:
            raise AuthenticationFailedException(response.status, response.body)
        return self._decode(response, Session, "refreshSession response")

    # Records

    async def create_record(
        self,
        repo: str,
        collection: str,
        record: Union[RecordModel, Dict[str, Any]],
        access_token: str,
        rkey: Optional[str] = None,
    ) -> CreateRecordResponse:
        if isinstance(record, RecordModel):
            record_value = record.to_record()
        else:
            record_value = dict(record)

        body: Dict[str, Any] = {
            "repo": repo,
            "collection": collection,
            "record": record_value,
        }
        if rkey is not None:
            body["rkey"] = rkey

        request = self._build_request(
            "POST", CREATE_RECORD, token=access_token, body=body
        )
        response = await self._send(request)
        self._raise_for_status(response)
        created = self._decode(response, CreateRecordResponse, "createRecord response")
        logger.debug(f"Created record {created.uri} ({created.cid})")
        return created

    async def delete_record(
        self, repo: str, collection: str, rkey: str, access_token: str
    ) -> None:
        request = self._build_request(
            "POST",
            DELETE_RECORD,
            token=access_token,
            body={"repo": repo, "collection": collection, "rkey": rkey},
        )
        response = await self._send(request)
        self._raise_for_status(response)

    async def get_record(self, uri: str, access_token: str) -> GetRecordResponse:
        at_uri = parse_at_uri(uri)

        request = self._build_request(
            "GET",
            GET_RECORD,
            token=access_token,
            params={
                "repo": at_uri.repo,
                "collection": at_uri.collection,
                "rkey": at_uri.rkey,
            },
        )
        response = await self._send(request)
        self._raise_for_status(response)
        return self._decode(response, GetRecordResponse, "getRecord response")

    # Check-ins

    async def create_checkin_with_address(
        self,
        text: str,
        address: AddressRecord,
        coordinates: Union[GeoCoordinates, Tuple[float, float]],
        credentials: Credentials,
        category: Optional[str] = None,
        category_group: Optional[str] = None,
        category_icon: Optional[str] = None,
    ) -> str:
        """Create an address record and a check-in referencing it.

        Args:
            text: Check-in message
            address: Venue address, stored as its own record
            coordinates: GeoCoordinates or a (latitude, longitude) pair
            credentials: Credentials of the repository owner
            category: Place category, e.g. "climbing"
            category_group: Human readable category group
            category_icon: Emoji for the category

        Returns:
            AT-URI of the created check-in

        Raises:
            AnchorKitException: From the address create, or the original check-in create
                error after the address record was compensated
        """
        if not isinstance(coordinates, GeoCoordinates):
            latitude, longitude = coordinates
            coordinates = GeoCoordinates.from_degrees(latitude, longitude)

        address_created = await self.create_record(
            credentials.did, ADDRESS_COLLECTION, address, credentials.access_token
        )

        checkin = CheckinRecord(
            text=text,
            created_at=format_created_at(),
            address_ref=address_created.strong_ref(),
            coordinates=coordinates,
            category=category,
            category_group=category_group,
            category_icon=category_icon,
        )

        try:
            checkin_created = await self.create_record(
                credentials.did, CHECKIN_COLLECTION, checkin, credentials.access_token
            )
        except Exception:
            logger.warning(
                f"Check-in create failed, removing address record {address_created.uri}"
            )
            await self._delete_orphaned_address(address_created.uri, credentials)
            raise

        logger.info(f"Created check-in {checkin_created.uri}")
        return checkin_created.uri

    async def _delete_orphaned_address(self, uri: str, credentials: Credentials) -> None:
        outcome = "deleted"
        try:
            at_uri = parse_at_uri(uri)
            await self.delete_record(
                at_uri.repo, at_uri.collection, at_uri.rkey, credentials.access_token
            )
        except Exception as e:
            outcome = "failed"
            sentry_sdk.capture_exception(e)
            logger.exception(f"Unable to delete orphaned address record {uri}")
        finally:
            self._metrics_client.increment(
                f"{self._metrics_prefix}.checkin.compensation",
                1,
                tag_dict={"outcome": outcome},
            )

    async def verify_strong_ref(self, ref: StrongRef, credentials: Credentials) -> bool:
        """Check that the record at ``ref.uri`` still has content hash ``ref.cid``.

        Returns False when the record is missing, changed, or cannot be fetched.
        """
        try:
            record = await self.get_record(ref.uri, credentials.access_token)
        except Exception as e:
            logger.info(f"Unable to fetch {ref.uri} for verification: {e}")
            return False
        return record.cid is not None and record.cid == ref.cid

    async def resolve_checkin(
        self, uri: str, credentials: Credentials
    ) -> ResolvedCheckin:
        """Fetch a check-in together with the address it references.

        ``is_verified`` reports whether the live address record still matches the cid
        stored in the check-in's addressRef.
        """
        checkin_response = await self.get_record(uri, credentials.access_token)
        checkin = self._decode_value(
            checkin_response.value, CheckinRecord, "check-in record"
        )

        address_response = await self.get_record(
            checkin.address_ref.uri, credentials.access_token
        )
        address = self._decode_value(
            address_response.value, AddressRecord, "address record"
        )

        is_verified = (
            address_response.cid is not None
            and address_response.cid == checkin.address_ref.cid
        )
        if not is_verified:
            logger.warning(
                f"Address {checkin.address_ref.uri} changed since check-in {uri} was created"
            )

        return ResolvedCheckin(checkin=checkin, address=address, is_verified=is_verified)

    # Plumbing

    def _build_request(
        self,
        method: str,
        nsid: str,
        token: Optional[str] = None,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> ChainRequest:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
        }
        if token is not None:
            headers["Authorization"] = f"Bearer {token}"

        kwargs: Dict[str, Any] = {}
        if body is not None:
            try:
                kwargs["data"] = json.dumps(body).encode("utf-8")
            except (TypeError, ValueError) as e:
                raise DecodingException(f"{nsid} request body", e) from e
        if params is not None:
            kwargs["params"] = params

        return ChainRequest(
            method=method,
            url=f"{self._base_url}/xrpc/{nsid}",
            headers=headers,
            kwargs=kwargs,
        )

    async def _send(self, request: ChainRequest) -> ChainResponse:
        response = await self._transport.send(request)

        status = getattr(response, "status", None)
        body = getattr(response, "body", None)
        if (
            not isinstance(status, int)
            or isinstance(status, bool)
            or not isinstance(body, (bytes, bytearray))
        ):
            raise InvalidResponseException(f"for {request.method} {request.url}")

        if isinstance(response, ChainResponse):
            return response
        return ChainResponse(
            status=status,
            headers=CIMultiDictProxy(CIMultiDict(getattr(response, "headers", None) or {})),
            body=bytes(body),
        )

    @staticmethod
    def _raise_for_status(response: ChainResponse) -> None:
        if not response.ok:
            raise HttpException(response.status, response.body)

    @staticmethod
    def _decode(response: ChainResponse, model: Type[ModelT], what: str) -> ModelT:
        try:
            data = json.loads(response.body)
        except ValueError as e:
            raise DecodingException(what, e) from e
        return ATProtoClient._decode_value(data, model, what)

    @staticmethod
    def _decode_value(value: Any, model: Type[ModelT], what: str) -> ModelT:
        try:
            return model.model_validate(value)
        except ValidationError as e:
            raise DecodingException(what, e) from e
