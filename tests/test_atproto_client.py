"""
Unit tests for the XRPC record client in app.dropanchor.anchorkit.atproto.client

Tests cover request construction (URL, method, headers, body), response decoding and
the mapping of every failure to its AnchorKitException subclass.
"""

import json
from types import SimpleNamespace

import pytest

from app.dropanchor.anchorkit.atproto.chain import ChainResponse
from app.dropanchor.anchorkit.atproto.client import ATProtoClient
from app.dropanchor.anchorkit.atproto.errors import (
    AnchorKitException,
    AuthenticationFailedException,
    DecodingException,
    HttpException,
    InvalidResponseException,
    InvalidURLException,
)
from app.dropanchor.anchorkit.config import ADDRESS_COLLECTION, Settings
from app.dropanchor.anchorkit.model.records import AddressRecord

from fakes import RecordingTransport, TEST_DID, TEST_PDS, make_client, request_json

SESSION_BODY = {
    "accessJwt": "access-jwt",
    "refreshJwt": "refresh-jwt",
    "handle": "user.bsky.social",
    "did": TEST_DID,
}


class TestClientConstruction:
    """Test suite for ATProtoClient construction."""

    def test_trailing_slash_removed(self):
        """Test the base URL is normalized."""
        client = ATProtoClient(RecordingTransport(), "https://pds.example.com/")
        assert client.base_url == "https://pds.example.com"

    @pytest.mark.parametrize("base_url", ["", "pds.example.com", "ftp://pds.example.com", "https://"])
    def test_invalid_base_url(self, base_url):
        """Test construction fails for base URLs that are not http(s)."""
        with pytest.raises(InvalidURLException):
            ATProtoClient(RecordingTransport(), base_url)

    def test_from_settings(self):
        """Test settings supply the base URL and User-Agent."""
        settings = Settings(pds_url=TEST_PDS, user_agent="Anchor/2.0 (test)")  # type: ignore
        client = ATProtoClient.from_settings(settings, RecordingTransport())
        assert client.base_url == TEST_PDS

        override = ATProtoClient.from_settings(
            settings, RecordingTransport(), base_url="https://other.example.com"
        )
        assert override.base_url == "https://other.example.com"


class TestLogin:
    """Test suite for login and refresh."""

    @pytest.mark.asyncio
    async def test_login_success(self):
        """Test login posts the identifier and password and decodes the session."""
        transport = RecordingTransport(ChainResponse.from_json(200, SESSION_BODY))
        client = make_client(transport)

        session = await client.login("user.bsky.social", "app-password")

        assert session.access_jwt == "access-jwt"
        assert session.refresh_jwt == "refresh-jwt"
        assert session.did == TEST_DID

        request = transport.requests[0]
        assert request.method == "POST"
        assert request.url == f"{TEST_PDS}/xrpc/com.atproto.server.createSession"
        assert request_json(request) == {
            "identifier": "user.bsky.social",
            "password": "app-password",
        }
        assert "Authorization" not in request.headers
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["User-Agent"] == "Anchor/1.0"

    @pytest.mark.asyncio
    async def test_login_rejected(self):
        """Test a rejected login raises AuthenticationFailedException."""
        transport = RecordingTransport(
            ChainResponse.from_json(401, {"error": "AuthenticationRequired"})
        )
        client = make_client(transport)

        with pytest.raises(AuthenticationFailedException) as exc_info:
            await client.login("user.bsky.social", "wrong")
        assert exc_info.value.status == 401

    @pytest.mark.asyncio
    async def test_login_malformed_session(self):
        """Test a session body without tokens raises DecodingException."""
        transport = RecordingTransport(ChainResponse.from_json(200, {"did": TEST_DID}))
        client = make_client(transport)

        with pytest.raises(DecodingException):
            await client.login("user.bsky.social", "app-password")

    @pytest.mark.asyncio
    async def test_refresh_uses_refresh_token(self):
        """Test refresh authenticates with the refresh token and sends no body."""
        transport = RecordingTransport(ChainResponse.from_json(200, SESSION_BODY))
        client = make_client(transport)

        session = await client.refresh("refresh-token")

        assert session.access_jwt == "access-jwt"
        request = transport.requests[0]
        assert request.method == "POST"
        assert request.url == f"{TEST_PDS}/xrpc/com.atproto.server.refreshSession"
        assert request.headers["Authorization"] == "Bearer refresh-token"
        assert "data" not in request.kwargs

    @pytest.mark.asyncio
    async def test_refresh_rejected(self):
        """Test an expired refresh token raises AuthenticationFailedException."""
        transport = RecordingTransport(
            ChainResponse.from_json(400, {"error": "ExpiredToken"})
        )
        client = make_client(transport)

        with pytest.raises(AuthenticationFailedException):
            await client.refresh("refresh-token")


class TestCreateRecord:
    """Test suite for create_record."""

    @pytest.mark.asyncio
    async def test_create_record_request(self):
        """Test createRecord sends repo, collection and the encoded record."""
        transport = RecordingTransport(
            ChainResponse.from_json(
                200, {"uri": f"at://{TEST_DID}/{ADDRESS_COLLECTION}/3k2xyz", "cid": "bafyrei1"}
            )
        )
        client = make_client(transport)

        created = await client.create_record(
            TEST_DID, ADDRESS_COLLECTION, AddressRecord(name="Klimmuur"), "access-token"
        )

        assert created.uri == f"at://{TEST_DID}/{ADDRESS_COLLECTION}/3k2xyz"
        assert created.cid == "bafyrei1"

        request = transport.requests[0]
        assert request.method == "POST"
        assert request.url == f"{TEST_PDS}/xrpc/com.atproto.repo.createRecord"
        assert request.headers["Authorization"] == "Bearer access-token"
        assert request_json(request) == {
            "repo": TEST_DID,
            "collection": ADDRESS_COLLECTION,
            "record": {"$type": ADDRESS_COLLECTION, "name": "Klimmuur"},
        }

    @pytest.mark.asyncio
    async def test_create_record_with_rkey_and_dict(self):
        """Test plain dict records and explicit rkeys are passed through."""
        transport = RecordingTransport(
            ChainResponse.from_json(200, {"uri": "at://did:plc:abc123/x.y/self", "cid": "c"})
        )
        client = make_client(transport)

        await client.create_record(TEST_DID, "x.y", {"a": 1}, "access-token", rkey="self")

        body = request_json(transport.requests[0])
        assert body["record"] == {"a": 1}
        assert body["rkey"] == "self"

    @pytest.mark.asyncio
    async def test_create_record_http_error(self):
        """Test non-2xx statuses raise HttpException carrying status and body."""
        transport = RecordingTransport(
            ChainResponse.from_json(400, {"error": "InvalidRecord"})
        )
        client = make_client(transport)

        with pytest.raises(HttpException) as exc_info:
            await client.create_record(TEST_DID, "x.y", {}, "access-token")
        assert exc_info.value.status == 400
        assert json.loads(exc_info.value.body) == {"error": "InvalidRecord"}

    @pytest.mark.asyncio
    async def test_create_record_not_json(self):
        """Test a non-JSON success body raises DecodingException."""
        transport = RecordingTransport(
            ChainResponse(status=200, headers=ChainResponse.from_json(200, {}).headers, body=b"<html>")
        )
        client = make_client(transport)

        with pytest.raises(DecodingException) as exc_info:
            await client.create_record(TEST_DID, "x.y", {}, "access-token")
        assert exc_info.value.__cause__ is not None

    @pytest.mark.asyncio
    async def test_create_record_missing_cid(self):
        """Test a response without cid raises DecodingException."""
        transport = RecordingTransport(ChainResponse.from_json(200, {"uri": "at://a/b/c"}))
        client = make_client(transport)

        with pytest.raises(DecodingException):
            await client.create_record(TEST_DID, "x.y", {}, "access-token")

    @pytest.mark.asyncio
    async def test_unserializable_record(self):
        """Test records that cannot be encoded fail before any request."""
        transport = RecordingTransport()
        client = make_client(transport)

        with pytest.raises(DecodingException):
            await client.create_record(TEST_DID, "x.y", {"a": object()}, "access-token")
        assert transport.requests == []


class TestDeleteRecord:
    """Test suite for delete_record."""

    @pytest.mark.asyncio
    async def test_delete_record_request(self):
        """Test deleteRecord posts repo, collection and rkey."""
        transport = RecordingTransport(ChainResponse.from_json(200, {}))
        client = make_client(transport)

        await client.delete_record(TEST_DID, ADDRESS_COLLECTION, "3k2xyz", "access-token")

        request = transport.requests[0]
        assert request.method == "POST"
        assert request.url == f"{TEST_PDS}/xrpc/com.atproto.repo.deleteRecord"
        assert request_json(request) == {
            "repo": TEST_DID,
            "collection": ADDRESS_COLLECTION,
            "rkey": "3k2xyz",
        }

    @pytest.mark.asyncio
    async def test_delete_record_error(self):
        """Test a failed delete raises HttpException."""
        transport = RecordingTransport(ChainResponse.from_json(500, {}))
        client = make_client(transport)

        with pytest.raises(HttpException):
            await client.delete_record(TEST_DID, ADDRESS_COLLECTION, "3k2xyz", "t")


class TestGetRecord:
    """Test suite for get_record."""

    @pytest.mark.asyncio
    async def test_get_record_request(self):
        """Test getRecord splits the AT-URI into query parameters."""
        uri = f"at://{TEST_DID}/{ADDRESS_COLLECTION}/3k2xyz"
        transport = RecordingTransport(
            ChainResponse.from_json(200, {"uri": uri, "cid": "bafyrei1", "value": {"name": "x"}})
        )
        client = make_client(transport)

        record = await client.get_record(uri, "access-token")

        assert record.cid == "bafyrei1"
        assert record.value == {"name": "x"}

        request = transport.requests[0]
        assert request.method == "GET"
        assert request.url == f"{TEST_PDS}/xrpc/com.atproto.repo.getRecord"
        assert request.kwargs["params"] == {
            "repo": TEST_DID,
            "collection": ADDRESS_COLLECTION,
            "rkey": "3k2xyz",
        }
        assert "data" not in request.kwargs

    @pytest.mark.asyncio
    async def test_get_record_invalid_uri(self):
        """Test a malformed AT-URI fails without sending a request."""
        transport = RecordingTransport()
        client = make_client(transport)

        with pytest.raises(InvalidURLException):
            await client.get_record("at://did:plc:abc123/app.dropanchor.checkin", "t")
        with pytest.raises(InvalidURLException):
            await client.get_record(
                "at://did:plc:abc123/app.dropanchor.checkin/3k2abc?x=1", "t"
            )
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_get_record_not_found(self):
        """Test a missing record raises HttpException."""
        transport = RecordingTransport(
            ChainResponse.from_json(400, {"error": "RecordNotFound"})
        )
        client = make_client(transport)

        with pytest.raises(HttpException):
            await client.get_record(f"at://{TEST_DID}/x.y/z", "t")


class TestTransportFailures:
    """Test suite for transport level failures."""

    @pytest.mark.asyncio
    async def test_transport_exception_propagates(self):
        """Test exceptions raised by the transport reach the caller unchanged."""
        transport = RecordingTransport(ConnectionError("connection reset"))
        client = make_client(transport)

        with pytest.raises(ConnectionError):
            await client.get_record(f"at://{TEST_DID}/x.y/z", "t")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            None,
            "200 OK",
            SimpleNamespace(status="200", body=b"{}"),
            SimpleNamespace(status=True, body=b"{}"),
            SimpleNamespace(status=200, body="{}"),
        ],
    )
    async def test_invalid_response(self, response):
        """Test responses without an integer status and byte body are rejected."""
        transport = RecordingTransport(response)
        client = make_client(transport)

        with pytest.raises(InvalidResponseException):
            await client.delete_record(TEST_DID, "x.y", "z", "t")

    @pytest.mark.asyncio
    async def test_foreign_response_object_accepted(self):
        """Test any object with an integer status and byte body is accepted."""
        transport = RecordingTransport(
            SimpleNamespace(status=200, headers={}, body=b'{"uri": "at://a/b/c", "cid": "c"}')
        )
        client = make_client(transport)

        created = await client.create_record(TEST_DID, "x.y", {}, "t")
        assert created.uri == "at://a/b/c"

    def test_error_family(self):
        """Test every client error is an AnchorKitException."""
        for cls in (
            InvalidURLException,
            InvalidResponseException,
            DecodingException,
            HttpException,
            AuthenticationFailedException,
        ):
            assert issubclass(cls, AnchorKitException)
