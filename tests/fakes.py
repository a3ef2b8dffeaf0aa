"""
In-memory transports for Anchor Kit tests.

- RecordingTransport: replays canned responses and records every request
- FakePDS: a small stateful PDS implementing the record XRPC methods
"""

import hashlib
import json
from typing import Any, Dict, List, Optional, Set, Union
from urllib.parse import urlparse

from app.dropanchor.anchorkit.atproto.chain import ChainRequest, ChainResponse
from app.dropanchor.anchorkit.atproto.client import ATProtoClient

TEST_DID = "did:plc:abc123"
TEST_PDS = "https://pds.example.com"


def request_nsid(request: ChainRequest) -> str:
    """Return the XRPC method name of a request."""
    return urlparse(str(request.url)).path.removeprefix("/xrpc/")


def request_json(request: ChainRequest) -> Dict[str, Any]:
    """Decode the JSON body of a request."""
    return json.loads((request.kwargs or {})["data"])


class RecordingTransport:
    """Transport returning queued responses in order.

    Queued exceptions are raised instead of returned.
    """

    def __init__(self, *responses: Union[ChainResponse, BaseException, Any]) -> None:
        self.responses = list(responses)
        self.requests: List[ChainRequest] = []

    async def send(self, request: ChainRequest) -> ChainResponse:
        self.requests.append(request)
        if len(self.responses) == 0:
            raise AssertionError(f"Unexpected request {request.method} {request.url}")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class FakePDS:
    """In-memory PDS for createRecord, getRecord and deleteRecord.

    CIDs are derived from the record content, so changing a record changes its cid.
    Collections listed in ``fail_create`` answer createRecord with a 500, and
    ``fail_delete`` makes deleteRecord answer with a 500.
    """

    def __init__(self, did: str = TEST_DID) -> None:
        self.did = did
        self.records: Dict[str, Dict[str, Any]] = {}
        self.requests: List[ChainRequest] = []
        self.fail_create: Set[str] = set()
        self.fail_delete = False
        self._counter = 0

    @staticmethod
    def cid_for(value: Dict[str, Any]) -> str:
        digest = hashlib.sha256(json.dumps(value, sort_keys=True).encode()).hexdigest()
        return f"bafyrei{digest[:40]}"

    def calls(self, nsid: str) -> List[ChainRequest]:
        return [r for r in self.requests if request_nsid(r) == nsid]

    def tamper(self, uri: str, **changes: Any) -> None:
        value = {**self.records[uri]["value"], **changes}
        self.records[uri] = {"value": value, "cid": self.cid_for(value)}

    async def send(self, request: ChainRequest) -> ChainResponse:
        self.requests.append(request)
        nsid = request_nsid(request)

        if nsid == "com.atproto.repo.createRecord":
            body = request_json(request)
            if body["collection"] in self.fail_create:
                return ChainResponse.from_json(
                    500, {"error": "InternalServerError", "message": "boom"}
                )
            self._counter += 1
            rkey = body.get("rkey") or f"3l{self._counter:011d}"
            uri = f"at://{body['repo']}/{body['collection']}/{rkey}"
            cid = self.cid_for(body["record"])
            self.records[uri] = {"value": body["record"], "cid": cid}
            return ChainResponse.from_json(200, {"uri": uri, "cid": cid})

        if nsid == "com.atproto.repo.getRecord":
            params = (request.kwargs or {})["params"]
            uri = f"at://{params['repo']}/{params['collection']}/{params['rkey']}"
            record = self.records.get(uri)
            if record is None:
                return ChainResponse.from_json(
                    400, {"error": "RecordNotFound", "message": "Could not locate record"}
                )
            return ChainResponse.from_json(
                200, {"uri": uri, "cid": record["cid"], "value": record["value"]}
            )

        if nsid == "com.atproto.repo.deleteRecord":
            if self.fail_delete:
                return ChainResponse.from_json(500, {"error": "InternalServerError"})
            body = request_json(request)
            uri = f"at://{body['repo']}/{body['collection']}/{body['rkey']}"
            self.records.pop(uri, None)
            return ChainResponse.from_json(200, {})

        return ChainResponse.from_json(501, {"error": "MethodNotImplemented"})


def make_client(transport: Any, metrics_client: Optional[Any] = None) -> ATProtoClient:
    return ATProtoClient(transport, TEST_PDS, metrics_client=metrics_client)
