"""XRPC client error types.

Every failure of the record client is raised as a subclass of AnchorKitException so that
callers can catch the whole family or branch on the specific kind. Messages carry a stable
error code prefix in the error-xrpc-NNNN style.
"""

from typing import Optional


class AnchorKitException(Exception):
    """Base class for all record client and discovery errors."""


class InvalidURLException(AnchorKitException):
    """An AT-URI or base URL could not be parsed."""

    def __init__(self, value: str, reason: str = "") -> None:
        self.value = value
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"error-xrpc-1000 Invalid URL {value!r}{detail}")


class InvalidResponseException(AnchorKitException):
    """The transport returned something that is not a response."""

    def __init__(self, msg: str = "") -> None:
        super().__init__(f"error-xrpc-1001 Invalid response from transport {msg}".rstrip())


class DecodingException(AnchorKitException):
    """A request or response body did not match the expected schema.

    The underlying parse error is chained as ``__cause__``.
    """

    def __init__(self, what: str, error: Optional[BaseException] = None) -> None:
        self.what = what
        self.error = error
        super().__init__(f"error-xrpc-1002 Unable to decode {what}: {error}")


class HttpException(AnchorKitException):
    """The server answered with a status outside 200-299."""

    def __init__(self, status: int, body: Optional[bytes] = None) -> None:
        self.status = status
        self.body = body
        super().__init__(f"error-xrpc-1003 HTTP error {status}")


class AuthenticationFailedException(AnchorKitException):
    """createSession or refreshSession was rejected."""

    def __init__(self, status: int, body: Optional[bytes] = None) -> None:
        self.status = status
        self.body = body
        super().__init__(f"error-xrpc-1004 Authentication failed with status {status}")
