"""AT-URI parsing for record identifiers.

Record identifiers have the shape ``at://<repo>/<collection>/<rkey>`` where ``repo`` is the
owning DID, ``collection`` is the record type NSID and ``rkey`` is the record key.
"""

from dataclasses import dataclass

from app.dropanchor.anchorkit.atproto.errors import InvalidURLException

AT_URI_SCHEME = "at://"


@dataclass(frozen=True)
class AtUri:
    repo: str
    collection: str
    rkey: str

    def __str__(self) -> str:
        return f"{AT_URI_SCHEME}{self.repo}/{self.collection}/{self.rkey}"


def parse_at_uri(value: str) -> AtUri:
    """Parse an AT-URI into its repo, collection and rkey.

    Args:
        value: String in the ``at://repo/collection/rkey`` form

    Returns:
        AtUri with the three segments

    Raises:
        InvalidURLException: If the scheme is missing or there are not exactly three
            non-empty segments, or the URI carries a query or fragment
    """
    if not isinstance(value, str) or not value.startswith(AT_URI_SCHEME):
        raise InvalidURLException(value, "missing at:// scheme")

    rest = value.removeprefix(AT_URI_SCHEME)
    if "?" in rest or "#" in rest:
        raise InvalidURLException(value, "query and fragment are not allowed")

    segments = rest.split("/")
    if len(segments) != 3:
        raise InvalidURLException(
            value, f"expected 3 path segments, found {len(segments)}"
        )

    if any(len(segment) == 0 for segment in segments):
        raise InvalidURLException(value, "empty path segment")

    repo, collection, rkey = segments
    return AtUri(repo=repo, collection=collection, rkey=rkey)
