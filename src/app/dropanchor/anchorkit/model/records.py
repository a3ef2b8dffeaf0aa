"""Lexicon record models for check-ins and the records they reference.

Check-ins (app.dropanchor.checkin) do not embed their address. The address is stored as a
separate community.lexicon.location.address record and referenced through a StrongRef,
which pins both the record (uri) and the exact content that was referenced (cid).

Field names on the wire follow the lexicons (camelCase and a ``$type`` discriminator);
attributes use snake_case with aliases.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.dropanchor.anchorkit.config import (
    ADDRESS_COLLECTION,
    CHECKIN_COLLECTION,
    GEO_TYPE,
)


def format_created_at(value: Optional[datetime] = None) -> str:
    """Format a timestamp the way record createdAt fields are written.

    Produces second precision ISO 8601 in UTC with a ``Z`` suffix, e.g.
    ``2025-01-15T12:00:00Z``.
    """
    if value is None:
        value = datetime.now(timezone.utc)
    elif value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class RecordModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_record(self) -> Dict[str, Any]:
        """Encode as the JSON object stored in the repository."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StrongRef(RecordModel):
    """Reference to one specific version of a record.

    The reference is valid only while the record at ``uri`` still hashes to ``cid``.
    """

    uri: str
    cid: str


class AddressRecord(RecordModel):
    """Venue address record (community.lexicon.location.address)."""

    record_type: Literal["community.lexicon.location.address"] = Field(
        ADDRESS_COLLECTION, alias="$type"
    )
    street: Optional[str] = None
    locality: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = Field(None, alias="postalCode")
    name: Optional[str] = None


class GeoCoordinates(RecordModel):
    """WGS84 position (community.lexicon.location.geo).

    The lexicon stores coordinates as decimal strings.
    """

    record_type: Literal["community.lexicon.location.geo"] = Field(
        GEO_TYPE, alias="$type"
    )
    latitude: str
    longitude: str
    altitude: Optional[str] = None
    name: Optional[str] = None

    @field_validator("latitude", "longitude", "altitude", mode="before")
    @classmethod
    def coerce_number(cls, v):
        # Some servers hand coordinates back as JSON numbers.
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @staticmethod
    def from_degrees(
        latitude: float, longitude: float, name: Optional[str] = None
    ) -> "GeoCoordinates":
        return GeoCoordinates(
            latitude=str(latitude), longitude=str(longitude), name=name
        )

    @property
    def lat(self) -> float:
        return float(self.latitude)

    @property
    def lon(self) -> float:
        return float(self.longitude)


class CheckinRecord(RecordModel):
    """Check-in record (app.dropanchor.checkin).

    ``category`` is the raw place category (e.g. "climbing"), ``category_group`` its
    human readable group (e.g. "Sports & Fitness") and ``category_icon`` an emoji.
    """

    record_type: Literal["app.dropanchor.checkin"] = Field(
        CHECKIN_COLLECTION, alias="$type"
    )
    text: str
    created_at: str = Field(alias="createdAt")
    address_ref: StrongRef = Field(alias="addressRef")
    coordinates: GeoCoordinates
    category: Optional[str] = None
    category_group: Optional[str] = Field(None, alias="categoryGroup")
    category_icon: Optional[str] = Field(None, alias="categoryIcon")


class CreateRecordResponse(BaseModel):
    """Body returned by com.atproto.repo.createRecord."""

    uri: str
    cid: str

    def strong_ref(self) -> StrongRef:
        return StrongRef(uri=self.uri, cid=self.cid)


class GetRecordResponse(BaseModel):
    """Body returned by com.atproto.repo.getRecord.

    ``value`` is the raw record; decode it with the matching record model.
    """

    uri: Optional[str] = None
    cid: Optional[str] = None
    value: Dict[str, Any]


class ResolvedCheckin(BaseModel):
    """A check-in read together with its referenced address.

    ``is_verified`` is true when the address record still has the content hash the
    check-in referenced at creation time.
    """

    model_config = ConfigDict(frozen=True)

    checkin: CheckinRecord
    address: AddressRecord
    is_verified: bool
