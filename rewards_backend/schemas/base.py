"""Base schemas with common configuration."""
from datetime import datetime, UTC
from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, PlainSerializer


def parse_catalog_datetime(value):
    """Accept ISO strings from the form service; blank strings mean no value."""
    if isinstance(value, str) and not value.strip():
        return None
    return value


def serialize_datetime_utc(dt: datetime | None) -> str | None:
    """Render as ISO 8601 with a 'Z' suffix so the web app's Date parser reads it as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat().replace('+00:00', 'Z')


# Catalog timestamps: tolerant on input, always UTC 'Z' in JSON responses
OptionalUtcDatetime = Annotated[
    Optional[datetime],
    BeforeValidator(parse_catalog_datetime),
    PlainSerializer(serialize_datetime_utc, return_type=Optional[str], when_used="json"),
]


class BaseSchema(BaseModel):
    """Base schema for API payloads; form service fields are addressed by alias or name."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )
