"""
Structured "chunk in flight" markers for SyncProgressRecord.current_chunk_json.

Markers are decoded at the storage boundary into one of:

  DateRangeChunk  — a sub-range of days inside the backfill period
  EntityChunk     — one campaign / ad set / ad being pulled

Both carry ``schema_version`` so stored rows can be migrated later; rows
written by an unknown version are rejected instead of passed through.
"""
from datetime import date, timedelta
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from adsync.errors import InvalidArgumentError, InvalidRangeError

MARKER_SCHEMA_VERSION = 1
DEFAULT_CHUNK_DAYS = 30


class DateRangeChunk(BaseModel):
    kind: Literal["date_range"] = "date_range"
    schema_version: int = MARKER_SCHEMA_VERSION
    since: date
    until: date


class EntityChunk(BaseModel):
    kind: Literal["entity"] = "entity"
    schema_version: int = MARKER_SCHEMA_VERSION
    entity_type: Literal["campaign", "ad_set", "ad"]
    entity_id: str


ChunkMarker = Annotated[Union[DateRangeChunk, EntityChunk], Field(discriminator="kind")]

_marker_adapter = TypeAdapter(ChunkMarker)


def encode_marker(marker: Optional[Union[DateRangeChunk, EntityChunk]]) -> Optional[str]:
    if marker is None:
        return None
    return marker.model_dump_json()


def decode_marker(raw: Optional[str]) -> Optional[Union[DateRangeChunk, EntityChunk]]:
    """Parse a stored marker. Raises InvalidArgumentError on bad or unknown-version data."""
    if not raw:
        return None
    try:
        marker = _marker_adapter.validate_json(raw)
    except ValidationError as exc:
        raise InvalidArgumentError(f"Invalid chunk marker: {exc}") from exc
    if marker.schema_version != MARKER_SCHEMA_VERSION:
        raise InvalidArgumentError(
            f"Unsupported chunk marker schema_version {marker.schema_version}"
        )
    return marker


def plan_chunks(
    period_start: date,
    period_end: date,
    chunk_days: int = DEFAULT_CHUNK_DAYS,
) -> List[DateRangeChunk]:
    """Split [period_start, period_end] (inclusive) into consecutive day ranges.

    The last chunk may be shorter than chunk_days.
    """
    if period_end < period_start:
        raise InvalidRangeError(f"period_end {period_end} is before period_start {period_start}")
    if chunk_days < 1:
        raise InvalidArgumentError("chunk_days must be >= 1")

    chunks = []
    cursor = period_start
    while cursor <= period_end:
        until = min(cursor + timedelta(days=chunk_days - 1), period_end)
        chunks.append(DateRangeChunk(since=cursor, until=until))
        cursor = until + timedelta(days=1)
    return chunks
