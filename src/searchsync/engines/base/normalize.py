"""Normalisation helpers shared by every engine.

Each engine speaks its own dialect; these helpers turn the common pieces
(hits, highlights, facet counts, histogram buckets, dates, paging) into
the canonical shapes of ``CanonicalSearchResult``.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from searchsync.models.mapping import FieldType
from searchsync.models.result import FacetValue, HistogramBucket

# Match levels that count as "stronger than no match".
QUALIFYING_MATCH_LEVELS = frozenset({"full", "partial"})

# 10^10 seconds is in the year 2286; anything larger is milliseconds.
_EPOCH_MS_THRESHOLD = 10_000_000_000


# ── Paging ───────────────────────────────────────────────────────────────────


def compute_total_pages(total_hits: int, per_page: int) -> int:
    if per_page <= 0 or total_hits <= 0:
        return 0
    return math.ceil(total_hits / per_page)


# ── Hits ─────────────────────────────────────────────────────────────────────


def normalise_hit(
    document: Mapping[str, Any],
    *,
    object_id: Any,
    score: Any,
    highlights: Mapping[str, list[str]] | None = None,
) -> dict[str, Any]:
    """Flatten one native hit into the canonical hit shape."""
    hit = dict(document)
    hit["objectID"] = str(object_id)
    try:
        hit["_score"] = float(score) if score is not None else 0.0
    except (TypeError, ValueError):
        hit["_score"] = 0.0
    hit["_highlights"] = dict(highlights or {})
    return hit


def normalise_highlights(data: Mapping[str, Any] | None) -> dict[str, list[str]]:
    """Normalise per-field highlight data to ``{field: [fragment, ...]}``.

    Accepts fragments as plain strings (always qualifying) or as
    ``{"value": ..., "matchLevel": ...}`` entries, where only ``full`` and
    ``partial`` qualify and a missing level counts as no match. A list-valued
    field keeps every qualifying fragment; a field left with none is omitted.
    """
    normalised: dict[str, list[str]] = {}
    for field, value in (data or {}).items():
        entries = value if isinstance(value, list | tuple) else [value]
        fragments = [fragment for entry in entries if (fragment := _qualifying_fragment(entry)) is not None]
        if fragments:
            normalised[field] = fragments
    return normalised


def _qualifying_fragment(entry: Any) -> str | None:
    if isinstance(entry, str):
        return entry or None
    if isinstance(entry, Mapping) and "value" in entry:
        if entry.get("matchLevel", "none") not in QUALIFYING_MATCH_LEVELS:
            return None
        return str(entry["value"])
    return None


# ── Facets, stats and histograms ─────────────────────────────────────────────


def normalise_facet_counts(counts: Mapping[Any, Any]) -> list[FacetValue]:
    """Turn ``{value: count}`` into ``[FacetValue]`` ordered by count, highest first."""
    values = [FacetValue(value=str(value), count=int(count)) for value, count in counts.items()]
    return sorted(values, key=lambda v: v.count, reverse=True)


def normalise_histogram(buckets: Iterable[tuple[Any, Any]]) -> list[HistogramBucket]:
    """Turn ``(key, count)`` pairs into buckets ordered by key, dropping empty ones."""
    normalised = [HistogramBucket(key=float(key), count=int(count)) for key, count in buckets if int(count) > 0]
    return sorted(normalised, key=lambda b: b.key)


def bucket_values(values: Iterable[float], *, buckets: int | None, interval: float | None,
                  lower: float | None = None, upper: float | None = None) -> list[HistogramBucket]:
    """Bucket raw numbers locally, for engines without a native histogram."""
    numbers = [float(v) for v in values]
    if lower is not None:
        numbers = [v for v in numbers if v >= lower]
    if upper is not None:
        numbers = [v for v in numbers if v <= upper]
    if not numbers:
        return []

    start = lower if lower is not None else min(numbers)
    end = upper if upper is not None else max(numbers)
    if interval is None:
        width = (end - start) / buckets if buckets and end > start else 1.0
    else:
        width = interval
        start = math.floor(start / width) * width

    counts: dict[float, int] = {}
    last_key = start + width * ((buckets or 1) - 1) if interval is None else None
    for v in numbers:
        key = start + math.floor((v - start) / width) * width
        if last_key is not None and key > last_key:
            key = last_key
        counts[key] = counts.get(key, 0) + 1
    return normalise_histogram(counts.items())


# ── Dates ────────────────────────────────────────────────────────────────────


def to_epoch_seconds(value: Any) -> int | None:
    """Best-effort conversion of a date-ish value to epoch seconds."""
    if isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return int(value.timestamp())
    if isinstance(value, int):
        return _from_epoch_number(value)
    if isinstance(value, float):
        return _from_epoch_number(round(value)) if math.isfinite(value) else None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    try:
        return _from_epoch_number(round(float(text)))
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return to_epoch_seconds(parsed)


def _from_epoch_number(epoch: int) -> int:
    if abs(epoch) >= _EPOCH_MS_THRESHOLD:
        return round(epoch / 1000)
    return epoch


def normalise_date_value(value: Any, fmt: str = "iso") -> int | str | None:
    """Convert a date-ish value to ISO 8601 UTC (``fmt="iso"``) or epoch seconds."""
    seconds = to_epoch_seconds(value)
    if seconds is None:
        return None
    if fmt == "epoch":
        return seconds
    return datetime.fromtimestamp(seconds, UTC).isoformat()


def normalise_date_fields(document: Mapping[str, Any], date_fields: Iterable[str], fmt: str = "iso") -> dict[str, Any]:
    """Normalise the listed date fields of a document; unparseable values are left alone."""
    normalised = dict(document)
    for field in date_fields:
        if field not in normalised:
            continue
        converted = normalise_date_value(normalised[field], fmt)
        if converted is not None:
            normalised[field] = converted
    return normalised


# ── Schema inference ─────────────────────────────────────────────────────────

_DATE_NAME = re.compile(r"(_at|_date|_time|timestamp)$|^(created|updated|deleted|modified|date)_")
_BOOL_NAME = re.compile(r"^(is_|has_)|_(enabled|active|visible|archived)$")
_DATE_VALUE = re.compile(r"^\d{4}-\d{2}-\d{2}(?:[T\s].*)?$")


def infer_field_type(name: str, value: Any) -> FieldType:
    """Guess a field type from a field name and one sample value."""
    if isinstance(value, bool):
        return FieldType.BOOLEAN

    lower = name.lower()
    if _DATE_NAME.search(lower):
        return FieldType.DATE
    if _BOOL_NAME.search(lower):
        return FieldType.BOOLEAN

    if isinstance(value, int):
        return FieldType.INTEGER
    if isinstance(value, float):
        return FieldType.FLOAT
    if isinstance(value, list):
        if value and isinstance(value[0], str):
            return FieldType.FACET
        if value and isinstance(value[0], int | float) and len(value) >= 8:
            return FieldType.EMBEDDING
        return FieldType.OBJECT
    if isinstance(value, dict):
        lon = value.get("lon", value.get("lng"))
        if isinstance(value.get("lat"), int | float) and isinstance(lon, int | float):
            return FieldType.GEO_POINT
        return FieldType.OBJECT
    if isinstance(value, str):
        if _DATE_VALUE.match(value):
            return FieldType.DATE
        if value.startswith(("http://", "https://")):
            return FieldType.KEYWORD
        return FieldType.TEXT if len(value) > 64 else FieldType.KEYWORD
    return FieldType.TEXT
