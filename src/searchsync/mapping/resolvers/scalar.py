"""Scalar resolvers: numbers, booleans, dates, option selections, coordinates, vectors."""

from __future__ import annotations

import logging
from typing import Any

from searchsync.exceptions import ResolverError
from searchsync.mapping.resolvers.base import (
    FieldResolver,
    ValueSource,
    as_list,
    raw_value,
    to_datetime,
)
from searchsync.models.content import FieldDescriptor, OptionValue
from searchsync.models.mapping import FieldMapping

logger = logging.getLogger(__name__)


class NumberResolver(FieldResolver):
    """Integers stay integers; everything else numeric becomes a float."""

    kinds = ("number",)

    def resolve(self, source: ValueSource, descriptor: FieldDescriptor | None, mapping: FieldMapping) -> Any:
        value = raw_value(source, descriptor)
        if value is None or value == "":
            return None
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise ResolverError(f"Not a number: {value!r}", field=mapping.index_field_name) from e


class BooleanResolver(FieldResolver):
    kinds = ("boolean",)

    def resolve(self, source: ValueSource, descriptor: FieldDescriptor | None, mapping: FieldMapping) -> Any:
        value = raw_value(source, descriptor)
        if value is None:
            return None
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)


class DateResolver(FieldResolver):
    """Epoch seconds by default; ``format: iso`` emits ISO 8601 strings."""

    kinds = ("date", "time")

    def resolve(self, source: ValueSource, descriptor: FieldDescriptor | None, mapping: FieldMapping) -> Any:
        parsed = to_datetime(raw_value(source, descriptor))
        if parsed is None:
            return None
        if mapping.resolver_config.get("format") == "iso":
            return parsed.isoformat()
        return int(parsed.timestamp())


class OptionsResolver(FieldResolver):
    """Single selections become a string, multi selections a list of selected values."""

    kinds = ("options", "multi_options")

    def resolve(self, source: ValueSource, descriptor: FieldDescriptor | None, mapping: FieldMapping) -> Any:
        value = raw_value(source, descriptor)
        if value is None:
            return None
        multi = (descriptor is not None and descriptor.kind == "multi_options") or isinstance(value, list)
        if multi:
            selected = [self._option_value(option) for option in as_list(value) if self._is_selected(option)]
            selected = [v for v in selected if v]
            return selected or None
        single = self._option_value(value) if self._is_selected(value) else None
        return single or None

    @staticmethod
    def _is_selected(option: Any) -> bool:
        return option.selected if isinstance(option, OptionValue) else True

    @staticmethod
    def _option_value(option: Any) -> str | None:
        if isinstance(option, OptionValue):
            return option.value
        if option is None or option == "":
            return None
        return str(option)


class GeoPointResolver(FieldResolver):
    """Latitude from this field, longitude from the field named by ``lng_field``.

    Values that already carry both coordinates (``{lat, lon}`` maps) pass
    through without a second field.
    """

    kinds = ("geo_point",)

    def resolve(self, source: ValueSource, descriptor: FieldDescriptor | None, mapping: FieldMapping) -> Any:
        value = raw_value(source, descriptor)
        if value is None:
            return None
        if isinstance(value, dict):
            lon = value.get("lon", value.get("lng"))
            if value.get("lat") is None or lon is None:
                return None
            return {"lat": float(value["lat"]), "lon": float(lon)}

        lng_handle = mapping.resolver_config.get("lng_field")
        if not lng_handle:
            logger.warning("Geo point mapping %s has no 'lng_field' configured", mapping.index_field_name)
            return None
        lng = source.value(lng_handle)
        if lng is None:
            return None
        return {"lat": float(value), "lon": float(lng)}


class EmbeddingResolver(FieldResolver):
    """Pre-computed vectors, passed through as a list of floats."""

    kinds = ("embedding",)

    def resolve(self, source: ValueSource, descriptor: FieldDescriptor | None, mapping: FieldMapping) -> Any:
        value = raw_value(source, descriptor)
        if not isinstance(value, list | tuple) or not value:
            return None
        return [float(v) for v in value]
