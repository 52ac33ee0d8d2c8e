"""Resolvers for fields that point at other records: relations, assets, addresses."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from searchsync.mapping.resolvers.base import FieldResolver, ValueSource, as_list, raw_value
from searchsync.models.content import AddressValue, AssetValue, FieldDescriptor, RelatedItem
from searchsync.models.mapping import FieldMapping, FieldType


def _coerce(values: list[Any], model: type[BaseModel]) -> list[Any]:
    return [model.model_validate(v) if isinstance(v, dict) else v for v in values if isinstance(v, dict | model)]


class RelationResolver(FieldResolver):
    """Related items as titles (default), ids, slugs or ``{id, title, slug}`` objects.

    Mappings typed ``object`` default to the objects format.
    """

    kinds = ("relation",)

    def resolve(self, source: ValueSource, descriptor: FieldDescriptor | None, mapping: FieldMapping) -> Any:
        related: list[RelatedItem] = _coerce(as_list(raw_value(source, descriptor)), RelatedItem)
        if not related:
            return None

        default = "objects" if mapping.index_field_type == FieldType.OBJECT else "titles"
        fmt = mapping.resolver_config.get("format", default)
        if fmt == "ids":
            values: list[Any] = [item.id for item in related]
        elif fmt == "slugs":
            values = [item.slug for item in related if item.slug]
        elif fmt == "objects":
            values = [{"id": item.id, "title": item.title, "slug": item.slug} for item in related]
        else:
            values = [item.title for item in related if item.title]
        return values or None


class AssetResolver(FieldResolver):
    """Assets as the first URL (default), all URLs, ids or descriptive objects."""

    kinds = ("asset",)

    def resolve(self, source: ValueSource, descriptor: FieldDescriptor | None, mapping: FieldMapping) -> Any:
        assets: list[AssetValue] = _coerce(as_list(raw_value(source, descriptor)), AssetValue)
        if not assets:
            return None

        mode = mapping.resolver_config.get("mode", "first_url")
        if mode == "all_urls":
            urls = [asset.url for asset in assets if asset.url]
            return urls or None
        if mode == "ids":
            return [asset.id for asset in assets]
        if mode == "object":
            return [
                {"id": asset.id, "url": asset.url, "title": asset.title, "filename": asset.filename}
                for asset in assets
            ]
        return assets[0].url


class AddressResolver(FieldResolver):
    """First address as comma-joined text (default) or a ``{lat, lon}`` geo point.

    Mappings typed ``geo_point`` default to the geo point mode.
    """

    kinds = ("address",)

    def resolve(self, source: ValueSource, descriptor: FieldDescriptor | None, mapping: FieldMapping) -> Any:
        addresses: list[AddressValue] = _coerce(as_list(raw_value(source, descriptor)), AddressValue)
        if not addresses:
            return None
        address = addresses[0]

        default = "geo_point" if mapping.index_field_type == FieldType.GEO_POINT else "text"
        if mapping.resolver_config.get("mode", default) == "geo_point":
            if address.latitude is None or address.longitude is None:
                return None
            return {"lat": float(address.latitude), "lon": float(address.longitude)}
        return address.text()
