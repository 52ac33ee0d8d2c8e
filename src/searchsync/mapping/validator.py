"""Field Mapping Validator — resolves real content and classifies each mapping.

Every enabled mapping gets one row: ``ok`` when it resolved to a value
that fits the declared field type, ``warning`` when a heuristic flags a
mismatch, ``null`` when no sampled item produced a value and ``error``
when the resolver raised. A failing field never aborts the report.

Synced indexes are validated against content items from the repository
(one forced item, or a sample per content type). Read-only indexes are
validated against documents sampled from the remote index.
"""

from __future__ import annotations

import json
import logging
import math
from datetime import date
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from searchsync.content.repository import ContentRepository
from searchsync.engines.base.engine import SearchEngine
from searchsync.exceptions import EngineError, ResolverError, ValidationError
from searchsync.mapping.mapper import FieldMapper
from searchsync.mapping.resolvers.base import to_datetime
from searchsync.models.content import ContentItem
from searchsync.models.index import Index, IndexScope
from searchsync.models.mapping import FieldMapping, FieldRole, FieldType
from searchsync.models.options import SearchOptions

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 20
READONLY_PER_PAGE = 10
READONLY_MAX_PAGES = 5
PREVIEW_LENGTH = 200
MARKDOWN_VALUE_LENGTH = 60


class FieldStatus(StrEnum):
    OK = "ok"
    NULL = "null"
    WARNING = "warning"
    ERROR = "error"


_STATUS_LABELS = {
    FieldStatus.OK: "OK",
    FieldStatus.ERROR: "ERROR",
    FieldStatus.NULL: "--",
    FieldStatus.WARNING: "WARNING",
}


class FieldValidationResult(BaseModel):
    """Outcome for one mapping."""

    index_field_name: str
    index_field_type: str
    field_handle: str | None = None
    role: FieldRole | None = None
    status: FieldStatus
    value_type: str = Field(default="null", description="Runtime type label, e.g. 'string' or 'array(3)'")
    value_preview: Any = Field(default=None, description="Resolved value, long strings truncated")
    message: str | None = None
    content_type: str | None = None
    item_id: str | None = None
    item_title: str | None = None


class ValidationReport(BaseModel):
    """All rows for one index, renderable as a dict or a markdown table."""

    index_handle: str
    index_name: str = ""
    readonly: bool = False
    success: bool = True
    message: str | None = None
    content_types: list[str] = Field(default_factory=list)
    results: list[FieldValidationResult] = Field(default_factory=list)

    @property
    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in FieldStatus}
        for result in self.results:
            counts[result.status.value] += 1
        return counts

    @property
    def has_errors(self) -> bool:
        return any(r.status == FieldStatus.ERROR for r in self.results)

    def issues(self) -> list[FieldValidationResult]:
        return [r for r in self.results if r.status != FieldStatus.OK]

    def to_markdown(self, issues_only: bool = False) -> str:
        lines = [f"# Field Mapping Validation: {self.index_name or self.index_handle} (`{self.index_handle}`)", ""]
        if self.readonly:
            lines.append("> **Read-only index**: values sampled from the search engine index.")
        else:
            lines.append("> **Synced index**: values resolved from content items using field mappings.")
        if self.content_types:
            lines += ["", "**Content types:** " + ", ".join(self.content_types)]
        if self.message:
            lines += ["", f"**{self.message}**"]

        source = "Source Document" if self.readonly else "Source Item"
        lines += [
            "",
            f"| Index Field | Index Type | {source} | Value Type | Value | Status |",
            "|---|---|---|---|---|---|",
        ]
        for result in self.issues() if issues_only else self.results:
            if result.item_id is None:
                item = "_no data_"
            elif result.item_title:
                item = f"{result.item_title} (#{result.item_id})"
            else:
                item = f"#{result.item_id}"

            status = _STATUS_LABELS[result.status]
            if result.message:
                status += f" {result.message}"

            lines.append(
                f"| `{result.index_field_name}` | {result.index_field_type} | {_escape(item)} "
                f"| `{result.value_type}` | {_escape(_markdown_value(result.value_preview))} | {_escape(status)} |"
            )
        lines.append("")
        return "\n".join(lines)


def _escape(text: str) -> str:
    return text.replace("|", "\\|")


def _markdown_value(value: Any) -> str:
    if value is None:
        return "_null_"
    if isinstance(value, list | dict):
        return "`" + json.dumps(value, default=str, ensure_ascii=False) + "`"
    text = str(value)
    if len(text) > MARKDOWN_VALUE_LENGTH:
        text = text[:MARKDOWN_VALUE_LENGTH] + "..."
    return text


# ── Value diagnostics ────────────────────────────────────────────────────────


def value_type_label(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list | tuple):
        return f"array({len(value)})"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def preview_value(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return f"(object: {type(value).__name__})"
    if isinstance(value, str) and len(value) > PREVIEW_LENGTH:
        return value[:PREVIEW_LENGTH] + "…"
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _is_numeric_string(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        float(value)
    except ValueError:
        return False
    return True


def diagnose_value(value: Any, field_type: FieldType) -> tuple[FieldStatus, str | None]:
    """Classify a resolved value against the declared field type."""
    if value is None:
        return FieldStatus.NULL, "Resolved to null; the field may be empty or the resolver may not support it."
    if isinstance(value, BaseModel):
        return FieldStatus.ERROR, f"Object value ({type(value).__name__}); the resolver returned an unserializable object."

    label = value_type_label(value)
    if field_type == FieldType.TEXT:
        if isinstance(value, list | tuple):
            return FieldStatus.WARNING, "Array value for text field; consider the facet type or another resolver format."
        return FieldStatus.OK, None

    if field_type == FieldType.KEYWORD:
        if isinstance(value, str):
            return FieldStatus.OK, None
        if isinstance(value, list | tuple):
            return FieldStatus.WARNING, "Array value for keyword field; consider the facet type or another resolver format."
        return FieldStatus.WARNING, f"Unexpected type {label} for keyword field."

    if field_type == FieldType.FACET:
        if isinstance(value, str):
            return FieldStatus.OK, None
        if isinstance(value, list | tuple) and all(isinstance(v, str) for v in value):
            return FieldStatus.OK, None
        return FieldStatus.WARNING, f"Unexpected type {label} for facet field; expected a string or a list of strings."

    if field_type == FieldType.INTEGER:
        if isinstance(value, int) and not isinstance(value, bool):
            return FieldStatus.OK, None
        if isinstance(value, float):
            return FieldStatus.WARNING, "Float value for integer field; value may be truncated."
        return FieldStatus.WARNING, f"Unexpected type {label} for integer field."

    if field_type == FieldType.FLOAT:
        if _is_number(value):
            return FieldStatus.OK, None
        if _is_numeric_string(value):
            return FieldStatus.WARNING, "Numeric string for float field; should be cast to float."
        return FieldStatus.WARNING, f"Unexpected type {label} for float field."

    if field_type == FieldType.BOOLEAN:
        if isinstance(value, bool):
            return FieldStatus.OK, None
        return FieldStatus.WARNING, f"Non-boolean value ({label}) for boolean field."

    if field_type == FieldType.DATE:
        if _is_number(value) and math.isfinite(value):
            return FieldStatus.OK, None
        if isinstance(value, str):
            if to_datetime(value) is None:
                return FieldStatus.WARNING, f"Unparseable date string '{preview_value(value)}'."
            return FieldStatus.OK, None
        if isinstance(value, date):
            return FieldStatus.WARNING, "Date object; should be an ISO 8601 string or a timestamp."
        return FieldStatus.WARNING, f"Unexpected type {label} for date field."

    return FieldStatus.OK, None


# ── Validator ────────────────────────────────────────────────────────────────


class FieldMappingValidator:
    """Runs the field mapper against sample content and classifies the outcome.

    Args:
        repository: Content repository the samples are drawn from.
        mapper: Field mapper used for resolution.
    """

    def __init__(self, repository: ContentRepository, mapper: FieldMapper) -> None:
        self._repository = repository
        self._mapper = mapper

    async def validate_index(
        self,
        index: Index,
        forced_item_id: str | int | None = None,
        site: str | None = None,
    ) -> ValidationReport:
        """Validate every enabled mapping of a synced index.

        Args:
            index: The index to validate.
            forced_item_id: Resolve every mapping against this one item only.
            site: Site of the forced item, or a site filter for sampling.

        Raises:
            ValidationError: If ``forced_item_id`` does not exist.
        """
        content_types = await self._repository.content_types(index.scope)
        report = ValidationReport(
            index_handle=index.handle,
            index_name=index.name,
            content_types=[t.name or t.handle for t in content_types],
        )
        mappings = self._mappings_to_check(index)
        if not mappings:
            report.success = False
            report.message = "No enabled field mappings to validate."
            return report

        if forced_item_id is not None:
            item = await self._repository.get(forced_item_id, site)
            if item is None:
                raise ValidationError(f"Content item {forced_item_id} not found", option="item")
            candidates = [item]
        else:
            candidates = []
            sites = [site] if site else index.scope.sites
            for content_type in content_types:
                scope = IndexScope(content_types=[content_type.handle], sites=sites)
                candidates.extend(await self._repository.fetch(scope, 0, SAMPLE_SIZE))
            if not candidates:
                report.success = False
                report.message = "No content items found in the index scope."
                return report

        cache: dict[tuple[str, str], tuple[Any, ResolverError | None]] = {}
        for mapping in mappings:
            report.results.append(self._validate_mapping(mapping, candidates, cache))

        logger.info("Validated %d mappings for index %s: %s", len(mappings), index.handle, report.counts)
        return report

    def _mappings_to_check(self, index: Index) -> list[FieldMapping]:
        headers = self._mapper.headers_with_children(index)
        return [
            m
            for m in index.enabled_mappings()
            if m.is_attribute or m.is_sub_field or m.field_uid not in headers
        ]

    def _validate_mapping(
        self,
        mapping: FieldMapping,
        candidates: list[ContentItem],
        cache: dict[tuple[str, str], tuple[Any, ResolverError | None]],
    ) -> FieldValidationResult:
        failure: tuple[ContentItem, ResolverError] | None = None
        for item in candidates:
            key = (f"{item.id}:{item.site}", mapping.uid)
            if key not in cache:
                try:
                    cache[key] = (self._mapper.resolve_field(item, mapping), None)
                except ResolverError as e:
                    cache[key] = (None, e)
            value, error = cache[key]
            if error is not None:
                failure = failure or (item, error)
                continue
            if value is None:
                continue

            status, message = diagnose_value(value, mapping.index_field_type)
            return self._row(mapping, item, status, message, value)

        if failure is not None:
            item, error = failure
            return self._row(mapping, item, FieldStatus.ERROR, f"Resolver error: {error}", None)
        status, message = diagnose_value(None, mapping.index_field_type)
        return self._row(mapping, candidates[0] if len(candidates) == 1 else None, status, message, None)

    @staticmethod
    def _row(
        mapping: FieldMapping,
        item: ContentItem | None,
        status: FieldStatus,
        message: str | None,
        value: Any,
    ) -> FieldValidationResult:
        return FieldValidationResult(
            index_field_name=mapping.index_field_name,
            index_field_type=mapping.index_field_type.value,
            field_handle=mapping.field_handle or mapping.attribute,
            role=mapping.role,
            status=status,
            value_type=value_type_label(value),
            value_preview=preview_value(value),
            message=message,
            content_type=item.content_type if item else None,
            item_id=str(item.id) if item else None,
            item_title=item.title if item else None,
        )

    async def validate_readonly_index(self, index: Index, engine: SearchEngine) -> ValidationReport:
        """Validate a read-only index against documents sampled from the engine.

        Pages through up to five pages of ten hits, stopping early once every
        enabled field has been seen. Missing title and url roles are reported
        as advisory warnings.
        """
        report = ValidationReport(index_handle=index.handle, index_name=index.name, readonly=True)
        mappings = index.enabled_mappings()
        if not mappings:
            report.success = False
            report.message = "No enabled field mappings to validate."
            return report

        samples: list[dict[str, Any]] = []
        try:
            for page in range(1, READONLY_MAX_PAGES + 1):
                result = await engine.search(index, "", SearchOptions(per_page=READONLY_PER_PAGE, page=page))
                if not result.hits:
                    break
                samples.extend(result.hits)
                all_seen = all(any(doc.get(m.index_field_name) is not None for doc in samples) for m in mappings)
                if all_seen or len(result.hits) < READONLY_PER_PAGE:
                    break
        except EngineError as e:
            logger.warning("Could not sample read-only index %s: %s", index.handle, e)
            report.success = False
            report.message = f"Engine error: {e}"
            return report

        if not samples:
            report.success = False
            report.message = "No documents found in engine."
            return report

        roles: set[FieldRole] = set()
        for mapping in mappings:
            if mapping.role is not None:
                roles.add(mapping.role)
            row = FieldValidationResult(
                index_field_name=mapping.index_field_name,
                index_field_type=mapping.index_field_type.value,
                field_handle=mapping.attribute,
                role=mapping.role,
                status=FieldStatus.NULL,
                item_id=str(samples[0].get("objectID")),
                message=f"Field not present in {len(samples)} sampled documents.",
            )
            for doc in samples:
                value = doc.get(mapping.index_field_name)
                if value is None:
                    continue
                status, message = diagnose_value(value, mapping.index_field_type)
                row = row.model_copy(
                    update={
                        "status": status,
                        "message": message,
                        "value_type": value_type_label(value),
                        "value_preview": preview_value(value),
                        "item_id": str(doc.get("objectID")),
                    }
                )
                break
            report.results.append(row)

        for role in (FieldRole.TITLE, FieldRole.URL):
            if role not in roles:
                report.results.append(
                    FieldValidationResult(
                        index_field_name="-",
                        index_field_type="-",
                        status=FieldStatus.WARNING,
                        value_type="-",
                        message=f'No field assigned the "{role.value}" role; document {role.value} lookups will return null.',
                    )
                )
        return report
