"""
Identification record shaping: provider normalization, fallbacks and merging.

Assistant answers arrive in several shapes (camelCase or snake_case keys,
``cigarBrand`` instead of ``brand``, notes as a list instead of a string).
normalize_record_payload() folds them into IdentificationRecord field names
before validation.

merge_identification() applies the field precedence used when saving:
remote catalog > assistant > user override, except for ``full_name`` where the
user's final name always wins.
"""

import json
import logging
from typing import Any, Mapping, Optional

from ..models import IdentificationRecord, RemoteCatalogEntry
from .errors import ResolutionDegraded

logger = logging.getLogger(__name__)


UNKNOWN_CIGAR = "Unknown Cigar"

# Assistant answered, but not well enough to show as an identification
PARTIAL_MESSAGE = (
    "We couldn't identify this cigar with confidence just yet, but the Humi "
    "community is growing fast. Tap the 👎 icon to add it to the catalog and "
    "help us get better."
)

# Assistant run failed, timed out or returned something unparseable
FAILED_MESSAGE = (
    "We're still learning, and your help makes this better. Tap the 👎 icon to "
    "contribute this cigar to the Humi catalog."
)

# Accepted spellings per record field, first match wins
_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "full_name": ("fullName", "full_name", "name", "cigarName", "cigar_name"),
    "description": ("description", "summary"),
    "origin_country": ("originCountry", "origin_country", "country", "origin"),
    "wrapper_type": ("wrapperType", "wrapper_type", "wrapper"),
    "strength": ("strength", "body"),
    "common_notes": ("commonNotes", "common_notes", "tastingNotes", "tasting_notes", "flavorNotes", "notes"),
    "recommended_pairings": ("recommendedPairings", "recommended_pairings", "pairings", "pairing"),
    "brand": ("brand", "cigarBrand", "cigar_brand"),
    "line": ("line", "cigarLine", "cigar_line"),
}

_OPTIONAL_FIELDS = {"brand", "line"}

# Fields merge_identification() resolves by precedence
MERGE_FIELDS = (
    "description",
    "origin_country",
    "wrapper_type",
    "strength",
    "common_notes",
    "recommended_pairings",
    "brand",
    "line",
)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v).strip() for v in value if v is not None and str(v).strip())
    if isinstance(value, dict):
        return ", ".join(f"{k}: {v}" for k, v in value.items())
    return str(value).strip()


def normalize_record_payload(data: Mapping[str, Any]) -> dict:
    """
    Map a provider payload onto IdentificationRecord field names.

    Unknown keys are dropped. List values are joined with ", ", None becomes
    "", and empty brand/line become None.
    """
    normalized: dict[str, Any] = {}
    for field, aliases in _FIELD_ALIASES.items():
        for key in aliases:
            if key in data:
                normalized[field] = _as_text(data[key])
                break
        if field in _OPTIONAL_FIELDS:
            normalized[field] = normalized.get(field) or None
        else:
            normalized.setdefault(field, "")
    return normalized


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ```json ... ``` fence, if any."""
    text = (text or "").strip()
    if text.startswith("```"):
        parts = text.split("```")
        text = parts[1] if len(parts) > 1 else ""
        if text.lower().startswith("json"):
            text = text[4:]
        text = text.strip()
    return text


def parse_identification_text(text: str) -> IdentificationRecord:
    """
    Parse an assistant reply into an IdentificationRecord.

    Raises:
        ResolutionDegraded: If the reply is not a JSON object.
    """
    cleaned = strip_code_fence(text)
    try:
        data = json.loads(cleaned)
    except (json.JSONDecodeError, TypeError) as e:
        raise ResolutionDegraded(f"Assistant reply is not JSON: {e}") from e

    if not isinstance(data, dict):
        raise ResolutionDegraded(f"Assistant reply is {type(data).__name__}, expected an object")

    return IdentificationRecord(**normalize_record_payload(data))


def build_fallback_record(probable_name: Optional[str] = None, message: str = FAILED_MESSAGE) -> IdentificationRecord:
    """A record that is always safe to display and save."""
    return IdentificationRecord(
        full_name=(probable_name or "").strip() or UNKNOWN_CIGAR,
        description=message,
        is_fallback=True,
    )


def _first_non_empty(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if value is not None and str(value).strip():
            return value
    return None


def merge_identification(
    assistant: IdentificationRecord,
    catalog: Optional[RemoteCatalogEntry] = None,
    override: Optional[Mapping[str, Any]] = None,
    final_name: Optional[str] = None,
) -> IdentificationRecord:
    """
    Combine catalog, assistant and user-supplied values into one record.

    Args:
        assistant: Record produced by the resolver (possibly a fallback).
        catalog: Authoritative remote catalog entry for the record's brand/line.
        override: User-supplied field values, snake_case or camelCase keys.
        final_name: Name the user confirmed; wins over every other source.

    Returns:
        A new record; ``from_catalog`` is set when a catalog entry was applied.
    """
    user = normalize_record_payload(override or {})
    catalog_values = normalize_record_payload(catalog.model_dump()) if catalog else {}
    assistant_values = assistant.model_dump()

    merged: dict[str, Any] = {}
    for field in MERGE_FIELDS:
        value = _first_non_empty(catalog_values.get(field), assistant_values.get(field), user.get(field))
        if field in _OPTIONAL_FIELDS:
            merged[field] = value
        else:
            merged[field] = value or ""

    catalog_name = f"{catalog.brand} {catalog.line}".strip() if catalog else None
    merged["full_name"] = (
        _first_non_empty(final_name, assistant.full_name, catalog_name, user.get("full_name")) or UNKNOWN_CIGAR
    ).strip()

    return assistant.model_copy(update={
        **merged,
        "from_catalog": catalog is not None or assistant.from_catalog,
    })
