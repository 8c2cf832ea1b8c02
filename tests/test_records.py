"""
Tests for identification record normalization, fallbacks and merging.
"""

import json

import pytest

from humidor.models import IdentificationRecord, RemoteCatalogEntry
from humidor.services.errors import ResolutionDegraded
from humidor.services.records import (
    FAILED_MESSAGE,
    UNKNOWN_CIGAR,
    build_fallback_record,
    merge_identification,
    normalize_record_payload,
    parse_identification_text,
    strip_code_fence,
)


class TestNormalizeRecordPayload:
    """Provider payloads fold into record field names."""

    @pytest.mark.parametrize("payload,field,expected", [
        ({"fullName": "Oliva Serie V"}, "full_name", "Oliva Serie V"),
        ({"cigar_name": "Oliva Serie V"}, "full_name", "Oliva Serie V"),
        ({"cigarBrand": "Oliva"}, "brand", "Oliva"),
        ({"country": "Nicaragua"}, "origin_country", "Nicaragua"),
        ({"commonNotes": ["pepper", "leather"]}, "common_notes", "pepper, leather"),
        ({"pairings": ["bourbon", None, ""]}, "recommended_pairings", "bourbon"),
        ({"description": None}, "description", ""),
        ({"strength": "Full"}, "strength", "Full"),
    ])
    def test_field_mapping(self, payload, field, expected):
        assert normalize_record_payload(payload)[field] == expected

    def test_empty_brand_and_line_become_none(self):
        normalized = normalize_record_payload({"brand": "", "line": None})
        assert normalized["brand"] is None
        assert normalized["line"] is None

    def test_unknown_keys_dropped(self):
        normalized = normalize_record_payload({"fullName": "X", "vitola": "Toro"})
        assert "vitola" not in normalized

    def test_missing_text_fields_default_empty(self):
        normalized = normalize_record_payload({})
        assert normalized["description"] == ""
        assert normalized["wrapper_type"] == ""


class TestParseIdentificationText:
    def test_plain_json(self):
        record = parse_identification_text(json.dumps({
            "fullName": "Cohiba Robusto",
            "description": "Rich and creamy",
            "commonNotes": ["cedar"],
        }))
        assert record.full_name == "Cohiba Robusto"
        assert record.common_notes == "cedar"
        assert record.is_usable

    def test_fenced_json(self):
        text = '```json\n{"fullName": "Ashton VSG", "description": "Sun grown"}\n```'
        record = parse_identification_text(text)
        assert record.full_name == "Ashton VSG"

    def test_prose_raises(self):
        with pytest.raises(ResolutionDegraded):
            parse_identification_text("Sorry, I don't know this cigar.")

    def test_non_object_raises(self):
        with pytest.raises(ResolutionDegraded):
            parse_identification_text('["Cohiba"]')

    def test_strip_code_fence_plain_text_untouched(self):
        assert strip_code_fence('  {"a": 1} ') == '{"a": 1}'


class TestBuildFallbackRecord:
    def test_unknown_cigar_default(self):
        record = build_fallback_record()
        assert record.full_name == UNKNOWN_CIGAR
        assert record.description == FAILED_MESSAGE
        assert record.is_fallback

    def test_probable_name_used(self):
        record = build_fallback_record("  COHIBA ")
        assert record.full_name == "COHIBA"


class TestMergeIdentification:
    """Field precedence: catalog > assistant > user override; final name always wins."""

    @pytest.fixture
    def assistant(self):
        return IdentificationRecord(
            full_name="Padron 1964",
            description="Assistant description",
            origin_country="",
            strength="Medium",
            brand="Padron",
            line="1964 Anniversary",
        )

    @pytest.fixture
    def catalog(self):
        return RemoteCatalogEntry(
            brand="Padron",
            line="1964 Anniversary",
            description="Catalog description",
            origin_country="Nicaragua",
        )

    def test_catalog_beats_assistant(self, assistant, catalog):
        merged = merge_identification(assistant, catalog=catalog)
        assert merged.description == "Catalog description"
        assert merged.origin_country == "Nicaragua"
        assert merged.strength == "Medium"
        assert merged.from_catalog

    def test_assistant_beats_override(self, assistant):
        merged = merge_identification(assistant, override={"strength": "Full", "wrapperType": "Maduro"})
        assert merged.strength == "Medium"
        assert merged.wrapper_type == "Maduro"
        assert not merged.from_catalog

    def test_final_name_wins(self, assistant, catalog):
        merged = merge_identification(assistant, catalog=catalog, final_name="My Padron")
        assert merged.full_name == "My Padron"

    def test_catalog_name_when_assistant_blank(self, catalog):
        merged = merge_identification(IdentificationRecord(), catalog=catalog)
        assert merged.full_name == "Padron 1964 Anniversary"

    def test_unknown_when_nothing_known(self):
        merged = merge_identification(IdentificationRecord())
        assert merged.full_name == UNKNOWN_CIGAR

    def test_input_not_mutated(self, assistant, catalog):
        merge_identification(assistant, catalog=catalog)
        assert assistant.description == "Assistant description"
        assert not assistant.from_catalog
