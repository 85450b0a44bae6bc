from __future__ import annotations

import pytest

from exto.core.errors import InvalidInputError
from exto.domain.schema import FieldType, format_label, sanitize_field_name
from exto.services.document_analysis import (
    TRUNCATION_MARKER,
    extraction_fields_for,
    infer_field_type,
    json_object_span,
    normalize_extracted_fields,
    suggest_fields,
    truncate_text,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (True, FieldType.boolean),
        (12, FieldType.number),
        ("1,250.00", FieldType.number),
        ("2024-01-31", FieldType.date),
        ("2024-01-31 10:15:00", FieldType.datetime),
        ("+1 (555) 123-4567", FieldType.phone),
        ("Acme Corp", FieldType.text),
        ("", FieldType.text),
        (None, FieldType.text),
    ],
)
def test_infer_field_type(value, expected) -> None:
    assert infer_field_type(value) == expected


def test_sanitize_field_name_and_label() -> None:
    assert sanitize_field_name("Invoice No.") == "invoice_no"
    assert sanitize_field_name("Due-Date") == "due_date"
    assert format_label("invoice_no") == "Invoice No"
    assert format_label("due-date") == "Due Date"


def test_suggest_fields_dedupes_sanitized_names() -> None:
    fields = suggest_fields({"Invoice No": "INV-1", "invoice_no": "INV-2", "!!!": "x", "Total": "10.00"})

    assert [field.name for field in fields] == ["invoice_no", "total"]
    assert fields[0].label == "Invoice No"
    assert fields[1].type == FieldType.number.value


def test_normalize_accepts_flat_map_and_triples() -> None:
    values, descriptions = normalize_extracted_fields(
        {"invoice_no": {"value": "INV-1", "description": "Invoice number"}, "total": 10}
    )
    assert values == {"invoice_no": "INV-1", "total": 10}
    assert descriptions == {"invoice_no": "Invoice number"}

    values, descriptions = normalize_extracted_fields(
        [{"key": "invoice_no", "value": "INV-1", "description": "Invoice number"}, {"key": "total"}]
    )
    assert values == {"invoice_no": "INV-1", "total": ""}
    assert descriptions == {"invoice_no": "Invoice number", "total": ""}


def test_normalize_rejects_unusable_payloads() -> None:
    with pytest.raises(InvalidInputError):
        normalize_extracted_fields([{"value": "no key"}])
    with pytest.raises(InvalidInputError):
        normalize_extracted_fields("invoice")


def test_extraction_fields_for_builds_prompts() -> None:
    entries = extraction_fields_for({"Invoice No": "INV-1", "notes": None}, {"Invoice No": "The invoice number"})

    assert entries[0]["category_field_name"] == "invoice_no"
    assert entries[0]["extraction_prompt"]["text"] == "The invoice number"
    assert entries[0]["extraction_prompt"]["sample_values"] == ["INV-1"]
    assert entries[1]["extraction_prompt"]["text"] == "Extract the Notes"
    assert entries[1]["extraction_prompt"]["sample_values"] == []


def test_truncate_text_appends_marker() -> None:
    assert truncate_text("short", 10) == "short"
    assert truncate_text("abcdefghij", 4) == "abcd" + TRUNCATION_MARKER


def test_json_object_span_ignores_surrounding_prose() -> None:
    reply = 'Here you go:\n{"category": "Invoice"}\nThanks!'
    assert json_object_span(reply) == '{"category": "Invoice"}'
