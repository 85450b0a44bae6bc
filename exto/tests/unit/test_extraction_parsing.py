from __future__ import annotations

import json

import pytest

from exto.core.errors import ExtractionParseError
from exto.domain.models import Format
from exto.services.extraction import (
    ExtractionResult,
    average_confidence,
    build_messages,
    clean_model_reply,
    parse_key_values,
    template_fields_from_formats,
)


REPLY = '{"keyValues": [{"key": "invoice_no", "value": "INV-1", "confidenceScore": 80}]}'


def test_clean_model_reply_strips_fences_and_json_tag() -> None:
    assert clean_model_reply(f"```json\n{REPLY}\n```") == REPLY
    assert clean_model_reply(f"```\n{REPLY}\n```") == REPLY
    assert clean_model_reply(f"json\n{REPLY}") == REPLY


def test_clean_model_reply_is_idempotent_on_clean_json() -> None:
    once = clean_model_reply(REPLY)
    assert once == REPLY
    assert clean_model_reply(once) == once


def test_parse_key_values_returns_matching_key_sets() -> None:
    reply = json.dumps(
        {
            "keyValues": [
                {"key": "invoice_no", "value": "INV-1", "confidenceScore": 90},
                {"key": "line_items", "value": [{"qty": 1}], "confidenceScore": "70%"},
                {"key": "notes", "value": None},
            ]
        }
    )
    values, confidences = parse_key_values(reply)

    assert set(values) == set(confidences) == {"invoice_no", "line_items", "notes"}
    assert values["line_items"] == [{"qty": 1}]
    assert confidences == {"invoice_no": 90, "line_items": 70, "notes": 0}


def test_parse_key_values_rejects_invalid_json() -> None:
    with pytest.raises(ExtractionParseError):
        parse_key_values("this is not json")


def test_parse_key_values_rejects_entries_without_key() -> None:
    with pytest.raises(ExtractionParseError):
        parse_key_values('{"keyValues": [{"value": "orphan"}]}')


def test_missing_key_values_yields_empty_maps() -> None:
    values, confidences = parse_key_values("{}")
    assert values == {}
    assert confidences == {}


def test_average_confidence() -> None:
    assert average_confidence({"a": 90, "b": 70}) == pytest.approx(80.0)
    assert average_confidence({}) == 0.0


def test_raw_data_stores_scores_as_floats() -> None:
    result = ExtractionResult(values={"a": "x"}, confidences={"a": 75}, average_confidence=75.0)
    raw = result.raw_data()
    assert raw["extractedData"] == {"a": "x"}
    assert raw["confidenceScores"] == {"a": 75.0}
    assert isinstance(raw["confidenceScores"]["a"], float)
    assert raw["averageConfidence"] == 75.0


def _format(number: int, names: list[str]) -> Format:
    return Format(
        id=f"{number:032x}",
        category_id="c" * 32,
        name=f"Format {number}",
        format_number=number,
        extraction_fields=[
            {
                "name": name,
                "category_field_name": name,
                "extraction_prompt": {"text": f"Extract {name}", "sample_values": ["sample"]},
            }
            for name in names
        ],
    )


def test_template_fields_flatten_formats_in_order_keeping_duplicates() -> None:
    fields = template_fields_from_formats([_format(1, ["invoice_no", "total"]), _format(2, ["total"])])

    assert [field.category_field_name for field in fields] == ["invoice_no", "total", "total"]
    assert fields[0].prompt_text == "Extract invoice_no"
    assert fields[0].sample_values == ["sample"]


def test_build_messages_embeds_template_and_image() -> None:
    fields = template_fields_from_formats([_format(1, ["invoice_no"])])
    messages = build_messages(fields, "data:image/jpeg;base64,AAAA")

    assert messages[0]["role"] == "system"
    assert '"category_field_name": "invoice_no"' in messages[0]["content"]
    image_part = messages[1]["content"][1]
    assert image_part["image_url"]["url"] == "data:image/jpeg;base64,AAAA"
