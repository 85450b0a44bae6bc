from __future__ import annotations

import json
from uuid import uuid4

import pytest

from exto.core.errors import CategoryNotFoundError, ExtractionParseError
from exto.domain.schema import parse_fields
from exto.providers.llm.fake import FakeChatProvider
from exto.providers.payments.fake import FakePaymentGateway
from exto.services.container import build_services
from exto.tests.utils.factories import png_bytes


CATEGORY_REPLY = json.dumps(
    {
        "category": "Receipt",
        "sub_category": "Grocery",
        "confidence": "high",
        "keywords": ["total"],
        "summary": "A grocery receipt.",
    }
)
KEY_VALUES_REPLY = "```json\n" + json.dumps(
    {
        "key_values": [
            {"key": "Store Name", "value": "Corner Shop", "description": "Merchant"},
            {"key": "total", "value": "12.50", "description": "Amount paid"},
            {"key": "purchase_date", "value": "2024-05-01"},
        ]
    }
) + "\n```"


def _reply(messages) -> str:
    content = messages[0]["content"]
    first_text = content if isinstance(content, str) else content[0]["text"]
    if "categorize it" in first_text:
        return CATEGORY_REPLY
    return KEY_VALUES_REPLY


@pytest.mark.asyncio
async def test_analyze_image_suggests_fields() -> None:
    llm = FakeChatProvider(_reply)
    services = build_services(llm=llm, gateway=FakePaymentGateway())

    result = await services.analyzer.analyze(png_bytes())

    assert result.category.category == "Receipt"
    assert [item.key for item in result.key_values] == ["Store Name", "total", "purchase_date"]
    assert [(field.name, field.type) for field in result.suggested_fields] == [
        ("store_name", "text"),
        ("total", "number"),
        ("purchase_date", "date"),
    ]
    assert result.page_count == 1
    assert len(llm.calls) == 2


@pytest.mark.asyncio
async def test_analyze_rejects_non_json_reply() -> None:
    services = build_services(llm=FakeChatProvider("no idea"), gateway=FakePaymentGateway())

    with pytest.raises(ExtractionParseError):
        await services.analyzer.analyze(png_bytes())


@pytest.mark.asyncio
async def test_save_fields_creates_then_extends_category() -> None:
    services = build_services(llm=FakeChatProvider(), gateway=FakePaymentGateway())
    name = f"Receipt {uuid4().hex[:8]}"

    created = await services.analyzer.save_extracted_fields(
        name, {"store_name": "Corner Shop", "total": "12.50"}, summary="Receipts"
    )
    assert created.is_new_category
    assert created.new_fields == ["store_name", "total"]
    assert created.format_number == 1

    extended = await services.analyzer.save_extracted_fields(
        created.category_id,
        [{"key": "total", "value": "3.00"}, {"key": "tax", "value": "0.30", "description": "Sales tax"}],
    )
    assert not extended.is_new_category
    assert extended.has_new_fields
    assert extended.new_fields == ["tax"]
    assert extended.format_number == 2

    unchanged = await services.analyzer.save_extracted_fields(name, {"total": "1.00"})
    assert not unchanged.has_new_fields
    assert unchanged.format_id is None

    category = await services.categories.get_by_id(created.category_id)
    assert [field.name for field in parse_fields(category.fields)] == ["store_name", "total", "tax"]
    formats = await services.formats.list_by_category(created.category_id)
    tax_entry = formats[1].extraction_fields[1]
    assert tax_entry["category_field_name"] == "tax"
    assert tax_entry["extraction_prompt"]["text"] == "Sales tax"


@pytest.mark.asyncio
async def test_save_fields_with_unknown_id_is_not_found() -> None:
    services = build_services(llm=FakeChatProvider(), gateway=FakePaymentGateway())

    with pytest.raises(CategoryNotFoundError):
        await services.analyzer.save_extracted_fields(uuid4().hex, {"total": "1"})
