from __future__ import annotations

import asyncio
import os

import pytest

from exto.core.errors import BatchNotFoundError, CategoryNotFoundError, ExtractionParseError
from exto.domain.schema import Billing
from exto.persistence.pagination import PageRequest
from exto.providers.llm.fake import FakeChatProvider
from exto.providers.payments.fake import FakePaymentGateway
from exto.services.container import build_services
from exto.services.telemetry import counters_snapshot
from exto.tests.utils.factories import (
    add_format,
    create_category,
    key_values_reply,
    png_bytes,
    scope_for,
    sign_up,
)


async def _prepare(reply: str, gateway: FakePaymentGateway | None = None):
    # Fresh tenant with an invoice category, one format and an open batch.
    llm = FakeChatProvider(reply)
    services = build_services(llm=llm, gateway=gateway or FakePaymentGateway())
    context = await sign_up(services)
    scope = scope_for(context)
    category = await create_category(services, primary_field="invoice_no")
    await add_format(services, category.id, ["invoice_no", "total", "line_items"])
    batch = await services.batches.create(scope.org_slug, created_by=scope.user_id)
    return services, llm, scope, category, batch


@pytest.mark.asyncio
async def test_scan_uses_primary_field_value_as_scan_code() -> None:
    reply = key_values_reply({"invoice_no": "INV-2024-001", "total": "10.00"}, confidence=80)
    services, llm, scope, category, batch = await _prepare(reply)
    before = await services.organizations.get(scope.org_id)

    result = await services.scans.scan(
        scope, category_id=category.id, batch_id=batch["id"], filename="Invoice.PNG", data=png_bytes()
    )
    await services.metering.drain()

    assert result.scan_code == "INV-2024-001"
    after = await services.organizations.get(scope.org_id)
    assert after.scan_counter == before.scan_counter

    assert result.raw_data["extractedData"] == {"invoice_no": "INV-2024-001", "total": "10.00"}
    assert result.raw_data["averageConfidence"] == pytest.approx(80.0)
    system_prompt = llm.calls[0]["messages"][0]["content"]
    assert '"category_field_name": "line_items"' in system_prompt

    record = await services.category_data.get(scope, category.id, result.category_data_id)
    assert record["metadata"] == {"invoice_no": "INV-2024-001", "total": "10.00"}
    assert record["org_id"] == scope.org_id
    assert os.path.basename(record["document_paths"][0]).endswith("_invoice.png")
    assert os.path.isfile(record["document_paths"][0])

    history = await services.scan_history.get(scope, result.scan_history_id)
    assert history["batch_id"] == batch["id"]
    assert history["category_data_id"] == result.category_data_id
    assert history["thumbnails"][0].startswith("data:image/jpeg;base64,")


@pytest.mark.asyncio
async def test_blank_primary_field_falls_back_to_counter() -> None:
    reply = key_values_reply({"invoice_no": "", "total": "99.00"})
    services, _llm, scope, category, batch = await _prepare(reply)
    before = await services.organizations.get(scope.org_id)

    result = await services.scans.scan(
        scope, category_id=category.id, batch_id=batch["id"], filename="invoice.png", data=png_bytes()
    )
    await services.metering.drain()

    after = await services.organizations.get(scope.org_id)
    assert after.scan_counter == before.scan_counter + 1
    assert result.scan_code == f"SCAN-{after.scan_counter}"


@pytest.mark.asyncio
async def test_concurrent_scan_codes_are_distinct() -> None:
    services = build_services(llm=FakeChatProvider(), gateway=FakePaymentGateway())
    context = await sign_up(services)

    codes = await asyncio.gather(
        *[services.organizations.generate_next_scan_code(context.org.id) for _ in range(8)]
    )

    assert len(set(codes)) == 8
    assert sorted(int(code.removeprefix("SCAN-")) for code in codes) == list(range(1, 9))


@pytest.mark.asyncio
async def test_unknown_batch_or_category_is_rejected_before_writes() -> None:
    services, _llm, scope, category, batch = await _prepare(key_values_reply({"invoice_no": "X"}))

    with pytest.raises(BatchNotFoundError):
        await services.scans.scan(
            scope, category_id=category.id, batch_id="f" * 32, filename="a.png", data=png_bytes()
        )
    with pytest.raises(CategoryNotFoundError):
        await services.scans.scan(
            scope, category_id="e" * 32, batch_id=batch["id"], filename="a.png", data=png_bytes()
        )
    assert not os.path.isdir(os.path.join(os.environ["UPLOAD_DIR"], scope.org_id))


@pytest.mark.asyncio
async def test_unparseable_reply_stores_nothing() -> None:
    services, _llm, scope, category, batch = await _prepare("I could not read this document.")

    with pytest.raises(ExtractionParseError):
        await services.scans.scan(
            scope, category_id=category.id, batch_id=batch["id"], filename="a.png", data=png_bytes()
        )

    items, total = await services.scan_history.list_page(scope, PageRequest.normalize(1, 10))
    assert total == 0
    assert items == []


@pytest.mark.asyncio
async def test_scan_meters_usage_for_billed_organizations() -> None:
    gateway = FakePaymentGateway()
    services, _llm, scope, category, batch = await _prepare(key_values_reply({"invoice_no": "INV-9"}), gateway)
    await services.payments.create_setup_intent(scope.org_id, _billing(), updated_by=scope.user_id)

    await services.scans.scan(
        scope, category_id=category.id, batch_id=batch["id"], filename="a.png", data=png_bytes()
    )
    await services.metering.drain()

    assert len(gateway.meter_events) == 1
    assert gateway.meter_events[0]["event_name"] == "scan"
    assert gateway.meter_events[0]["value"] == 1


@pytest.mark.asyncio
async def test_metering_failure_does_not_fail_the_scan() -> None:
    gateway = FakePaymentGateway(fail_meter_events=True)
    services, _llm, scope, category, batch = await _prepare(key_values_reply({"invoice_no": "INV-10"}), gateway)
    await services.payments.create_setup_intent(scope.org_id, _billing(), updated_by=scope.user_id)
    failures_before = counters_snapshot().get("metering.failures", 0)

    result = await services.scans.scan(
        scope, category_id=category.id, batch_id=batch["id"], filename="a.png", data=png_bytes()
    )
    await services.metering.drain()

    assert result.scan_code == "INV-10"
    assert gateway.meter_events == []
    assert counters_snapshot()["metering.failures"] == failures_before + 1


def _billing() -> Billing:
    return Billing(full_name="Ada Lovelace", email="ada@example.com", country="GB")
