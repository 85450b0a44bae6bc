from __future__ import annotations

from io import BytesIO
import json
from typing import Any
from uuid import uuid4

from PIL import Image

from exto.domain.models import Category, Format
from exto.domain.schema import FieldDef
from exto.services.category_data import TenantScope
from exto.services.container import Services
from exto.services.identity import RequestContext


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid4().hex[:10]}@example.com"


async def sign_up(services: Services, email: str | None = None) -> RequestContext:
    # Provision identity + organization + admin user through the real sign-up path.
    return await services.identity.sign_up(email or unique_email(), "Test", "User")


def scope_for(context: RequestContext) -> TenantScope:
    return TenantScope(org_id=context.org.id, org_slug=context.org.slug, user_id=context.user.id)


def invoice_fields() -> list[FieldDef]:
    return [
        FieldDef(name="invoice_no", label="Invoice No", type="text"),
        FieldDef(name="total", label="Total", type="currency"),
        FieldDef(
            name="line_items",
            label="Line Items",
            type="table",
            children=[
                FieldDef(name="description", label="Description"),
                FieldDef(name="qty", label="Qty", type="number"),
                FieldDef(name="price", label="Price", type="currency"),
            ],
        ),
    ]


async def create_category(
    services: Services,
    *,
    fields: list[FieldDef] | None = None,
    primary_field: str | None = None,
    name: str | None = None,
) -> Category:
    return await services.categories.create(
        name=name or f"Invoice {uuid4().hex[:8]}",
        fields=fields if fields is not None else invoice_fields(),
        primary_field=primary_field,
    )


async def add_format(services: Services, category_id: str, field_names: list[str]) -> Format:
    return await services.formats.create(
        category_id=category_id,
        extraction_fields=[
            {
                "name": name,
                "category_field_name": name,
                "extraction_prompt": {"text": f"Extract the {name}", "sample_values": []},
            }
            for name in field_names
        ],
    )


def png_bytes(size: tuple[int, int] = (64, 48), color: tuple[int, int, int] = (200, 30, 30)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def key_values_reply(values: dict[str, Any], confidence: int = 90) -> str:
    return json.dumps(
        {"keyValues": [{"key": key, "value": value, "confidenceScore": confidence} for key, value in values.items()]}
    )
