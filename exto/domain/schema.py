from __future__ import annotations

from enum import Enum
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field as PydanticField, JsonValue, model_validator


class FieldType(str, Enum):
    text = "text"
    number = "number"
    currency = "currency"
    date = "date"
    datetime = "datetime"
    boolean = "boolean"
    select = "select"
    multi_select = "multi_select"
    image = "image"
    url = "url"
    email = "email"
    phone = "phone"
    address = "address"
    table = "table"


class UserRole(str, Enum):
    super_admin = "super_admin"
    billing_admin = "billing_admin"
    organization_admin = "organization_admin"
    member = "member"
    guest = "guest"


class BatchStatus(str, Enum):
    open = "Open"
    closed = "Closed"


class SubscriptionStatus(str, Enum):
    active = "active"
    trialing = "trialing"
    canceled = "canceled"
    past_due = "past_due"
    unpaid = "unpaid"
    incomplete = "incomplete"


class BillingCycle(str, Enum):
    monthly = "monthly"
    yearly = "yearly"


class FieldOption(BaseModel):
    name: str
    alternative_name: list[str] = PydanticField(default_factory=list)


class FieldDef(BaseModel):
    """One node of a category schema.

    Table fields hold their column definitions in ``children``; nesting depth
    is not limited, and sibling names must be unique at every level.
    """

    model_config = ConfigDict(use_enum_values=True)

    name: str
    label: str = ""
    type: FieldType = FieldType.text
    options: list[FieldOption] = PydanticField(default_factory=list)
    required: bool = False
    unique: bool = False
    children: list["FieldDef"] = PydanticField(default_factory=list)

    @model_validator(mode="after")
    def _unique_child_names(self) -> "FieldDef":
        ensure_unique_names(self.children, scope=self.name)
        return self

    @property
    def is_table(self) -> bool:
        return self.type == FieldType.table.value


def ensure_unique_names(fields: list[FieldDef], *, scope: str = "category") -> None:
    seen: set[str] = set()
    for field in fields:
        if field.name in seen:
            raise ValueError(f"Duplicate field name '{field.name}' in {scope}")
        seen.add(field.name)


def parse_fields(raw: list[dict[str, Any]] | None) -> list[FieldDef]:
    # Stored schemas are JSON; validate them into the recursive field tree.
    fields = [FieldDef.model_validate(item) for item in (raw or [])]
    ensure_unique_names(fields)
    return fields


class ExtractionPrompt(BaseModel):
    text: str = ""
    sample_values: list[str] = PydanticField(default_factory=list)
    images: list[str] = PydanticField(default_factory=list)


class ExtractionField(BaseModel):
    name: str
    category_field_name: str
    extraction_prompt: ExtractionPrompt = PydanticField(default_factory=ExtractionPrompt)


class ExtractedTemplateField(BaseModel):
    # Flattened view of one format field, embedded verbatim in the extraction prompt.
    category_field_name: str
    prompt_text: str
    sample_values: list[str] = PydanticField(default_factory=list)


class Billing(BaseModel):
    full_name: str = ""
    email: str = ""
    phone: str = ""
    street_address: str = ""
    country: str = ""
    state: str = ""
    city: str = ""
    zip_code: str = ""


# Extracted values and stored metadata are untyped JSON trees.
ValueMap = dict[str, JsonValue]


_FIELD_NAME_DROP = re.compile(r"[^a-z0-9_]")
_LABEL_SPLIT = re.compile(r"[_\- ]+")


def sanitize_field_name(key: str) -> str:
    # snake_case, ASCII letters, digits and underscores only.
    name = key.lower().replace(" ", "_").replace("-", "_")
    return _FIELD_NAME_DROP.sub("", name)


def format_label(key: str) -> str:
    words = [word for word in _LABEL_SPLIT.split(key) if word]
    return " ".join(word[:1].upper() + word[1:].lower() for word in words)
