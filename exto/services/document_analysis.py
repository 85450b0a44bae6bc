"""Cold-start document analysis.

Used when a document arrives before any category exists for it: the model
categorizes the document and lists every key/value pair it can find, and the
caller can then persist the suggested fields as a new category and format.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from io import BytesIO
import json
import logging
import re
from typing import Any

import pdfplumber
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exto.core.config import get_settings
from exto.core.errors import (
    CategoryExistsError,
    CategoryNotFoundError,
    ExtractionParseError,
    InvalidInputError,
)
from exto.domain.models import Category, is_record_id
from exto.domain.schema import (
    ExtractionField,
    ExtractionPrompt,
    FieldDef,
    FieldType,
    format_label,
    parse_fields,
    sanitize_field_name,
)
from exto.persistence.db import SessionLocal, with_timeout
from exto.persistence.repos import categories as categories_repo
from exto.providers.llm.base import ChatProvider
from exto.providers.llm.factory import get_chat_provider
from exto.services.categories import CategoryRegistry, category_slug, create_next_format
from exto.services.extraction import clean_model_reply
from exto.services.images import image_data_url, is_pdf


logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "General Document"
TRUNCATION_MARKER = "... [truncated]"

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y", "%Y/%m/%d", "%b %d, %Y", "%d-%b-%Y")
_DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%SZ",
    "%m/%d/%Y %H:%M:%S",
    "%d-%b-%Y %H:%M:%S",
)
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")

CATEGORIZE_PROMPT = """Analyze the following document content and categorize it. Respond with ONLY a JSON object (no markdown, no extra text):
{
    "category": "primary category (e.g., Invoice, Contract, Report, Resume, Legal Document, Medical Record, Receipt, etc.)",
    "sub_category": "more specific type",
    "confidence": "high/medium/low",
    "keywords": ["key", "terms", "found"],
    "summary": "brief 1-2 sentence summary"
}
Document content:
"""

KEY_VALUES_PROMPT = """Analyze this document and extract ALL key-value pairs you can find.

Instructions:
- Return ONLY a valid JSON object (no markdown, no code blocks, no explanation)
- The JSON must have this exact structure:
{
  "key_values": [
    {"key": "field_name", "value": "field value", "description": "what this field represents"}
  ]
}
- Include keys with blank values, using an empty string
- Use snake_case keys (e.g., contract_no, tender_date)
- Extract dates in YYYY-MM-DD format when possible
- Flatten sections into the single key_values array

Return the JSON object now:"""


class DocumentCategory(BaseModel):
    category: str = ""
    sub_category: str = ""
    confidence: str = "low"
    keywords: list[str] = Field(default_factory=list)
    summary: str = ""


class KeyValue(BaseModel):
    key: str
    value: Any = ""
    description: str | None = None


@dataclass
class AnalysisResult:
    category: DocumentCategory
    key_values: list[KeyValue]
    suggested_fields: list[FieldDef]
    existing_category_id: str | None
    page_count: int

    @property
    def is_new_category(self) -> bool:
        return self.existing_category_id is None


@dataclass
class SavedFieldsResult:
    category_id: str
    category_name: str
    is_new_category: bool
    has_new_fields: bool
    new_fields: list[str] = field(default_factory=list)
    format_id: str | None = None
    format_number: int | None = None


def _matches_any(value: str, formats: tuple[str, ...]) -> bool:
    for fmt in formats:
        try:
            datetime.strptime(value, fmt)
        except ValueError:
            continue
        return True
    return False


def _is_phone(value: str) -> bool:
    digits = sum(char.isdigit() for char in value)
    return 7 <= digits <= 15 and any(char in value for char in "-() ")


def infer_field_type(value: Any) -> FieldType:
    if isinstance(value, bool):
        return FieldType.boolean
    if isinstance(value, (int, float)):
        return FieldType.number
    if not isinstance(value, str):
        return FieldType.text
    text = value.strip()
    if not text:
        return FieldType.text
    if _NUMBER_RE.match(text.replace(",", "").replace(" ", "")):
        return FieldType.number
    if _matches_any(text, _DATETIME_FORMATS):
        return FieldType.datetime
    if _matches_any(text, _DATE_FORMATS):
        return FieldType.date
    if _is_phone(text):
        return FieldType.phone
    return FieldType.text


def suggest_fields(values: dict[str, Any]) -> list[FieldDef]:
    fields: list[FieldDef] = []
    seen: set[str] = set()
    for key, value in values.items():
        name = sanitize_field_name(key)
        if not name or name in seen:
            continue
        seen.add(name)
        fields.append(FieldDef(name=name, label=format_label(key), type=infer_field_type(value)))
    return fields


def extraction_fields_for(values: dict[str, Any], descriptions: dict[str, str]) -> list[dict[str, Any]]:
    # One template entry per provided key so later scans prompt for the same fields.
    entries: list[dict[str, Any]] = []
    for key, value in values.items():
        name = sanitize_field_name(key)
        if not name:
            continue
        sample = "" if value is None else str(value)
        prompt = ExtractionPrompt(
            text=descriptions.get(key) or f"Extract the {format_label(key)}",
            sample_values=[sample] if sample else [],
        )
        entries.append(
            ExtractionField(name=key, category_field_name=name, extraction_prompt=prompt).model_dump()
        )
    return entries


def normalize_extracted_fields(raw: Any) -> tuple[dict[str, Any], dict[str, str]]:
    """Accept either a flat ``{key: value}`` map or a list of key/value/description triples."""
    if isinstance(raw, dict):
        values: dict[str, Any] = {}
        descriptions: dict[str, str] = {}
        for key, value in raw.items():
            if isinstance(value, dict) and "value" in value:
                values[key] = value.get("value")
                descriptions[key] = str(value.get("description") or "")
            else:
                values[key] = value
        return values, descriptions
    if isinstance(raw, list):
        triples = [KeyValue.model_validate(item) for item in raw if isinstance(item, dict) and "key" in item]
        if not triples:
            raise InvalidInputError("extracted_fields contains no key/value pairs")
        return (
            {item.key: item.value for item in triples},
            {item.key: item.description or "" for item in triples},
        )
    raise InvalidInputError("extracted_fields must be an object or a list")


def extract_pdf_text(data: bytes) -> tuple[str, int]:
    with pdfplumber.open(BytesIO(data)) as pdf:
        pages = [page.extract_text() or "" for page in pdf.pages]
    return "\n\n".join(pages), len(pages)


def truncate_text(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_MARKER


def json_object_span(reply: str) -> str:
    cleaned = clean_model_reply(reply)
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        return cleaned[start : end + 1]
    return cleaned


def _loads(reply: str, what: str) -> dict[str, Any]:
    try:
        payload = json.loads(json_object_span(reply))
    except json.JSONDecodeError as exc:
        raise ExtractionParseError(f"{what} reply is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ExtractionParseError(f"{what} reply must be a JSON object")
    return payload


class DocumentAnalyzer:
    def __init__(
        self,
        *,
        provider: ChatProvider | None = None,
        categories: CategoryRegistry | None = None,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
    ) -> None:
        self._provider = provider
        self._session_factory = session_factory
        self._categories = categories or CategoryRegistry(session_factory=session_factory)
        self._settings = get_settings()

    @property
    def provider(self) -> ChatProvider:
        if self._provider is None:
            self._provider = get_chat_provider()
        return self._provider

    def _document_content(self, data: bytes) -> tuple[str | None, str | None, int]:
        # PDFs go to the model as text; raster images as a data URL.
        if is_pdf(data):
            text, page_count = extract_pdf_text(data)
            return text, None, page_count
        return None, image_data_url(data), 1

    async def categorize(self, *, text: str | None, image_url: str | None = None) -> DocumentCategory:
        prompt = CATEGORIZE_PROMPT + truncate_text(text or "", self._settings.analysis_max_chars)
        content: Any = prompt
        if image_url is not None:
            content = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": image_url, "detail": "auto"}},
            ]
        reply = await self.provider.complete(
            [{"role": "user", "content": content}],
            model=self._settings.analysis_model,
            max_tokens=self._settings.analysis_max_tokens,
            temperature=0.0,
        )
        result = DocumentCategory.model_validate(_loads(reply, "Categorization"))
        if not result.category.strip():
            result.category = DEFAULT_CATEGORY
        return result

    async def extract_key_values(self, *, text: str | None, image_url: str | None = None) -> list[KeyValue]:
        content: list[dict[str, Any]] = [{"type": "text", "text": KEY_VALUES_PROMPT}]
        if text:
            content.append({"type": "text", "text": truncate_text(text, self._settings.analysis_max_chars)})
        if image_url is not None:
            content.append({"type": "image_url", "image_url": {"url": image_url, "detail": "auto"}})
        reply = await self.provider.complete(
            [{"role": "user", "content": content}],
            model=self._settings.extraction_model,
            max_tokens=self._settings.extraction_max_tokens,
        )
        payload = _loads(reply, "Key/value extraction")
        entries = payload.get("key_values") or []
        if not isinstance(entries, list):
            raise ExtractionParseError("key_values must be a list")
        return [KeyValue.model_validate(item) for item in entries if isinstance(item, dict) and "key" in item]

    async def analyze(self, data: bytes) -> AnalysisResult:
        text, image_url, page_count = self._document_content(data)
        category, key_values = await asyncio.gather(
            self.categorize(text=text, image_url=image_url),
            self.extract_key_values(text=text, image_url=image_url),
        )
        existing = await self._categories.get_by_name(category.category)
        values = {item.key: item.value for item in key_values}
        logger.info(
            "document analyzed category=%s keys=%d existing=%s",
            category.category,
            len(values),
            existing is not None,
        )
        return AnalysisResult(
            category=category,
            key_values=key_values,
            suggested_fields=suggest_fields(values),
            existing_category_id=existing.id if existing is not None else None,
            page_count=page_count,
        )

    async def save_extracted_fields(
        self,
        category_ref: str,
        extracted_fields: Any,
        *,
        summary: str | None = None,
        created_by: str | None = None,
    ) -> SavedFieldsResult:
        """Create or extend a category from analyzed fields and record a new format.

        ``category_ref`` is a category id or a category name. An unknown id is an
        error; an unknown name creates the category.
        """
        values, descriptions = normalize_extracted_fields(extracted_fields)
        async with self._session_factory() as session:
            async with session.begin():
                category = await self._resolve(session, category_ref)
                is_new_category = category is None
                if category is None:
                    slug = category_slug(category_ref)
                    if await with_timeout(categories_repo.get_by_slug(session, slug)) is not None:
                        raise CategoryExistsError(f"Category {slug!r} already exists")
                    fields = suggest_fields(values)
                    category = await with_timeout(
                        categories_repo.create(
                            session,
                            name=category_ref,
                            slug=slug,
                            fields=[item.model_dump(mode="json") for item in fields],
                            summary=summary,
                            created_by=created_by,
                        )
                    )
                    new_fields = [item.name for item in fields]
                else:
                    existing = parse_fields(category.fields)
                    known = {item.name for item in existing}
                    additions = [item for item in suggest_fields(values) if item.name not in known]
                    new_fields = [item.name for item in additions]
                    if additions:
                        await with_timeout(
                            categories_repo.replace_fields(
                                session,
                                category,
                                [item.model_dump(mode="json") for item in [*existing, *additions]],
                                updated_by=created_by,
                            )
                        )

                result = SavedFieldsResult(
                    category_id=category.id,
                    category_name=category.name,
                    is_new_category=is_new_category,
                    has_new_fields=bool(new_fields),
                    new_fields=new_fields,
                )
                if is_new_category or new_fields:
                    fmt = await create_next_format(
                        session,
                        category_id=category.id,
                        name=None,
                        extraction_fields=extraction_fields_for(values, descriptions),
                        extracted_sample=values,
                        created_by=created_by,
                    )
                    result.format_id = fmt.id
                    result.format_number = fmt.format_number
        if not is_new_category:
            self._categories.invalidate(result.category_id)
        logger.info(
            "extracted fields saved category_id=%s new_category=%s new_fields=%d format_number=%s",
            result.category_id,
            result.is_new_category,
            len(result.new_fields),
            result.format_number,
        )
        return result

    async def _resolve(self, session: AsyncSession, category_ref: str) -> Category | None:
        category = await with_timeout(categories_repo.get_by_id(session, category_ref))
        if category is not None:
            return category
        category = await with_timeout(categories_repo.get_by_name(session, category_ref))
        if category is not None:
            return category
        # A 32-char hex reference is an id, never a name to create.
        if is_record_id(category_ref):
            raise CategoryNotFoundError(f"Category {category_ref} not found")
        return None
