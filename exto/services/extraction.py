"""Template-driven extraction against a multimodal chat model.

The model receives the flattened template fields of every format bound to a
category plus one document image, and must reply with::

    {"keyValues": [{"key": ..., "value": ..., "confidenceScore": 1-100}, ...]}

Replies are cleaned of code fences before parsing. A transport failure or an
unparseable reply aborts the caller; nothing here retries.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exto.core.config import get_settings
from exto.core.errors import ExtractionParseError
from exto.domain.models import Format
from exto.domain.schema import ExtractedTemplateField, ExtractionField, ValueMap
from exto.persistence.db import SessionLocal, with_timeout
from exto.persistence.repos import formats as formats_repo
from exto.providers.llm.base import ChatProvider
from exto.providers.llm.factory import get_chat_provider


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractionResult:
    values: ValueMap
    confidences: dict[str, int]
    average_confidence: float
    raw_reply: str = field(default="", repr=False)

    def raw_data(self) -> dict[str, Any]:
        # Persisted alongside category data; scores are stored as floats.
        return {
            "extractedData": self.values,
            "confidenceScores": {key: float(score) for key, score in self.confidences.items()},
            "averageConfidence": self.average_confidence,
        }


def clean_model_reply(reply: str) -> str:
    """Strip a leading ``json`` tag and code fences; clean JSON is unchanged."""
    cleaned = reply
    if cleaned.startswith("json\n"):
        cleaned = cleaned[len("json\n"):]
    cleaned = cleaned.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[len("```json"):]
    elif cleaned.startswith("```"):
        cleaned = cleaned[len("```"):]
    if cleaned.endswith("```"):
        cleaned = cleaned[: -len("```")]
    return cleaned.strip()


def _confidence(raw: Any) -> int:
    if isinstance(raw, bool):
        return int(raw)
    if isinstance(raw, (int, float)):
        return int(raw)
    if isinstance(raw, str):
        try:
            return int(float(raw.strip().rstrip("%")))
        except ValueError:
            return 0
    return 0


def parse_key_values(reply: str) -> tuple[dict[str, Any], dict[str, int]]:
    """Parse a keyValues reply into (value map, confidence map).

    Both maps are derived from the same parsed payload, so they always share
    the same key set.
    """
    cleaned = clean_model_reply(reply)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ExtractionParseError("Extraction model reply is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ExtractionParseError("Extraction model reply must be a JSON object")
    entries = payload.get("keyValues") or []
    if not isinstance(entries, list):
        raise ExtractionParseError("keyValues must be a list")

    values: ValueMap = {}
    confidences: dict[str, int] = {}
    for entry in entries:
        if not isinstance(entry, dict) or "key" not in entry:
            raise ExtractionParseError("keyValues entries must be objects with a key")
        key = str(entry["key"])
        # Values pass through untyped: scalars, arrays of row maps, or nested objects.
        values[key] = entry.get("value")
        confidences[key] = _confidence(entry.get("confidenceScore"))
    return values, confidences


def average_confidence(confidences: dict[str, int]) -> float:
    if not confidences:
        return 0.0
    return sum(confidences.values()) / len(confidences)


def template_fields_from_formats(formats: list[Format]) -> list[ExtractedTemplateField]:
    # Flatten across formats in order; duplicates are intentionally kept.
    fields: list[ExtractedTemplateField] = []
    for fmt in formats:
        for raw in fmt.extraction_fields or []:
            extraction_field = ExtractionField.model_validate(raw)
            fields.append(
                ExtractedTemplateField(
                    category_field_name=extraction_field.category_field_name,
                    prompt_text=extraction_field.extraction_prompt.text,
                    sample_values=list(extraction_field.extraction_prompt.sample_values),
                )
            )
    return fields


def build_system_prompt(template_fields: list[ExtractedTemplateField]) -> str:
    template_json = json.dumps([item.model_dump() for item in template_fields], indent=2)
    return f"""
You are an intelligent document data extraction system.

You will be provided with:
1. An image of a document in base64 format.
2. A list of template fields (see below as JSON):
{template_json}

Each template field contains:
- category_field_name: The key under which the extracted value is stored (snake_case).
- prompt_text: Description of what to extract.
- sample_values: Example values that show the expected shape.

Extract data only for the fields defined in the template. Do not invent fields
that are not present in the template.

Output JSON with the following structure:
{{
  "keyValues": [
    {{
      "key": "<category_field_name from template>",
      "value": "<extracted value from image>",
      "confidenceScore": <integer from 1 to 100>
    }}
  ]
}}

Score confidenceScore from text clarity, structural correctness (dates,
currency), consistency with the sample values, and your own uncertainty.

Return only JSON. Do not include explanations or additional text.
""".strip()


def build_messages(template_fields: list[ExtractedTemplateField], image_data_url: str) -> list[dict[str, Any]]:
    return [
        {"role": "system", "content": build_system_prompt(template_fields)},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": "The document image is attached below."},
                {"type": "image_url", "image_url": {"url": image_data_url, "detail": "auto"}},
            ],
        },
    ]


class ExtractionClient:
    def __init__(
        self,
        *,
        provider: ChatProvider | None = None,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
    ) -> None:
        self._provider = provider
        self._session_factory = session_factory
        self._settings = get_settings()

    @property
    def provider(self) -> ChatProvider:
        if self._provider is None:
            self._provider = get_chat_provider()
        return self._provider

    async def template_fields(self, category_id: str) -> list[ExtractedTemplateField]:
        async with self._session_factory() as session:
            formats = await with_timeout(formats_repo.list_by_category(session, category_id))
        return template_fields_from_formats(formats)

    async def extract(self, category_id: str, image_data_url: str) -> ExtractionResult:
        template_fields = await self.template_fields(category_id)
        messages = build_messages(template_fields, image_data_url)
        reply = await self.provider.complete(
            messages,
            model=self._settings.extraction_model,
            max_tokens=self._settings.extraction_max_tokens,
        )
        values, confidences = parse_key_values(reply)
        result = ExtractionResult(
            values=values,
            confidences=confidences,
            average_confidence=average_confidence(confidences),
            raw_reply=reply,
        )
        logger.info(
            "extraction completed category_id=%s fields=%d average_confidence=%.2f",
            category_id,
            len(values),
            result.average_confidence,
        )
        return result
