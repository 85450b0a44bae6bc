from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exto.core.cache import TTLCache
from exto.core.config import get_settings
from exto.core.errors import CategoryExistsError, CategoryNotFoundError, InvalidInputError
from exto.domain.models import Category, Format
from exto.domain.schema import FieldDef, ensure_unique_names, sanitize_field_name
from exto.persistence.db import SessionLocal, with_timeout
from exto.persistence.pagination import PageRequest, fetch_page
from exto.persistence.repos import categories as categories_repo
from exto.persistence.repos import formats as formats_repo


logger = logging.getLogger(__name__)


def category_slug(name: str) -> str:
    slug = sanitize_field_name(name)
    if not slug:
        raise InvalidInputError(f"Category name {name!r} has no usable characters")
    return slug


def _dump_fields(fields: list[FieldDef]) -> list[dict[str, Any]]:
    ensure_unique_names(fields)
    return [field.model_dump(mode="json") for field in fields]


class CategoryRegistry:
    """Category definitions with a short-lived read-through cache.

    Updates made through this registry evict the cached entry; updates made by
    other processes become visible once the entry expires.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
        cache: TTLCache[str, Category] | None = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory
        self._cache = cache or TTLCache(
            max_entries=settings.category_cache_max_entries,
            ttl_s=settings.category_cache_ttl_s,
        )

    async def get_by_id(self, category_id: str) -> Category:
        cached = self._cache.get(category_id)
        if cached is not None:
            return cached
        async with self._session_factory() as session:
            category = await with_timeout(categories_repo.get_by_id(session, category_id))
        if category is None:
            raise CategoryNotFoundError(f"Category {category_id} not found")
        self._cache.set(category_id, category)
        return category

    async def get_by_name(self, name: str) -> Category | None:
        async with self._session_factory() as session:
            return await with_timeout(categories_repo.get_by_name(session, name))

    async def list_page(self, page: PageRequest) -> tuple[list[Category], int]:
        return await fetch_page(
            self._session_factory,
            page,
            fetch=lambda session, offset, limit: categories_repo.list_page(
                session, offset=offset, limit=limit
            ),
            count=categories_repo.count_all,
        )

    async def create(
        self,
        *,
        name: str,
        fields: list[FieldDef],
        primary_field: str | None = None,
        summary: str | None = None,
        created_by: str | None = None,
    ) -> Category:
        slug = category_slug(name)
        payload = _dump_fields(fields)
        if primary_field and primary_field not in {field.name for field in fields}:
            raise InvalidInputError(f"primary_field {primary_field!r} is not a category field")
        async with self._session_factory() as session:
            async with session.begin():
                if await with_timeout(categories_repo.get_by_slug(session, slug)) is not None:
                    raise CategoryExistsError(f"Category {slug!r} already exists")
                category = await with_timeout(
                    categories_repo.create(
                        session,
                        name=name,
                        slug=slug,
                        fields=payload,
                        primary_field=primary_field,
                        summary=summary,
                        created_by=created_by,
                    )
                )
        logger.info("category created category_id=%s slug=%s", category.id, slug)
        return category

    async def update_fields(
        self,
        category_id: str,
        fields: list[FieldDef],
        *,
        updated_by: str | None = None,
    ) -> Category:
        payload = _dump_fields(fields)
        async with self._session_factory() as session:
            async with session.begin():
                category = await with_timeout(categories_repo.get_by_id(session, category_id))
                if category is None:
                    raise CategoryNotFoundError(f"Category {category_id} not found")
                await with_timeout(
                    categories_repo.replace_fields(session, category, payload, updated_by=updated_by)
                )
        self.invalidate(category_id)
        return category

    def invalidate(self, category_id: str) -> None:
        self._cache.pop(category_id)


class FormatRegistry:
    def __init__(self, *, session_factory: async_sessionmaker[AsyncSession] = SessionLocal) -> None:
        self._session_factory = session_factory

    async def list_by_category(self, category_id: str) -> list[Format]:
        async with self._session_factory() as session:
            return await with_timeout(formats_repo.list_by_category(session, category_id))

    async def create(
        self,
        *,
        category_id: str,
        name: str | None = None,
        extraction_fields: list[dict[str, Any]],
        extracted_sample: dict[str, Any] | None = None,
        created_by: str | None = None,
    ) -> Format:
        async with self._session_factory() as session:
            async with session.begin():
                fmt = await create_next_format(
                    session,
                    category_id=category_id,
                    name=name,
                    extraction_fields=extraction_fields,
                    extracted_sample=extracted_sample,
                    created_by=created_by,
                )
        return fmt


async def create_next_format(
    session: AsyncSession,
    *,
    category_id: str,
    name: str | None,
    extraction_fields: list[dict[str, Any]],
    extracted_sample: dict[str, Any] | None,
    created_by: str | None,
) -> Format:
    # Format numbers are sequential per category, starting at 1.
    format_number = await with_timeout(formats_repo.count_by_category(session, category_id)) + 1
    return await with_timeout(
        formats_repo.create(
            session,
            category_id=category_id,
            name=name or f"Format {format_number}",
            format_number=format_number,
            extraction_fields=extraction_fields,
            extracted_sample=extracted_sample,
            created_by=created_by,
        )
    )
