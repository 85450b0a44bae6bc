from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exto.persistence.db import with_timeout


DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

T = TypeVar("T")


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    @classmethod
    def normalize(cls, page: int | None, page_size: int | None) -> "PageRequest":
        # Out-of-range values are clamped rather than rejected.
        normalized_page = page if page and page >= 1 else 1
        size = page_size if page_size and page_size >= 1 else DEFAULT_PAGE_SIZE
        return cls(page=normalized_page, page_size=min(size, MAX_PAGE_SIZE))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


class PageResponse(BaseModel, Generic[T]):
    total_count: int
    page: int
    page_size: int
    items: list[T]


async def fetch_page(
    session_factory: async_sessionmaker[AsyncSession],
    page: PageRequest,
    *,
    fetch: Callable[[AsyncSession, int, int], Awaitable[list[Any]]],
    count: Callable[[AsyncSession], Awaitable[int]],
    prepare: Callable[[AsyncSession], Awaitable[None]] | None = None,
) -> tuple[list[Any], int]:
    """Run the page query and the total count concurrently on two sessions.

    ``prepare`` runs first on each session (tenant namespace attachment).
    A failure in either query fails the whole call.
    """

    async def _items() -> list[Any]:
        async with session_factory() as session:
            if prepare is not None:
                await prepare(session)
            return await with_timeout(fetch(session, page.offset, page.limit))

    async def _total() -> int:
        async with session_factory() as session:
            if prepare is not None:
                await prepare(session)
            return await with_timeout(count(session))

    items, total = await asyncio.gather(_items(), _total())
    return items, total
