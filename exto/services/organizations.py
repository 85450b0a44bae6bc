from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import time
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exto.core.cache import TTLCache
from exto.core.config import get_settings
from exto.core.errors import OrganizationNotFoundError
from exto.domain.models import Organization, as_utc
from exto.persistence.db import SessionLocal, with_timeout
from exto.persistence.repos import organizations as organizations_repo
from exto.persistence.repos import scan_history as scan_history_repo
from exto.persistence.tenancy import open_namespace, org_namespace, scan_history_table


logger = logging.getLogger(__name__)

SCAN_CODE_PREFIX = "SCAN-"


def format_scan_code(counter: int) -> str:
    return f"{SCAN_CODE_PREFIX}{counter}"


@dataclass(frozen=True)
class FreeTrialInfo:
    remaining_scans: int
    record_count: int
    trial_end_date: datetime
    days_left: int


def free_trial_info(
    *,
    created_at: datetime,
    record_count: int,
    now: datetime,
    scan_limit: int,
    trial_days: int,
) -> FreeTrialInfo:
    # Whole days between UTC midnights; an expired trial reports zero.
    trial_end = as_utc(created_at) + timedelta(days=trial_days)
    today = as_utc(now).date()
    return FreeTrialInfo(
        remaining_scans=max(0, scan_limit - record_count),
        record_count=record_count,
        trial_end_date=trial_end,
        days_left=max(0, (trial_end.date() - today).days),
    )


class OrganizationService:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._now = time_provider or (lambda: datetime.now(timezone.utc))
        self._settings = get_settings()

    async def get(self, org_id: str) -> Organization:
        async with self._session_factory() as session:
            organization = await with_timeout(organizations_repo.get_by_id(session, org_id))
        if organization is None:
            raise OrganizationNotFoundError(f"Organization {org_id} not found")
        return organization

    async def generate_next_scan_code(self, org_id: str) -> str:
        # The increment is the first statement of its own transaction so it never
        # shares a lock window with the caller's writes.
        async with self._session_factory() as session:
            async with session.begin():
                counter = await with_timeout(organizations_repo.increment_scan_counter(session, org_id))
        if counter is None:
            raise OrganizationNotFoundError(f"Organization {org_id} not found")
        return format_scan_code(counter)

    async def free_trial_info(self, org_id: str, org_slug: str) -> FreeTrialInfo:
        organization = await self.get(org_id)
        namespace = org_namespace(org_slug)
        async with self._session_factory() as session:
            await open_namespace(session, namespace, scan_history_table(namespace))
            record_count = await with_timeout(scan_history_repo.count_all(session, namespace))
        return free_trial_info(
            created_at=organization.created_at,
            record_count=record_count,
            now=self._now(),
            scan_limit=self._settings.free_trial_scan_limit,
            trial_days=self._settings.free_trial_days,
        )


class LastActiveCoalescer:
    """Skip ``last_active_at`` writes for organizations touched recently.

    The cache remembers, per organization, when this process last persisted the
    timestamp. It is process-local, so separate processes decide independently.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
        threshold_s: float | None = None,
        clock: Callable[[], float] | None = None,
        cache: TTLCache[str, float] | None = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory
        self._threshold_s = settings.last_active_threshold_s if threshold_s is None else threshold_s
        self._clock = clock or time.time
        self._cache = cache or TTLCache(
            max_entries=settings.last_active_cache_max_entries,
            ttl_s=self._threshold_s,
            time_source=self._clock,
        )
        self.writes = 0

    async def touch(self, org_id: str) -> bool:
        """Persist the timestamp unless it was written within the threshold. Returns True on write."""
        now = self._clock()
        last_written = self._cache.get(org_id)
        if last_written is not None and now - last_written < self._threshold_s:
            return False
        async with self._session_factory() as session:
            async with session.begin():
                await with_timeout(
                    organizations_repo.touch_last_active(
                        session, org_id, datetime.fromtimestamp(now, tz=timezone.utc)
                    )
                )
        # Only remember successful writes.
        self._cache.set(org_id, now)
        self.writes += 1
        return True
