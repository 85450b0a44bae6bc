from __future__ import annotations

import pytest

from exto.domain.models import as_utc
from exto.services.organizations import LastActiveCoalescer
from exto.tests.utils.factories import sign_up


class _Clock:
    def __init__(self, start: float) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_requests_two_minutes_apart_write_once(services) -> None:
    context = await sign_up(services)
    clock = _Clock(1_700_000_000.0)
    coalescer = LastActiveCoalescer(threshold_s=600, clock=clock)

    assert await coalescer.touch(context.org.id) is True
    clock.now += 120
    assert await coalescer.touch(context.org.id) is False

    assert coalescer.writes == 1
    organization = await services.organizations.get(context.org.id)
    assert organization.last_active_at is not None
    assert as_utc(organization.last_active_at).timestamp() == pytest.approx(1_700_000_000.0)


@pytest.mark.asyncio
async def test_requests_eleven_minutes_apart_write_twice(services) -> None:
    context = await sign_up(services)
    clock = _Clock(1_700_000_000.0)
    coalescer = LastActiveCoalescer(threshold_s=600, clock=clock)

    await coalescer.touch(context.org.id)
    clock.now += 660
    await coalescer.touch(context.org.id)

    assert coalescer.writes == 2
    organization = await services.organizations.get(context.org.id)
    assert as_utc(organization.last_active_at).timestamp() == pytest.approx(1_700_000_660.0)


@pytest.mark.asyncio
async def test_organizations_are_tracked_separately(services) -> None:
    first = await sign_up(services)
    second = await sign_up(services)
    coalescer = LastActiveCoalescer(threshold_s=600, clock=_Clock(1_700_000_000.0))

    await coalescer.touch(first.org.id)
    await coalescer.touch(second.org.id)
    await coalescer.touch(first.org.id)

    assert coalescer.writes == 2
