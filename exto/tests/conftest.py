from __future__ import annotations

import asyncio
import os
import tempfile

# Settings and the engine are read at import time, so the test environment is
# fixed before any exto module loads.
_TEST_ROOT = tempfile.mkdtemp(prefix="exto-tests-")
os.environ["DATABASE_URL"] = os.environ.get(
    "EXTO_TEST_DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(_TEST_ROOT, 'exto.db')}",
)
os.environ["UPLOAD_DIR"] = os.path.join(_TEST_ROOT, "uploads")
os.environ["EXPORT_DIR"] = os.path.join(_TEST_ROOT, "exports")
os.environ["LLM_PROVIDER"] = "fake"
os.environ["PAYMENT_PROVIDER"] = "fake"
os.environ["AUTH_DEV_BYPASS"] = "true"

import pytest

from exto.domain.models import Base
from exto.persistence.db import engine
from exto.providers.llm.fake import FakeChatProvider
from exto.providers.payments.fake import FakePaymentGateway
from exto.services.container import Services, build_services


@pytest.fixture(scope="session", autouse=True)
def create_core_tables() -> None:
    # Core tables once per run; tenant tables are created on demand by the services.
    async def _create() -> None:
        async with engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
        await engine.dispose()

    asyncio.run(_create())
    yield


@pytest.fixture
def fake_llm() -> FakeChatProvider:
    return FakeChatProvider()


@pytest.fixture
def fake_gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def services(fake_llm: FakeChatProvider, fake_gateway: FakePaymentGateway) -> Services:
    # Fresh caches per test so cached categories and contexts never leak.
    return build_services(llm=fake_llm, gateway=fake_gateway)
