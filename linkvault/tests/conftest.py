from __future__ import annotations

import os
import tempfile
from uuid import uuid4

# Settings are read at import time by the engine module; configure the test
# environment before anything from linkvault is imported.
_DB_PATH = os.path.join(tempfile.gettempdir(), f"linkvault-test-{uuid4().hex}.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ.setdefault("ENCRYPTION_KEY1", "k" * 32)
os.environ.setdefault("IV_KEY1", "i" * 16)
os.environ.setdefault("ENCRYPTION_KEY2", "q" * 32)
os.environ.setdefault("IV_KEY2", "v" * 16)
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_linkvault")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_linkvault_test")
os.environ.setdefault("SMTP_HOST", "smtp.test.invalid")
os.environ.setdefault("SMTP_USERNAME", "mailer")
os.environ.setdefault("SMTP_PASSWORD", "mailer-password")
os.environ.setdefault("SESSION_SECRET", "session-secret-for-tests-only-0123456789")
os.environ.setdefault("ADMIN_API_KEY", "admin-key-for-tests")
os.environ["NOTIFY_QUEUE_ENABLED"] = "false"
os.environ["SIGNUP_LINK_ALLOTMENT"] = "5"
os.environ["PASSWORD_HASH_ITERATIONS"] = "1000"
os.environ["APP_BASE_URL"] = "https://links.test"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete

from linkvault.apps.api.main import create_app
from linkvault.domain.models import Base
from linkvault.persistence.db import SessionLocal, engine


@pytest.fixture(autouse=True)
async def database_schema() -> None:
    # Fresh rows per test on a shared SQLite file; the schema is created idempotently.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with SessionLocal() as session:
        for table in reversed(Base.metadata.sorted_tables):
            await session.execute(delete(table))
        await session.commit()


@pytest.fixture(autouse=True)
async def dispose_engine_between_tests() -> None:
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    yield
    await engine.dispose()


@pytest.fixture
async def session():
    async with SessionLocal() as db_session:
        yield db_session


@pytest.fixture
async def client():
    # In-process API client; the app factory validates secrets on every build.
    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


def pytest_sessionfinish(session, exitstatus) -> None:
    if os.path.exists(_DB_PATH):
        os.remove(_DB_PATH)
