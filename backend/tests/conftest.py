from __future__ import annotations

import os
import sys
from pathlib import Path

# Add backend folder to sys.path so `import receiptscan...` works in tests when running from backend root
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

# Settings are read at import time; keep tests off real infrastructure
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["DRAMATIQ_BROKER_URL"] = ""
os.environ["SENTRY_DSN"] = ""
os.environ["ENVIRONMENT"] = "development"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from receiptscan.core.database import build_session_factory, init_db  # noqa: E402
from receiptscan.models.tables import Category, User  # noqa: E402

from fakes import FIXED_NOW, FakeAnalyzer, FakeClassifier  # noqa: E402


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def seeded(session_factory):
    """A user with one live and one soft-deleted category."""
    async with session_factory() as session:
        user = User(email="owner@example.com", name="Owner")
        session.add(user)
        await session.flush()
        live = Category(name="Food", user_id=user.id)
        gone = Category(name="Old", user_id=user.id, deleted_at=FIXED_NOW)
        session.add_all([live, gone])
        await session.commit()
        return {"user_id": user.id, "category_id": live.id, "deleted_category_id": gone.id}


@pytest.fixture
def fake_classifier():
    return FakeClassifier()


@pytest.fixture
def fake_analyzer():
    return FakeAnalyzer()
