"""Pytest configuration and fixtures."""
import asyncio
import os
import uuid
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config as AlembicConfig
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Ensure the application uses a dedicated SQLite database during tests
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
# Never reach a real form service from tests
os.environ["FORM_SERVICE_URL"] = "http://forms.test/api"
os.environ["DIAGNOSTICS_ENABLED"] = "true"

from rewards_backend.config import get_settings


BASE_DIR = Path(__file__).resolve().parent.parent
TEST_DB_PATH = BASE_DIR / "test.db"
settings = get_settings()


@pytest.fixture(scope="session", autouse=True)
def apply_migrations():
    """Apply database migrations against the test database."""
    if TEST_DB_PATH.exists():
        try:
            TEST_DB_PATH.unlink()
        except PermissionError:
            pass  # Continue anyway, migrations will handle it

    alembic_cfg = AlembicConfig(str(BASE_DIR / "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url)
    command.upgrade(alembic_cfg, "head")

    yield

    if TEST_DB_PATH.exists():
        try:
            TEST_DB_PATH.unlink()
        except PermissionError:
            # On Windows, database might still be in use
            pass


@pytest.fixture
async def test_engine():
    """Create test database engine using the same database as migrations."""
    engine = create_async_engine(settings.database_url, echo=False, pool_pre_ping=True)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()
        await session.close()


@pytest.fixture
def user_id():
    """Unique identity per test so rows never leak between tests."""
    return f"tg-{uuid.uuid4().hex[:12]}"


@pytest.fixture
async def test_app(session_factory):
    """Create test app with database override."""
    from rewards_backend.main import app
    from rewards_backend.database import get_db

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            finally:
                await session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


class FakeFormService:
    """In-memory stand-in for the form service client."""

    def __init__(self, catalog=None, remote=None, delays=None):
        self.catalog = list(catalog or [])
        # survey id -> exception raised by get_form_by_id
        self.remote = dict(remote or {})
        self.delays = dict(delays or {})
        self.catalog_error = None
        self.catalog_gate = None
        self.list_calls = 0
        self.probed = []
        self.submitted = []
        self.submit_error = None

    async def list_forms(self):
        self.list_calls += 1
        if self.catalog_gate is not None:
            await self.catalog_gate.wait()
        if self.catalog_error is not None:
            raise self.catalog_error
        return list(self.catalog)

    async def get_form_by_id(self, form_id, user_id=None):
        self.probed.append(form_id)
        delay = self.delays.get(form_id)
        if delay:
            await asyncio.sleep(delay)
        error = self.remote.get(form_id)
        if error is not None:
            raise error
        return {"id": form_id}

    async def submit_form_response(self, form_id, answers, respondent_id):
        self.submitted.append((form_id, answers, str(respondent_id)))
        if self.submit_error is not None:
            raise self.submit_error
        return {"id": f"response-{len(self.submitted)}"}


RU_SURVEY = {
    "id": "ru_reg",
    "name": "Тема: Регистрация",
    "status": "PUBLISHED",
    "numberOfSubmissions": 3,
    "isClosed": False,
}
UZ_SURVEY = {
    "id": "uz_reg",
    "name": "Mavzu: Ro'yxatdan o'tish",
    "status": "PUBLISHED",
    "numberOfSubmissions": 1,
    "isClosed": False,
}


@pytest.fixture
def form_service():
    """Fake form service serving one Russian and one Uzbek survey."""
    return FakeFormService(catalog=[RU_SURVEY, UZ_SURVEY])


@pytest.fixture
def make_settings():
    """Build isolated settings; survey groups default to none."""
    from rewards_backend.config import Settings

    def _make(**overrides):
        values = {"survey_groups": {}, "refresh_delay_seconds": 0.0}
        values.update(overrides)
        return Settings(**values)

    return _make
