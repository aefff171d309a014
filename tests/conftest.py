# tests/conftest.py
from __future__ import annotations

import os

# antes de importar calmora: Settings se instancia al importar
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import calmora.models  # noqa: F401  pobla Base.metadata
from calmora.core.db import Base, get_db
from calmora.core.security import hash_password
from calmora.main import app
from calmora.models.user import User
from calmora.services.twofa_service import TwoFactorService
from calmora.services.twofa_store import TwoFactorStore

# múltiplo de 30 s: T0 cae al inicio de un paso TOTP
T0 = datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc)
PASSWORD = "calm-and-steady"


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'calmora-test.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def user(db) -> User:
    u = User(email="ada@example.com", full_name="Ada Lovelace", hashed_password=hash_password(PASSWORD))
    db.add(u)
    await db.commit()
    await db.refresh(u)
    # como get_current_user: desacoplado de la sesión que usa el store
    db.expunge(u)
    return u


@pytest.fixture
def twofa(db, user) -> TwoFactorService:
    return TwoFactorService(TwoFactorStore(db, identity=user.id))


@pytest.fixture
async def client(session_factory):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def register_and_login(client):
    async def _do(email: str = "grace@example.com", password: str = PASSWORD) -> dict:
        r = await client.post("/auth/register", json={
            "full_name": "Grace Hopper", "email": email, "password": password,
        })
        assert r.status_code == 201, r.text
        r = await client.post("/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.text
        return {"Authorization": f"Bearer {r.json()['access_token']}"}
    return _do
