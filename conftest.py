"""
Fixtures communes des tests TEMIS
Base SQLite en mémoire, bus de notifications et flux temps réel isolés par test
"""
import os

# La configuration est lue à l'import du paquet temis
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.setdefault("SECRET_KEY", "cle-secrete-de-test-suffisamment-longue-0123456789")
os.environ["ORS_API_KEY"] = ""
os.environ["AI_RESPONSE_WEBHOOK_URL"] = ""
os.environ["CHATBOT_WEBHOOK_URL"] = ""

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from temis.api import model  # noqa: F401  (enregistre les tables)
from temis.api.model import Utilisateur
from temis.api.router import get_notification_bus, get_realtime_hub
from temis.api.security import create_access_token, hash_password
from temis.main import app
from temis.util.db.database import Base, get_async_db
from temis.util.db.realtime import RealtimeHub
from temis.util.notification.bus import NotificationBus


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def bus():
    bus = NotificationBus(ttl=60)
    yield bus
    bus.close()


@pytest.fixture
def hub():
    hub = RealtimeHub()
    yield hub
    hub.close()


async def _creer_utilisateur(session_factory, email: str, nom: str) -> Utilisateur:
    async with session_factory() as session:
        user = Utilisateur(email=email, nom=nom, prenom="Test", password=hash_password("motdepasse123"), actif=True)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


@pytest.fixture
async def user_a(session_factory):
    return await _creer_utilisateur(session_factory, "alice@temis.test", "Alice")


@pytest.fixture
async def user_b(session_factory):
    return await _creer_utilisateur(session_factory, "bruno@temis.test", "Bruno")


def _entetes(user: Utilisateur) -> dict:
    token = create_access_token(data={"sub": user.email, "user_id": user.id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_a(user_a):
    return _entetes(user_a)


@pytest.fixture
def headers_b(user_b):
    return _entetes(user_b)


@pytest.fixture
async def client(session_factory, bus, hub):
    async def override_get_async_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = override_get_async_db
    app.dependency_overrides[get_notification_bus] = lambda: bus
    app.dependency_overrides[get_realtime_hub] = lambda: hub

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
