"""Pytest configuration and fixtures for charmhost tests."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from charmhost.config import AppConfig
from charmhost.directory import ActorDirectory
from charmhost.models import ActorFile, Base, Charm, build_engine
from charmhost.relationships import RelationshipIndex
from charmhost.security import generate_rsa_keypair
from charmhost.tokens import TokenAuthority
from charmhost.visibility import VisibilityGate

HOSTNAME = "test.charmhost.social"
BASE_URL = "https://test.charmhost.social"
PASSWORD = "correct horse battery staple"


@pytest.fixture
def config() -> AppConfig:
    """Create test configuration."""
    return AppConfig(
        instance={"hostname": HOSTNAME, "base_url": BASE_URL},
        federation={"fetch_timeout_seconds": 2},
        security={"bcrypt_rounds": 4},
        database={"url": "sqlite+aiosqlite:///:memory:"},
    )


@pytest.fixture(scope="session")
def rsa_keypair() -> tuple[str, str]:
    """One key pair shared by every test actor."""
    return generate_rsa_keypair()


@pytest.fixture(autouse=True)
def reuse_rsa_keypair(monkeypatch, rsa_keypair):
    """Skip per-actor RSA generation."""
    monkeypatch.setattr("charmhost.directory.generate_rsa_keypair", lambda: rsa_keypair)


@pytest_asyncio.fixture
async def session_maker():
    """Create in-memory database session maker for tests."""
    engine = build_engine("sqlite+aiosqlite:///:memory:")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    maker = async_sessionmaker(engine, expire_on_commit=False)
    yield maker

    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_maker) -> AsyncSession:
    """Create database session for tests."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def directory() -> ActorDirectory:
    return ActorDirectory(hostname=HOSTNAME, base_url=BASE_URL, bcrypt_rounds=4)


@pytest.fixture
def tokens(directory) -> TokenAuthority:
    return TokenAuthority(directory)


@pytest.fixture
def relationships() -> RelationshipIndex:
    return RelationshipIndex()


@pytest.fixture
def gate() -> VisibilityGate:
    return VisibilityGate()


@pytest.fixture
def make_actor(session, directory):
    """Factory creating verified actors."""

    async def _make(handle: str, **kwargs):
        actor = await directory.create_actor(session, handle, PASSWORD, **kwargs)
        return await directory.verify_email(session, actor.email_token)

    return _make


@pytest.fixture
def add_charm(session):
    """Factory inserting charms with increasing timestamps."""
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    counter = {"n": 0}

    async def _add(owner, text: str) -> Charm:
        counter["n"] += 1
        charm = Charm(
            id=f"charm-{counter['n']}",
            owner_id=owner.id,
            text=text,
            created_at=start + timedelta(minutes=counter["n"]),
        )
        session.add(charm)
        await session.commit()
        return charm

    return _add


@pytest.fixture
def add_file(session):
    """Factory inserting file records."""
    counter = {"n": 0}

    async def _add(owner, file_name: str, is_private: bool = False) -> ActorFile:
        counter["n"] += 1
        record = ActorFile(
            id=f"file-{counter['n']}",
            owner_id=owner.id,
            file_name=file_name,
            file_path=f"files/{owner.handle}/{file_name}",
            is_private=is_private,
        )
        session.add(record)
        await session.commit()
        return record

    return _add
