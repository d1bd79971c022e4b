"""
Shared fixtures: in-memory database, deterministic clock/random,
scripted membership checker and an HTTP client bound to the app.
"""

import hashlib
import hmac
import json
import os
import time
from collections import deque
from datetime import datetime, timedelta
from urllib.parse import urlencode

# Settings are read once at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:TEST-TOKEN")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DEV_AUTH_ENABLED", "true")
os.environ.setdefault("DEV_AUTH_ALLOWLIST", "1001,1002,1003,9001")
os.environ.setdefault("ADMIN_IDS", "9001")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tapcoin.config import EconomyConfig
from tapcoin.database import Base, get_db
from tapcoin.models import User
from tapcoin.services.economy import EconomyEngine, get_engine
from tapcoin.services.verification import MembershipStatus

BOT_TOKEN = os.environ["TELEGRAM_BOT_TOKEN"]
ADMIN_ID = 9001
START = datetime(2026, 3, 10, 12, 0, 0)


class FakeClock:
    """Mutable naive-UTC clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class ScriptedRandom:
    """Returns queued draws, then a value that never triggers a drop."""

    def __init__(self, *values: float):
        self.values = deque(values)

    def queue(self, *values: float) -> None:
        self.values.extend(values)

    def random(self) -> float:
        return self.values.popleft() if self.values else 0.999999


class FakeMembership:
    def __init__(self, status: MembershipStatus = MembershipStatus.MEMBER):
        self.status = status
        self.calls: list[tuple[str, int]] = []

    async def check(self, channel_id: str, telegram_id: int) -> MembershipStatus:
        self.calls.append((channel_id, telegram_id))
        return self.status


class FakeRedis:
    def __init__(self):
        self.data: dict[str, str] = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        return True

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0


def make_init_data(
    user: dict,
    *,
    bot_token: str = BOT_TOKEN,
    start_param: str | None = None,
    auth_date: int | None = None,
) -> str:
    """Builds Mini App initData signed the way Telegram signs it."""
    fields = {
        "auth_date": str(auth_date if auth_date is not None else int(time.time())),
        "query_id": "AAHdF6IQAAAAAN0XohDhrOrc",
        "user": json.dumps(user, separators=(",", ":")),
    }
    if start_param is not None:
        fields["start_param"] = start_param

    data_check_string = "\n".join(f"{key}={fields[key]}" for key in sorted(fields))
    secret = hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()
    fields["hash"] = hmac.new(secret, data_check_string.encode(), hashlib.sha256).hexdigest()
    return urlencode(fields)


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return ScriptedRandom()


@pytest.fixture
def membership():
    return FakeMembership()


@pytest.fixture
def config():
    return EconomyConfig(admin_ids=frozenset({ADMIN_ID}))


@pytest.fixture
def engine(config, membership, clock, rng):
    return EconomyEngine(config, membership, clock=clock, rng=rng)


@pytest.fixture
def make_user(db):
    """Inserts an account directly, bypassing session start."""

    async def _make_user(telegram_id: int, **fields) -> User:
        values = {
            "username": f"user{telegram_id}",
            "balance": 0.0,
            "click_power": 1,
            "income_per_second": 0.0,
            "bombs": 0,
            "shields": 0,
            "daily_reward_streak": 0,
            "referral_count": 0,
            "referral_earnings": 0.0,
            "is_admin": False,
            "created_at": START,
            "last_online": START,
            "upgrades": [],
        }
        values.update(fields)
        user = User(telegram_id=telegram_id, **values)
        db.add(user)
        await db.flush()
        return user

    return _make_user


@pytest.fixture
def fake_redis(monkeypatch):
    redis = FakeRedis()

    async def _get_redis():
        return redis

    monkeypatch.setattr("tapcoin.api.auth.get_redis", _get_redis)
    return redis


@pytest.fixture
async def client(session_maker, engine, fake_redis):
    from tapcoin.main import app
    from tapcoin.middleware.security import limiter

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    limiter.enabled = False
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_engine] = lambda: engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def dev_headers(telegram_id: int) -> dict:
    return {"X-Dev-User-Id": str(telegram_id)}
