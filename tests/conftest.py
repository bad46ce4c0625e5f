"""
Pytest configuration: in-memory SQLite instead of PostgreSQL, a recording
room manager instead of live sockets and a captured OTP outbox instead of SMTP.
"""
from dataclasses import dataclass, field
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from fastapi import WebSocketDisconnect
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from parley.database import get_db
from parley.main import app
from parley.models.base import Base
from parley.models.user import User
from parley.services.auth import create_access_token
from parley.services.notifier import Notifier, get_notifier
from parley.websocket.manager import RoomManager

# In-memory SQLite as PostgreSQL stand-in
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

# OTPs "sent" during a test, keyed by email
SENT_OTPS: dict[str, str] = {}

# Password reset mails "sent" during a test, keyed by email
SENT_RESETS: dict[str, dict] = {}


@dataclass
class RecordingRoomManager(RoomManager):
    """RoomManager that remembers every publish, joined or not."""

    published: list = field(default_factory=list)

    async def publish(self, room, event, payload, exclude_session=None):
        self.published.append((room, event, payload))
        await super().publish(room, event, payload, exclude_session)

    def events(self, event: str) -> list:
        return [(room, payload) for room, name, payload in self.published if name == event]


class FakeSocket:
    """Stand-in for a Starlette WebSocket fed from a list of frames.

    A frame that is an exception instance is raised by ``receive_json``.
    """

    def __init__(self, frames=None, fail=False):
        self.frames = list(frames or [])
        self.sent = []
        self.accepted = False
        self.closed_with = None
        self.fail = fail

    async def accept(self):
        self.accepted = True

    async def close(self, code=1000, reason=None):
        self.closed_with = code

    async def receive_json(self):
        if not self.frames:
            raise WebSocketDisconnect(code=1000)
        frame = self.frames.pop(0)
        if isinstance(frame, Exception):
            raise frame
        return frame

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def events(self, event: str) -> list:
        return [frame["data"] for frame in self.sent if frame["event"] == event]


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def rooms():
    return RecordingRoomManager()


@pytest.fixture
def notifier(rooms):
    return Notifier(rooms)


@pytest.fixture(autouse=True)
def otp_outbox(monkeypatch):
    """Capture registration OTPs instead of sending e-mails."""
    SENT_OTPS.clear()

    async def capture(to_email, otp, expires_at):
        SENT_OTPS[to_email] = otp

    mock = AsyncMock(side_effect=capture)
    monkeypatch.setattr("parley.api.auth.send_otp_email", mock)
    return mock


@pytest.fixture(autouse=True)
def reset_outbox(monkeypatch):
    """Capture password reset mails (OTP or link) instead of sending them."""
    SENT_RESETS.clear()

    async def capture(to_email, expires_at, otp=None, link=None):
        SENT_RESETS[to_email] = {"otp": otp, "link": link}

    mock = AsyncMock(side_effect=capture)
    monkeypatch.setattr("parley.api.auth.send_password_reset_email", mock)
    return mock


@pytest_asyncio.fixture
async def client(session_maker, notifier, rooms, monkeypatch):
    """AsyncClient for the FastAPI app with overridden DB and notifier dependencies."""

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    monkeypatch.setattr(app.state, "rooms", rooms)
    monkeypatch.setattr(app.state, "notifier", notifier)
    monkeypatch.setattr(app.state, "session_factory", session_maker)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def register_user(
    client: AsyncClient,
    username: str = "testuser",
    email: str = "test@example.com",
    password: str = "Test1234!",
) -> dict:
    """Helper: runs the full OTP registration and returns the token dict."""
    resp = await client.post("/api/auth/register", json={"email": email})
    assert resp.status_code == 201, f"Register failed: {resp.text}"
    otp_token = resp.json()["otp_token"]

    resp = await client.post(
        "/api/auth/register/verify",
        json={"email": email, "otp": SENT_OTPS[email]},
        headers={"X-OTP-Token": otp_token},
    )
    assert resp.status_code == 200, f"Verify failed: {resp.text}"
    info_token = resp.json()["info_token"]

    resp = await client.post(
        "/api/auth/register/complete",
        json={"username": username, "password": password},
        headers={"X-Info-Token": info_token},
    )
    assert resp.status_code == 200, f"Complete failed: {resp.text}"
    return resp.json()


async def create_user(db, username: str, verified: bool = True) -> User:
    """Helper: inserts a user directly, skipping the OTP flow and bcrypt."""
    user = User(username=username, email=f"{username}@example.com", is_verified=verified)
    db.add(user)
    await db.commit()
    return user


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def user_headers(user: User) -> dict:
    return auth_headers(create_access_token(user.id))
