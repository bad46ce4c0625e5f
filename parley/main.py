import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from parley.api import auth, conversations, messages, profile, users
from parley.config import settings
from parley.database import async_session, engine
from parley.errors import register_error_handlers
from parley.models.base import Base
from parley.services.notifier import Notifier
from parley.websocket.handlers import websocket_endpoint
from parley.websocket.manager import RoomManager

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables on startup
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


app = FastAPI(
    title="Parley",
    description="Conversation and messaging API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Real-time delivery
app.state.rooms = RoomManager()
app.state.notifier = Notifier(app.state.rooms)
app.state.session_factory = async_session

# REST API routes
app.include_router(auth.router)
app.include_router(profile.router)
app.include_router(users.router)
app.include_router(messages.router)
app.include_router(conversations.router)

# WebSocket
app.websocket("/ws")(websocket_endpoint)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "parley"}
