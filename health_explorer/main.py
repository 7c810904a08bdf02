import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from health_explorer.api import chat, profile, sessions
from health_explorer.config import get_settings
from health_explorer.db.session import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield


settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.include_router(chat.router)
app.include_router(sessions.router)
app.include_router(profile.router)
