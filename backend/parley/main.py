"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager
import logging
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text

from parley.config import get_settings
from parley.db.session import SessionLocal
from parley.dependencies import build_attachment_store, build_chat_runtime
from parley.routers import attachments, chat, conversations, messages

logger = logging.getLogger(__name__)

settings = get_settings()
Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)


def _warm_backend_state() -> None:
    """Prime the DB connection at process start."""

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Backend warm-up failed; continuing without startup pre-warm.")


@asynccontextmanager
async def lifespan(_: FastAPI):
    _warm_backend_state()
    yield


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.state.chat_runtime = build_chat_runtime(settings)
app.state.attachment_store = build_attachment_store(settings)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(conversations.router, tags=["conversations"])
app.include_router(messages.router, tags=["messages"])
app.include_router(chat.router, tags=["chat"])
app.include_router(attachments.router, tags=["attachments"])
app.mount(settings.upload_base_url, StaticFiles(directory=settings.upload_dir), name="uploads")


@app.get("/health")
def health() -> dict[str, str]:
    """Simple health check endpoint."""

    return {"status": "ok"}
