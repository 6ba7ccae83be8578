from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI

from nearfield.clues import ClueInbox
from nearfield.config import create_engine, get_config
from nearfield.routes import router

load_dotenv(Path(__file__).parent.parent / ".env")


def create_app(config: dict[str, Any] | None = None) -> FastAPI:
    resolved = config or get_config()
    inbox = ClueInbox()

    app = FastAPI(title="Near-Field Engine")
    app.state.config = resolved
    app.state.clue_inbox = inbox
    app.state.engine = create_engine(resolved, clue_sink=inbox)
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (uses NEARFIELD_CONFIG / env vars)
app = create_app()
