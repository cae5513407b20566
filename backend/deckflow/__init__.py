from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from deckflow.config import Settings, settings as default_settings
from deckflow.db import open_database


@asynccontextmanager
async def lifespan(app: FastAPI):
    from deckflow.services.scheduler import FsrsOracle
    from deckflow.services.session_registry import SessionRegistry

    cfg: Settings = app.state.settings
    cfg.media_dir.mkdir(parents=True, exist_ok=True)
    app.state.db = await open_database(cfg)
    app.state.sessions = SessionRegistry()
    app.state.oracle = FsrsOracle(
        desired_retention=cfg.desired_retention,
        maximum_interval=cfg.maximum_interval,
    )
    try:
        yield
    finally:
        await app.state.db.close()


def create_app(settings: Settings | None = None) -> FastAPI:
    application = FastAPI(
        title="Deckflow Backend", version="0.1.0", lifespan=lifespan
    )
    application.state.settings = settings or default_settings

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from deckflow.routers import decks, health, imports, study

    application.include_router(health.router)
    application.include_router(
        imports.router, prefix="/decks", tags=["decks"]
    )
    application.include_router(
        decks.router, prefix="/decks", tags=["decks"]
    )
    application.include_router(
        study.router, prefix="/study", tags=["study"]
    )

    return application


app = create_app()
