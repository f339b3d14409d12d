from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routers import ask, files, health
from room_doc_chat.app_context import AppContext
from room_doc_chat.logger import GLOBAL_LOGGER as log
from room_doc_chat.utils.config_loader import AppConfig


def create_app(
    config: Optional[AppConfig] = None, context: Optional[AppContext] = None
) -> FastAPI:
    """
    Build the HTTP application.

    A prebuilt AppContext (tests inject fakes this way) wins over a config;
    with neither, the config is read from YAML and model providers are loaded
    from the environment.
    """

    # Use lifespan instead of deprecated on_event
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("Application startup initiated")
        ctx = context or AppContext.build(config or AppConfig.from_yaml())
        await ctx.startup()
        app.state.ctx = ctx
        yield
        await ctx.shutdown()
        log.info("Application shutdown")

    app = FastAPI(title="Room Document Chat Backend", version="1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Router Registration
    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(ask.router, tags=["ask"])
    app.include_router(files.router, tags=["files"])

    @app.get("/")
    async def root():
        return {"message": "Backend is running"}

    return app


app = create_app()
