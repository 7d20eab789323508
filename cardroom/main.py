import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cardroom.api.routes import router as api_router
from cardroom.core.config import get_settings
from cardroom.core.errors import ExternalProviderError, GameError
from cardroom.core.log import configure_logging
from cardroom.db.base import Base
from cardroom.db.session import SessionLocal, engine
from cardroom.realtime.socket_server import build_socket_app
from cardroom.services.deadline_sweeper import DeadlineSweeper
from cardroom.services.game_session import game_session

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger("cardroom.app")

api_app = FastAPI(title=settings.app_name, debug=settings.debug)
api_app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
api_app.include_router(api_router, prefix=settings.api_prefix)

deadline_sweeper = DeadlineSweeper(
    game_session,
    SessionLocal,
    interval_seconds=settings.deadline_sweep_interval_seconds,
)


@api_app.exception_handler(GameError)
async def game_error_handler(_request: Request, exc: GameError) -> JSONResponse:
    headers = {}
    if isinstance(exc, ExternalProviderError) and exc.retryable:
        headers["Retry-After"] = "1"
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code},
        headers=headers,
    )


@api_app.on_event("startup")
async def on_startup() -> None:
    Base.metadata.create_all(bind=engine)
    if settings.deadline_sweep_enabled:
        deadline_sweeper.start()
        logger.info("Deadline sweeper running every %ss", settings.deadline_sweep_interval_seconds)


@api_app.on_event("shutdown")
async def on_shutdown() -> None:
    await deadline_sweeper.stop()


app = build_socket_app(api_app)
