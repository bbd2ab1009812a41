"""FastAPI application entry point for the chat API."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes.chat import router as chat_router
from app.api.routes.functions import FUNCTIONS_PREFIX, router as functions_router
from app.config import settings
from app.core.errors import ChatAppError
from app.database import init_db

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


class RouteOwnedPreflightCORS(CORSMiddleware):
    """
    CORSMiddleware that leaves some path prefixes alone.

    Function endpoints set their own CORS headers and answer OPTIONS with an
    empty body, which the stock middleware would replace with "OK".
    """

    def __init__(self, app, exclude_prefixes: tuple[str, ...] = (), **kwargs):
        super().__init__(app, **kwargs)
        self.exclude_prefixes = exclude_prefixes

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope["path"].startswith(self.exclude_prefixes):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup."""
    init_db()
    logger.info("Database initialized")
    yield


app = FastAPI(
    title=settings.APP_TITLE,
    description="Chat threads with an LLM assistant, metered by a daily tiered quota",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    RouteOwnedPreflightCORS,
    exclude_prefixes=(FUNCTIONS_PREFIX,),
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


app.include_router(chat_router)
app.include_router(functions_router)


@app.exception_handler(ChatAppError)
async def chat_app_exception_handler(request: Request, exc: ChatAppError):
    """Errors that escaped a route keep their status; details stay in the log."""
    logger.error("Unhandled %s: %s (%s)", type(exc).__name__, exc.message, exc.details)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Hide internal error details from clients."""
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )
