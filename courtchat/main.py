import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from courtchat.api.v1.router import router as v1_router
from courtchat.config import settings
from courtchat.core.exception_handlers import register_exception_handlers
from courtchat.database import async_session_maker, check_db_connection
from courtchat.realtime.gateway import ChatGateway
from courtchat.realtime.gateway import router as realtime_router
from courtchat.realtime.hub import RealtimeHub

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Database tables are managed by Alembic migrations
    # Run: alembic upgrade head
    if await check_db_connection():
        logger.info("Database connection successful")
    else:
        logger.warning("Database connection failed - ensure database is running")
    yield


app = FastAPI(
    title=settings.APP_NAME,
    lifespan=lifespan,
)

# One hub per process; the gateway and REST handlers publish through it
hub = RealtimeHub()
app.state.hub = hub
app.state.gateway = ChatGateway(hub, async_session_maker)

register_exception_handlers(app)

# Parse CORS origins from settings
cors_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(v1_router, prefix="/api/v1")
app.include_router(realtime_router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
