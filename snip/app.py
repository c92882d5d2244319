import logging
import os
from logging.handlers import TimedRotatingFileHandler

import asyncpg
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from redis.asyncio import Redis

from snip.cache import MemoryBackend, RecordCache
from snip.controller import router, validation_error_handler
from snip.repository import URLRepository, createSchema
from snip.services import ResolutionService

DATABASE_URL = os.getenv("DATABASE_URL")
REDIS_URL = os.getenv("REDIS_URL")
LOG_FILE = os.getenv("LOG_FILE", "logs/app.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
DB_POOL_MIN_SIZE = int(os.getenv("DB_POOL_MIN_SIZE", 5))
DB_POOL_MAX_SIZE = int(os.getenv("DB_POOL_MAX_SIZE", 20))

# Logging
os.makedirs(os.path.dirname(LOG_FILE) or ".", exist_ok=True)
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(levelname)s - %(asctime)s - %(message)s",
    handlers=[
        logging.StreamHandler(),
        TimedRotatingFileHandler(
            filename=LOG_FILE,
            when="W0",
            interval=1,
            backupCount=4,
            encoding="utf-8",
        ),
    ],
)
logger = logging.getLogger(__name__)

# Set up app
app = FastAPI(title="Snip - URL Shortener")
app.include_router(router)
app.add_exception_handler(RequestValidationError, validation_error_handler)


# App lifecycle
@app.on_event("startup")
async def startup_event():
    app.state.db_pool = await asyncpg.create_pool(
        DATABASE_URL, min_size=DB_POOL_MIN_SIZE, max_size=DB_POOL_MAX_SIZE
    )
    await createSchema(app.state.db_pool)

    if REDIS_URL:
        app.state.redis = Redis.from_url(
            REDIS_URL, encoding="utf-8", decode_responses=True
        )
        backend = app.state.redis
    else:
        app.state.redis = None
        backend = MemoryBackend()
        logger.warning("REDIS_URL not set, using in-process cache")

    app.state.service = ResolutionService(
        repository=URLRepository(app.state.db_pool),
        cache=RecordCache(backend),
    )
    await app.state.service.start()
    logger.info("Application started, postgres database and cache initialized")


@app.on_event("shutdown")
async def shutdown_event():
    await app.state.db_pool.close()
    if app.state.redis is not None:
        await app.state.redis.aclose()
    logger.info("Application shut down, postgres database and redis connections closed")
