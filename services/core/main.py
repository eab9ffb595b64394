import asyncio

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from api.endpoints.board import router as board_router
from api.endpoints.conversation import router as conversation_router
from api.endpoints.goals import router as goals_router
from api.endpoints.rewards import router as rewards_router
from api.endpoints.wallets import router as wallets_router
from api.middleware import LoggingMiddleware, add_cors_middleware, register_exception_handlers
from config import LOG_FILE, LOG_JSON, LOG_LEVEL
from database import create_all, engine
from logging_config import get_logger, setup_logging

setup_logging(LOG_LEVEL, LOG_FILE, LOG_JSON)
logger = get_logger(__name__)

app = FastAPI(title="Goal Forge Core")

add_cors_middleware(app)
app.add_middleware(LoggingMiddleware)
register_exception_handlers(app)

app.include_router(conversation_router)
app.include_router(board_router)
app.include_router(wallets_router)
app.include_router(rewards_router)
app.include_router(goals_router)


async def wait_for_db(attempts: int = 30):
    logger.info("database_connecting")
    for attempt in range(1, attempts + 1):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("database_connected", attempt=attempt)
            return
        except (OSError, SQLAlchemyError) as e:
            logger.warning("database_unavailable", attempt=attempt, error=str(e))
            await asyncio.sleep(2)
    raise RuntimeError("Database did not become available")


@app.on_event("startup")
async def startup():
    await wait_for_db()
    await create_all()
    logger.info("system_online")


@app.get("/health")
async def health():
    return {"status": "ok"}
