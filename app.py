import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from connections import connection_manager
from constants import CORS_ORIGINS, LOG_FILE, LOG_LEVEL, ROOM_SWEEP_INTERVAL_SECONDS
from errors import PersistenceError
from logging_config import get_logger, setup_logging
from registry import room_registry
from relay import relay
from routers.conversations import conversations_router
from routers.rooms import rooms_router
from routers.ws import ws_router

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def sweep_empty_rooms():
    """Drop emptied rooms from the registry along with their broadcast groups."""
    swept = room_registry.sweep_empty()
    for room_id in swept:
        connection_manager.drop_room(room_id)
    return swept


async def sweep_empty_rooms_periodically(interval: float):
    logger.info(f"Starting empty room sweeper (interval: {interval}s)")
    try:
        while True:
            await asyncio.sleep(interval)
            sweep_empty_rooms()
    except asyncio.CancelledError:
        logger.info("Empty room sweeper cancelled")
        raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await relay.store.ping()
        logger.info("Conversation store reachable")
    except PersistenceError:
        # Signaling keeps working without the store; chat sends report internal errors
        logger.error("Conversation store unreachable at startup, chat persistence will fail until it recovers")

    sweeper = asyncio.create_task(sweep_empty_rooms_periodically(ROOM_SWEEP_INTERVAL_SECONDS))
    try:
        yield
    finally:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        await relay.store.close()
        logger.info("Application shut down")


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ws_router)
app.include_router(rooms_router)
app.include_router(conversations_router)

logger.info("FastAPI application initialized")


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "rooms": len(room_registry),
        "connections": len(connection_manager),
    }
