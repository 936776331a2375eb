import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shared.config import get_settings
from shared.database import create_all
from shared.logging_config import configure_logging

from .db import engine
from .exceptions import EngineError
from .publisher import notifier, publisher
from .routes import router

logger = logging.getLogger(__name__)

app = FastAPI(title="Booking Service")
app.include_router(router)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/health")
async def health():
    return {"status": "ok", "service": get_settings().service_name}


@app.on_event("startup")
async def startup():
    settings = get_settings()
    configure_logging(settings.log_level, settings.service_name)
    await create_all(engine())
    try:
        await publisher().connect()
    except Exception:
        logger.exception("could not connect to RabbitMQ; admin broadcasts will retry on publish")


@app.on_event("shutdown")
async def shutdown():
    await notifier().drain()
    try:
        await publisher().close()
    except Exception:
        logger.exception("error closing RabbitMQ connection")
