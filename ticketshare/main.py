import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ticketshare.api.v1.router import router as v1_router
from ticketshare.core.telemetry import setup_telemetry
from ticketshare.services.notifications import NotificationEmitter

log = logging.getLogger(__name__)

app = FastAPI(title="Ticketshare API", version="0.1.0")
app.state.notifier = NotificationEmitter()


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    log.warning("integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(status_code=409, content={"detail": "Conflict"})


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    log.exception("store failure on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


setup_telemetry(app)
app.include_router(v1_router)
