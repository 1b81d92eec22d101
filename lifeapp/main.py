from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from lifeapp.db_init import init_db
from lifeapp.routes import calendar, connections, media, people, spotify, todos, tracking, youtube


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg") or "Invalid value"
    return f"{location}: {message}" if location else message


def create_app() -> FastAPI:
    logging.basicConfig(
        level=os.getenv("BACKEND_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    app = FastAPI(title="Life App API", version="0.1.0")

    app.include_router(media.router)
    app.include_router(people.router)
    app.include_router(todos.router)
    app.include_router(tracking.router)
    app.include_router(connections.router)
    app.include_router(spotify.router)
    app.include_router(youtube.router)
    app.include_router(calendar.router)

    @app.on_event("startup")
    async def _startup():
        await init_db()

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logging.getLogger("lifeapp").exception("Unhandled exception: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Internal error"})

    @app.get("/health")
    async def health():
        return {"ok": True}

    return app


app = create_app()
