"""Worldtree API application.

Run with `python -m uvicorn worldtree.main:app`, or `worldtree-admin serve`.
"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .errors import WorldtreeError
from .middleware import AuthMiddleware
from .routes.auth import router as auth_router
from .routes.locations import router as locations_router
from .routes.people import router as people_router
from .routes.worlds import router as worlds_router

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = logging.getLogger(__name__)

app = FastAPI(title="Worldtree API", version="0.1.0")

app.add_middleware(AuthMiddleware)

app.include_router(auth_router)
app.include_router(worlds_router)
app.include_router(people_router)
app.include_router(locations_router)


@app.exception_handler(WorldtreeError)
async def _worldtree_error(request: Request, exc: WorldtreeError) -> JSONResponse:
    return JSONResponse({"detail": exc.message}, status_code=exc.status_code)


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    log.exception("%s %s failed", request.method, request.url.path)
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


@app.get("/health")
def health() -> dict[str, str]:
    return {"ok": "true"}
