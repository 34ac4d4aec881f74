from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import get_settings, load_env_files
from ..core.errors import (
    EditBlockedError,
    G2AError,
    LlmError,
    NotFoundError,
    OverlapError,
    StaleRunError,
    SuggestionParseError,
    ValidationError,
)
from .routers import anchors, diagnostics, health, knowledge, links, suggestions

logger = logging.getLogger(__name__)


class DiagnosticsPollFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # the editor polls diagnostics every few seconds
        return "/api/diagnostics/" not in record.getMessage()


logging.getLogger("uvicorn.access").addFilter(DiagnosticsPollFilter())

load_env_files()
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (OverlapError, 409),
    (StaleRunError, 409),
    (ValidationError, 400),
    (SuggestionParseError, 502),
    (LlmError, 502),
    (EditBlockedError, 409),
)

app = FastAPI(title="G2A Anchor & Linkage Engine", version=__version__)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(G2AError)
async def domain_error_handler(request: Request, exc: G2AError) -> JSONResponse:
    status_code = next((code for kind, code in _STATUS_BY_ERROR if isinstance(exc, kind)), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected (%d): %s", request.method, request.url.path, status_code, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": exc.__class__.__name__})


app.include_router(health.router)
app.include_router(anchors.router)
app.include_router(links.router)
app.include_router(suggestions.router)
app.include_router(knowledge.router)
app.include_router(diagnostics.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("g2a.api.main:app", host=settings.api_host, port=settings.api_port, reload=False)
