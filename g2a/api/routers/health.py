from __future__ import annotations

import os

from fastapi import APIRouter

from ... import __version__

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthcheck():
    return {
        "status": "ok",
        "service": "g2a-anchor-engine",
        "version": os.getenv("APP_VERSION", __version__),
    }
