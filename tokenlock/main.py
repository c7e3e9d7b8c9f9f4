# tokenlock/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI

from tokenlock.api.health import router as health_router
from tokenlock.api.pools import router as pools_router
from tokenlock.config.settings import get_settings


app = FastAPI(title="Token Lock Client API")

# Routers
app.include_router(health_router)
app.include_router(pools_router)


@app.get("/")
def root() -> dict[str, str]:
    return {"message": "token lock client"}


@app.on_event("startup")
async def on_startup() -> None:
    logging.basicConfig(
        level=get_settings().LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s | %(message)s",
    )
