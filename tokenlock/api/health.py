# tokenlock/api/health.py
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Response

from tokenlock.config.settings import get_settings
from tokenlock.services.ledger import LedgerGateway

router = APIRouter(tags=["health"])

APP_STARTED_AT = time.time()

# swapped out in tests
ledger_factory = LedgerGateway.from_settings


def _now_meta() -> Dict[str, Any]:
    now_ts = time.time()
    now_dt = datetime.fromtimestamp(now_ts, tz=timezone.utc)
    return {
        "now_ts": now_ts,
        "now_unix": int(now_ts),
        "now_iso": now_dt.isoformat().replace("+00:00", "Z"),
        "uptime_s": int(now_ts - APP_STARTED_AT),
    }


# ----------------------------
# checks
# ----------------------------
async def _check_rpc() -> Dict[str, Any]:
    t0 = time.time()
    s = get_settings()
    try:
        async with ledger_factory(s) as ledger:
            connected = await ledger.is_connected()
        out: Dict[str, Any] = {
            "ok": bool(connected),
            "rpc_url": s.RPC_URL,
            "latency_ms": int((time.time() - t0) * 1000),
        }
        if not connected:
            out["error"] = "rpc node did not answer getHealth"
        return out
    except Exception as e:
        return {
            "ok": False,
            "rpc_url": s.RPC_URL,
            "latency_ms": int((time.time() - t0) * 1000),
            "error": str(e),
        }


async def build_ready_payload() -> Dict[str, Any]:
    return {
        "status": "ok",
        **_now_meta(),
        "checks": {
            "rpc": await _check_rpc(),
        },
    }


# ----------------------------
# Endpoints
# ----------------------------
@router.get("/live")
async def live():
    return {"status": "ok"}


@router.get("/ready")
async def ready(response: Response):
    payload = await build_ready_payload()
    checks = payload["checks"]

    degraded_reasons = []
    if not checks["rpc"].get("ok", False):
        degraded_reasons.append("rpc_unreachable")

    if degraded_reasons:
        payload["status"] = "degraded"
        payload["degraded"] = True
        payload["degraded_reasons"] = degraded_reasons
        response.status_code = 503
    else:
        payload["degraded"] = False
        payload["degraded_reasons"] = []

    return payload
