import logging

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .api_client import ApiError, GameApiClient
from .config import CACHE_DIR, POLL_INTERVAL, SESSION_NAME
from .local_cache import LocalCache
from .phases import format_time_remaining, is_urgent, phase_info, phase_progress
from .poller import GamePoller
from .reconciler import GamePhaseReconciler

logger = logging.getLogger(__name__)

app = FastAPI(title="ESG game player companion")

_api = GameApiClient()
_cache = LocalCache(CACHE_DIR, SESSION_NAME)
_reconciler = GamePhaseReconciler(_api, _cache)
_poller = GamePoller(_reconciler, POLL_INTERVAL)


@app.on_event("startup")
async def startup_event():
    _poller.start()


@app.on_event("shutdown")
async def shutdown_event():
    await _poller.stop()
    await _reconciler.flush_pending_writes()
    await _cache.flush()
    await _api.aclose()


def _next_action_payload() -> dict:
    return _reconciler.get_next_action().model_dump(by_alias=True)


# --- Health / state ---


@app.get("/api/health")
async def health_check():
    """Companion liveness plus the game backend's own health report."""
    try:
        upstream = await _reconciler.api.health_check()
    except ApiError as e:
        logger.info("Game backend health check failed: %s", e.message)
        return {"status": "ok", "upstream": "unreachable"}
    return {"status": "ok", "upstream": str(upstream.get("status", "unknown"))}


@app.get("/api/state")
async def api_state():
    snapshot = _reconciler.snapshot
    team = _reconciler.team
    return {
        "snapshot": snapshot.model_dump(by_alias=True),
        "progress": _reconciler.flags.model_dump(by_alias=True),
        "team": team.model_dump(by_alias=True) if team else None,
        "phase_info": phase_info(snapshot.phase, snapshot.is_active),
        "time_display": format_time_remaining(snapshot.time_remaining),
        "urgent": snapshot.is_active and is_urgent(snapshot.time_remaining),
        "phase_progress": phase_progress(snapshot.phase, snapshot.time_remaining),
        "can_trade": snapshot.can_trade,
        "last_refresh_ok": _reconciler.last_refresh_ok,
        "desync_count": _reconciler.desync_count,
        "last_desync_round": _reconciler.last_desync_round,
        "next_action": _next_action_payload(),
    }


@app.get("/api/next-action")
async def api_next_action():
    return _next_action_payload()


@app.post("/api/refresh")
async def api_refresh():
    await _reconciler.refresh()
    return _next_action_payload()


# --- Player progress ---


@app.post("/api/progress/news")
async def api_mark_news():
    _reconciler.mark_news_seen()
    await _reconciler.refresh()
    return _next_action_payload()


@app.post("/api/progress/quiz")
async def api_mark_quiz():
    _reconciler.mark_quiz_answered()
    await _reconciler.refresh()
    return _next_action_payload()


# --- Team identity ---


class LoginRequest(BaseModel):
    teamCode: str = Field(..., min_length=1, max_length=32)


@app.post("/api/login")
async def api_login(req: LoginRequest):
    team_code = req.teamCode.strip()
    if not team_code:
        raise HTTPException(status_code=400, detail="teamCode is required")
    try:
        team = await _reconciler.api.login(team_code)
    except ApiError as e:
        if e.is_network_error or e.status >= 500:
            logger.warning("Login failed, game backend unavailable: %s", e.message)
            raise HTTPException(status_code=502, detail="Game server unavailable")
        raise HTTPException(status_code=401, detail=e.message or "Invalid team code")
    _reconciler.update_team(team)
    await _reconciler.refresh()
    return {"team": team.model_dump(by_alias=True), "next_action": _next_action_payload()}


@app.post("/api/logout")
async def api_logout():
    _reconciler.logout()
    return {"ok": True}
