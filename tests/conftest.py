"""Shared fixtures for the ESG game client test suite."""

import sys
from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi import FastAPI, HTTPException
from httpx import ASGITransport, AsyncClient

# Ensure the project root is on sys.path so 'esg_client' package resolves
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from esg_client.api_client import GameApiClient  # noqa: E402
from esg_client.local_cache import LocalCache  # noqa: E402
from esg_client.models import Team  # noqa: E402
from esg_client.reconciler import GamePhaseReconciler  # noqa: E402

API_BASE = "http://testserver/api"


# ---------------------------------------------------------------------------
# Fake game backend
# ---------------------------------------------------------------------------

class FakeGameBackend:
    """In-process stand-in for the game server.

    Tests mutate ``state``/``progress`` directly and flip the ``fail_*``
    switches to make an endpoint answer 503.
    """

    def __init__(self):
        self.state = {
            "currentRound": 1,
            "phase": "news",
            "timeRemaining": 30000,
            "isActive": False,
        }
        # (team_id, round) -> {"hasSeenNews": bool, "hasAnsweredQuiz": bool}
        self.progress: dict[tuple[int, int], dict] = {}
        self.reports: list[dict] = []
        self.teams = {
            "ECO1": {"id": 7, "code": "ECO1", "name": "Green Owls",
                     "balance": 100000, "esgScore": 0, "quizScore": 0},
        }
        self.fail_state = False
        self.fail_progress = False
        self.fail_report = False
        self.state_requests = 0
        self.progress_requests = 0
        self.app = self._build_app()

    def set_state(self, round_number: int, phase: str, active: bool = True,
                  time_remaining: int = 25000):
        self.state = {
            "currentRound": round_number,
            "phase": phase,
            "timeRemaining": time_remaining,
            "isActive": active,
        }

    def _build_app(self) -> FastAPI:
        app = FastAPI()

        @app.get("/api/game/state")
        async def game_state():
            self.state_requests += 1
            if self.fail_state:
                raise HTTPException(status_code=503, detail="down")
            return self.state

        @app.get("/api/teams/{team_id}/progress/{round_number}")
        async def team_progress(team_id: int, round_number: int):
            self.progress_requests += 1
            if self.fail_progress:
                raise HTTPException(status_code=503, detail="down")
            return self.progress.get(
                (team_id, round_number),
                {"hasSeenNews": False, "hasAnsweredQuiz": False},
            )

        @app.post("/api/teams/{team_id}/progress")
        async def report_progress(team_id: int, payload: dict):
            if self.fail_report:
                raise HTTPException(status_code=503, detail="down")
            self.reports.append({"teamId": team_id, **payload})
            entry = self.progress.setdefault(
                (team_id, payload["roundNumber"]),
                {"hasSeenNews": False, "hasAnsweredQuiz": False},
            )
            field = "hasSeenNews" if payload["type"] == "news" else "hasAnsweredQuiz"
            entry[field] = bool(payload.get("completed"))
            return {"message": "ok"}

        @app.post("/api/auth/login")
        async def login(payload: dict):
            team = self.teams.get(payload.get("teamCode"))
            if team is None:
                raise HTTPException(status_code=401, detail="unknown team")
            return {"message": "welcome", "team": team}

        @app.get("/health")
        async def health():
            return {"status": "OK", "environment": "test"}

        return app


@pytest.fixture
def backend():
    return FakeGameBackend()


@pytest.fixture
async def api(backend):
    client = GameApiClient(base_url=API_BASE, transport=ASGITransport(app=backend.app))
    yield client
    await client.aclose()


@pytest.fixture
async def cache(tmp_path):
    store = LocalCache(tmp_path / "cache", session="test")
    yield store
    await store.flush()


@pytest.fixture
def team():
    return Team(id=7, code="ECO1", name="Green Owls", balance=100000)


@pytest.fixture
async def reconciler(api, cache):
    rec = GamePhaseReconciler(api, cache)
    yield rec
    await rec.cancel_pending_writes()


@pytest.fixture
async def team_reconciler(api, cache, team):
    cache.save_team(team)
    rec = GamePhaseReconciler(api, cache)
    yield rec
    await rec.cancel_pending_writes()


# ---------------------------------------------------------------------------
# Companion service
# ---------------------------------------------------------------------------

@pytest.fixture
def app(reconciler):
    """The companion FastAPI app wired to the fake backend.

    Startup/shutdown hooks are not run by ASGITransport, so no poller is
    started; tests drive refreshes through the endpoints.
    """
    with patch("esg_client.server._reconciler", reconciler):
        from esg_client.server import app as fastapi_app
        yield fastapi_app


@pytest.fixture
async def client(app):
    """Async HTTP client for testing the companion REST endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
