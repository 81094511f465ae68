"""Async HTTP client for the ESG game backend.

Thin wrapper over ``httpx.AsyncClient``: one method per endpoint, responses
validated into the models in :mod:`esg_client.models`.  Every failure --
transport error, timeout, non-2xx status, undecodable or malformed body --
is raised as :class:`ApiError` so callers only need one ``except`` clause.
"""

import logging

import httpx
from pydantic import ValidationError

from .config import ESG_API_URL, REQUEST_TIMEOUT
from .models import GameSnapshot, LoginResponse, ProgressFlags, ProgressReport, Team

logger = logging.getLogger(__name__)

NETWORK_ERROR_STATUS = 0


class ApiError(Exception):
    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message

    @property
    def is_network_error(self) -> bool:
        return self.status == NETWORK_ERROR_STATUS

    def __repr__(self) -> str:
        return f"ApiError(status={self.status}, message={self.message!r})"


def _root_url(base_url: str) -> str:
    """The backend's root (``/health`` lives outside the ``/api`` prefix)."""
    if base_url.endswith("/api"):
        return base_url[: -len("/api")]
    return base_url


class GameApiClient:
    def __init__(
        self,
        base_url: str = ESG_API_URL,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs):
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ApiError(NETWORK_ERROR_STATUS, f"Request timed out: {method} {url}") from e
        except httpx.HTTPError as e:
            raise ApiError(NETWORK_ERROR_STATUS, f"Network error: {e}") from e

        if response.is_error:
            message = f"HTTP {response.status_code}: {response.reason_phrase}"
            try:
                body = response.json()
                if isinstance(body, dict) and body.get("message"):
                    message = str(body["message"])
            except ValueError:
                pass
            raise ApiError(response.status_code, message)

        try:
            return response.json()
        except ValueError as e:
            raise ApiError(response.status_code, f"Invalid JSON from {url}") from e

    async def _api(self, method: str, endpoint: str, **kwargs):
        return await self._request(method, f"{self.base_url}{endpoint}", **kwargs)

    # ------------------------------------------------------------------
    # Game state
    # ------------------------------------------------------------------

    async def get_game_state(self) -> GameSnapshot:
        data = await self._api("GET", "/game/state")
        try:
            return GameSnapshot.model_validate(data)
        except ValidationError as e:
            raise ApiError(200, f"Malformed game state: {e.error_count()} error(s)") from e

    # ------------------------------------------------------------------
    # Team progress
    # ------------------------------------------------------------------

    async def get_team_progress(self, team_id: int, round_number: int) -> ProgressFlags:
        data = await self._api("GET", f"/teams/{team_id}/progress/{round_number}")
        try:
            return ProgressFlags.model_validate(data)
        except ValidationError as e:
            raise ApiError(200, f"Malformed team progress: {e.error_count()} error(s)") from e

    async def report_progress(self, team_id: int, report: ProgressReport) -> None:
        await self._api(
            "POST",
            f"/teams/{team_id}/progress",
            json=report.model_dump(by_alias=True),
        )

    # ------------------------------------------------------------------
    # Auth / health
    # ------------------------------------------------------------------

    async def login(self, team_code: str) -> Team:
        data = await self._api("POST", "/auth/login", json={"teamCode": team_code})
        try:
            return LoginResponse.model_validate(data).team
        except ValidationError as e:
            raise ApiError(200, "Malformed login response") from e

    async def health_check(self) -> dict:
        data = await self._request("GET", f"{_root_url(self.base_url)}/health")
        return data if isinstance(data, dict) else {"status": data}
