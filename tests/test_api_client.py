"""Tests for esg_client.api_client -- endpoint shapes and error mapping."""

import httpx
import pytest

from esg_client.api_client import ApiError, GameApiClient, NETWORK_ERROR_STATUS
from esg_client.models import ProgressReport

from conftest import API_BASE


def _client_for(handler) -> GameApiClient:
    return GameApiClient(base_url=API_BASE, transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Happy paths against the fake backend
# ---------------------------------------------------------------------------


class TestEndpoints:

    async def test_get_game_state(self, backend, api):
        backend.set_state(4, "trading", time_remaining=120000)
        snapshot = await api.get_game_state()
        assert snapshot.current_round == 4
        assert snapshot.phase == "trading"
        assert snapshot.time_remaining == 120000
        assert snapshot.is_active is True
        assert snapshot.can_trade is True

    async def test_get_team_progress(self, backend, api):
        backend.progress[(7, 2)] = {"hasSeenNews": True, "hasAnsweredQuiz": False}
        flags = await api.get_team_progress(7, 2)
        assert flags.has_seen_news is True
        assert flags.has_answered_quiz is False

    async def test_report_progress_body(self, backend, api):
        await api.report_progress(7, ProgressReport(round_number=3, type="quiz"))
        assert backend.reports == [
            {"teamId": 7, "roundNumber": 3, "type": "quiz", "completed": True}
        ]

    async def test_login(self, api):
        team = await api.login("ECO1")
        assert team.id == 7
        assert team.name == "Green Owls"

    async def test_login_rejected(self, api):
        with pytest.raises(ApiError) as exc_info:
            await api.login("NOPE")
        assert exc_info.value.status == 401

    async def test_health_check_uses_root_url(self, api):
        data = await api.health_check()
        assert data["status"] == "OK"

    async def test_server_error_raises(self, backend, api):
        backend.fail_state = True
        with pytest.raises(ApiError) as exc_info:
            await api.get_game_state()
        assert exc_info.value.status == 503
        assert not exc_info.value.is_network_error


# ---------------------------------------------------------------------------
# Payload handling
# ---------------------------------------------------------------------------


class TestPayloads:

    async def test_unknown_phase_is_preserved(self):
        client = _client_for(lambda request: httpx.Response(200, json={
            "currentRound": 2, "phase": "intermission", "timeRemaining": 5, "isActive": True,
        }))
        try:
            snapshot = await client.get_game_state()
        finally:
            await client.aclose()
        assert snapshot.phase == "intermission"

    async def test_negative_time_is_clamped(self):
        client = _client_for(lambda request: httpx.Response(200, json={
            "currentRound": 2, "phase": "quiz", "timeRemaining": -800, "isActive": True,
        }))
        try:
            snapshot = await client.get_game_state()
        finally:
            await client.aclose()
        assert snapshot.time_remaining == 0

    async def test_null_progress_fields_mean_false(self):
        client = _client_for(lambda request: httpx.Response(
            200, json={"hasSeenNews": None, "hasAnsweredQuiz": True}))
        try:
            flags = await client.get_team_progress(1, 1)
        finally:
            await client.aclose()
        assert flags.has_seen_news is False
        assert flags.has_answered_quiz is True

    async def test_malformed_state_raises_api_error(self):
        client = _client_for(lambda request: httpx.Response(200, json={"currentRound": "soon"}))
        try:
            with pytest.raises(ApiError, match="Malformed game state"):
                await client.get_game_state()
        finally:
            await client.aclose()

    @pytest.mark.parametrize("raw_time", ["1e400", "[]", "{}"])
    async def test_unusable_time_remaining_raises_api_error(self, raw_time):
        body = ('{"currentRound": 2, "phase": "quiz", "timeRemaining": %s, "isActive": true}'
                % raw_time)
        client = _client_for(lambda request: httpx.Response(200, content=body.encode()))
        try:
            with pytest.raises(ApiError, match="Malformed game state"):
                await client.get_game_state()
        finally:
            await client.aclose()

    async def test_non_object_progress_raises_api_error(self):
        client = _client_for(lambda request: httpx.Response(200, json=[True, False]))
        try:
            with pytest.raises(ApiError, match="Malformed team progress"):
                await client.get_team_progress(1, 1)
        finally:
            await client.aclose()

    async def test_invalid_json_raises_api_error(self):
        client = _client_for(lambda request: httpx.Response(200, text="<html>"))
        try:
            with pytest.raises(ApiError, match="Invalid JSON"):
                await client.get_game_state()
        finally:
            await client.aclose()

    async def test_error_message_taken_from_body(self):
        client = _client_for(lambda request: httpx.Response(
            409, json={"message": "Game not in trading phase"}))
        try:
            with pytest.raises(ApiError, match="Game not in trading phase") as exc_info:
                await client.get_game_state()
        finally:
            await client.aclose()
        assert exc_info.value.status == 409


# ---------------------------------------------------------------------------
# Transport failures
# ---------------------------------------------------------------------------


class TestTransportFailures:

    async def test_connect_error_is_network_error(self):
        def _refuse(request):
            raise httpx.ConnectError("refused", request=request)

        client = _client_for(_refuse)
        try:
            with pytest.raises(ApiError) as exc_info:
                await client.get_game_state()
        finally:
            await client.aclose()
        assert exc_info.value.status == NETWORK_ERROR_STATUS
        assert exc_info.value.is_network_error

    async def test_timeout_is_network_error(self):
        def _slow(request):
            raise httpx.ReadTimeout("too slow", request=request)

        client = _client_for(_slow)
        try:
            with pytest.raises(ApiError, match="timed out") as exc_info:
                await client.get_team_progress(1, 2)
        finally:
            await client.aclose()
        assert exc_info.value.is_network_error

    async def test_requests_use_bounded_timeout(self):
        seen = {}

        def _capture(request):
            seen["timeout"] = request.extensions.get("timeout")
            return httpx.Response(200, json={})

        client = GameApiClient(base_url=API_BASE, timeout=2.5,
                               transport=httpx.MockTransport(_capture))
        try:
            await client.get_game_state()
        finally:
            await client.aclose()
        assert seen["timeout"]["read"] == 2.5
