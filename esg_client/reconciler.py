"""Game-phase reconciliation: turns server state plus progress flags into a next step.

Two sources report whether a team has finished the current round's steps:
the server-side progress store and the local cache.  They can disagree (cache
cleared, team switched device), so the server's phase is treated as the one
authoritative signal and overrides stale flags at phase boundaries:

    news     -> nothing done yet           (both flags forced False)
    quiz     -> quiz not answered yet      (hasAnsweredQuiz forced False)
    trading  -> both earlier steps done    (both flags forced True)
    other    -> flags left as observed

:func:`derive_next_action` is then a total function of the snapshot and the
reconciled flags.

A ``quiz`` phase with unseen news is a desynchronization: it is logged and
counted, but the observed flag is kept and the player is still sent to the
quiz.  Whether this should instead force ``hasSeenNews`` True is undecided.
"""

import asyncio
import logging

from .api_client import ApiError, GameApiClient
from .config import TOTAL_ROUNDS
from .local_cache import LocalCache
from .models import GameSnapshot, NextAction, ProgressFlags, ProgressReport, Team
from .phases import (
    ACTION_FINISHED,
    ACTION_NEWS,
    ACTION_QUIZ,
    ACTION_TRADING,
    ACTION_WAIT,
    PHASE_FINISHED,
    PHASE_NEWS,
    PHASE_QUIZ,
    PHASE_RESULTS,
    PHASE_TRADING,
    PROGRESS_NEWS,
    PROGRESS_QUIZ,
    ROUTE_DASHBOARD,
    ROUTE_EVENTS,
    ROUTE_QUIZ,
    ROUTE_RANKING,
    ROUTE_STOCKS,
)

logger = logging.getLogger(__name__)

_NOTHING_DONE = ProgressFlags(has_seen_news=False, has_answered_quiz=False)
_ALL_DONE = ProgressFlags(has_seen_news=True, has_answered_quiz=True)


# ---------------------------------------------------------------------------
# Pure reconciliation
# ---------------------------------------------------------------------------


def reconcile_flags(phase: str, observed: ProgressFlags) -> tuple[ProgressFlags, bool]:
    """Apply the phase forcing rules.

    Returns the reconciled flags and whether the observation was a
    desynchronization (quiz phase reached without the news step recorded).
    """
    if phase == PHASE_NEWS:
        return _NOTHING_DONE, False
    if phase == PHASE_QUIZ:
        desync = not observed.has_seen_news
        return ProgressFlags(has_seen_news=observed.has_seen_news, has_answered_quiz=False), desync
    if phase == PHASE_TRADING:
        return _ALL_DONE, False
    return observed, False


def _action(type_: str, title: str, description: str, button_text: str,
            route: str, priority: int) -> NextAction:
    return NextAction(
        type=type_,
        title=title,
        description=description,
        button_text=button_text,
        route=route,
        priority=priority,
    )


def derive_next_action(
    snapshot: GameSnapshot,
    flags: ProgressFlags,
    total_rounds: int = TOTAL_ROUNDS,
) -> NextAction:
    """Pick the player's next step.  First matching rule wins."""
    rnd = snapshot.current_round

    if rnd > total_rounds or snapshot.phase == PHASE_FINISHED:
        return _action(
            ACTION_FINISHED, "Game over!",
            "Every round is done. Check the final ranking.",
            "View ranking", ROUTE_RANKING, 1,
        )

    if not snapshot.is_active:
        return _action(
            ACTION_WAIT, "Waiting for the game to start...",
            "Please wait until the game master starts the game.",
            "Refresh", ROUTE_DASHBOARD, 2,
        )

    if snapshot.phase == PHASE_TRADING:
        return _action(
            ACTION_TRADING, "Buy and sell stocks",
            "Use the news to trade shares of companies that are good for the environment.",
            "Trade stocks", ROUTE_STOCKS, 3,
        )

    if snapshot.phase == PHASE_NEWS:
        if not flags.has_seen_news:
            return _action(
                ACTION_NEWS, f"Read the round {rnd} news",
                f"Read the environment news for round {rnd} and think about "
                "which stocks will go up or down.",
                "Read news", ROUTE_EVENTS, 4,
            )
        return _action(
            ACTION_WAIT, "Waiting for the quiz...",
            f"You have read the round {rnd} news. Please wait for the quiz to start.",
            "Wait", ROUTE_DASHBOARD, 5,
        )

    if snapshot.phase == PHASE_QUIZ:
        if not flags.has_answered_quiz:
            return _action(
                ACTION_QUIZ, f"Round {rnd} environment quiz",
                f"Answer the round {rnd} quiz to earn bonus money.",
                "Take quiz", ROUTE_QUIZ, 4,
            )
        return _action(
            ACTION_WAIT, "Waiting for trading...",
            f"You have finished the round {rnd} quiz. Please wait for trading to open.",
            "Wait", ROUTE_DASHBOARD, 5,
        )

    if snapshot.phase == PHASE_RESULTS:
        return _action(
            ACTION_WAIT, f"Round {rnd} results are in",
            "Check this round's results and get ready for the next one.",
            "View ranking", ROUTE_RANKING, 5,
        )

    return _action(
        ACTION_WAIT, "Waiting for the next step...",
        "Please wait until the game master starts the next step.",
        "Wait", ROUTE_DASHBOARD, 6,
    )


# ---------------------------------------------------------------------------
# Stateful reconciler
# ---------------------------------------------------------------------------


class GamePhaseReconciler:
    """Owns the latest snapshot and reconciled flags for one player session.

    No public method raises on network failure: a failed state fetch keeps
    the previous snapshot, a failed progress fetch falls back to the local
    cache, and a failed progress write is logged and forgotten.
    """

    def __init__(self, api: GameApiClient, cache: LocalCache,
                 total_rounds: int = TOTAL_ROUNDS):
        self.api = api
        self.cache = cache
        self.total_rounds = total_rounds

        self.snapshot = GameSnapshot()
        self.flags = ProgressFlags()
        self.team: Team | None = cache.load_team()

        self.desync_count = 0
        self.last_desync_round: int | None = None
        self.last_refresh_ok = False

        # Out-of-order guard: each refresh takes a ticket; only results from a
        # ticket newer than the last applied one may overwrite state.
        self._next_ticket = 0
        self._applied_ticket = 0
        self._pending_writes: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Team identity
    # ------------------------------------------------------------------

    def update_team(self, team: Team) -> None:
        logger.info("Team set to %s (id=%d)", team.name or team.code, team.id)
        self.team = team
        self.cache.save_team(team)

    def logout(self) -> None:
        self.team = None
        self.cache.remove_team()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def _observe_flags(self, round_number: int) -> ProgressFlags:
        """Server store first, local cache as fallback."""
        team = self.team
        if team is None:
            return self.cache.read_progress(round_number)
        try:
            return await self.api.get_team_progress(team.id, round_number)
        except ApiError as e:
            logger.info(
                "Team progress unavailable for round %d (%s); using local cache",
                round_number, e.message,
            )
            return self.cache.read_progress(round_number)

    async def refresh(self) -> None:
        self._next_ticket += 1
        ticket = self._next_ticket

        try:
            snapshot = await self.api.get_game_state()
        except ApiError as e:
            logger.warning("Game state fetch failed, keeping last snapshot: %s", e.message)
            if ticket > self._applied_ticket:
                self.last_refresh_ok = False
            return

        observed = await self._observe_flags(snapshot.current_round)
        flags, desync = reconcile_flags(snapshot.phase, observed)

        if ticket < self._applied_ticket:
            logger.debug("Discarding stale refresh #%d (already applied #%d)",
                         ticket, self._applied_ticket)
            return

        if desync:
            self.desync_count += 1
            self.last_desync_round = snapshot.current_round
            logger.warning(
                "Round %d is in the quiz phase but news was never marked as read; "
                "continuing with the observed progress",
                snapshot.current_round,
            )
        elif snapshot.phase == PHASE_TRADING and observed != _ALL_DONE:
            logger.warning(
                "Round %d is trading but progress was incomplete (%s); treating it as complete",
                snapshot.current_round, observed,
            )

        previous = self.snapshot
        if previous.is_active and not snapshot.is_active and snapshot.current_round == 1:
            logger.info("Game was reset by the server; clearing cached round progress")
            self.cache.clear_all_progress()

        if previous.current_round != snapshot.current_round or previous.phase != snapshot.phase:
            logger.info("Game moved to round %d / %s", snapshot.current_round, snapshot.phase)

        self._applied_ticket = ticket
        self.snapshot = snapshot
        self.flags = flags
        self.last_refresh_ok = True

    # ------------------------------------------------------------------
    # Derived action
    # ------------------------------------------------------------------

    def get_next_action(self) -> NextAction:
        return derive_next_action(self.snapshot, self.flags, self.total_rounds)

    # ------------------------------------------------------------------
    # Player progress
    # ------------------------------------------------------------------

    def mark_news_seen(self) -> None:
        round_number = self.snapshot.current_round
        self.cache.mark_news_read(round_number)
        self._report_in_background(round_number, PROGRESS_NEWS)

    def mark_quiz_answered(self) -> None:
        round_number = self.snapshot.current_round
        self.cache.mark_quiz_done(round_number)
        self._report_in_background(round_number, PROGRESS_QUIZ)

    def _report_in_background(self, round_number: int, kind: str) -> None:
        team = self.team
        if team is None:
            logger.debug("No team known; %s progress for round %d kept locally",
                         kind, round_number)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; %s progress for round %d kept locally",
                           kind, round_number)
            return
        report = ProgressReport(round_number=round_number, type=kind, completed=True)
        task = loop.create_task(self._report(team.id, report))
        self._pending_writes.add(task)
        task.add_done_callback(self._report_done)

    async def _report(self, team_id: int, report: ProgressReport) -> None:
        try:
            await self.api.report_progress(team_id, report)
        except ApiError as e:
            logger.warning("Could not save %s progress for round %d on the server: %s",
                           report.type, report.round_number, e.message)
            return
        logger.debug("Saved %s progress for round %d", report.type, report.round_number)

    def _report_done(self, task: asyncio.Task) -> None:
        self._pending_writes.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background progress write failed: %s", exc, exc_info=exc)

    @property
    def pending_writes(self) -> int:
        return len(self._pending_writes)

    async def flush_pending_writes(self) -> None:
        """Wait for in-flight progress writes (used at shutdown and in tests)."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    async def cancel_pending_writes(self) -> None:
        tasks = list(self._pending_writes)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
