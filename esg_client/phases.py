"""Game phase vocabulary, action types, and phase display helpers.

The phase strings are owned by the game server; this module only names them.
Import freely from any module -- it depends on nothing else in the package.
"""

import math

# ── Server phases ─────────────────────────────────────────────────────

PHASE_NEWS = "news"
PHASE_QUIZ = "quiz"
PHASE_TRADING = "trading"
PHASE_RESULTS = "results"
PHASE_FINISHED = "finished"

PHASES = (PHASE_NEWS, PHASE_QUIZ, PHASE_TRADING, PHASE_RESULTS, PHASE_FINISHED)

# ── Next-action types ─────────────────────────────────────────────────

ACTION_NEWS = "news"
ACTION_QUIZ = "quiz"
ACTION_TRADING = "trading"
ACTION_FINISHED = "finished"
ACTION_WAIT = "wait"

ACTION_TYPES = (ACTION_NEWS, ACTION_QUIZ, ACTION_TRADING, ACTION_FINISHED, ACTION_WAIT)

# ── Player-facing routes ──────────────────────────────────────────────

ROUTE_EVENTS = "/events"
ROUTE_QUIZ = "/quiz"
ROUTE_STOCKS = "/stocks"
ROUTE_RANKING = "/ranking"
ROUTE_DASHBOARD = "/dashboard"

# ── Progress report types (POST /teams/{id}/progress) ─────────────────

PROGRESS_NEWS = "news"
PROGRESS_QUIZ = "quiz"

# ── Local-cache keys ──────────────────────────────────────────────────

TEAM_KEY = "teamData"
_NEWS_KEY_TEMPLATE = "news_read_r{round}"
_QUIZ_KEY_TEMPLATE = "quiz_done_r{round}"


def news_key(round_number: int) -> str:
    return _NEWS_KEY_TEMPLATE.format(round=round_number)


def quiz_key(round_number: int) -> str:
    return _QUIZ_KEY_TEMPLATE.format(round=round_number)


# ── Phase display ─────────────────────────────────────────────────────

PHASE_DURATIONS_MS: dict[str, int] = {
    PHASE_NEWS: 30_000,
    PHASE_QUIZ: 120_000,
    PHASE_TRADING: 300_000,
    PHASE_RESULTS: 30_000,
}

URGENT_THRESHOLD_MS = 30_000

PHASE_INFO: dict[str, dict[str, str]] = {
    PHASE_NEWS: {
        "title": "ESG news",
        "description": "ESG news is published and immediately moves stock prices.",
    },
    PHASE_QUIZ: {
        "title": "Environment quiz",
        "description": "Answer correctly to earn a 2% bonus on your investment money.",
    },
    PHASE_TRADING: {
        "title": "Trading time",
        "description": "You can buy and sell stocks now.",
    },
    PHASE_RESULTS: {
        "title": "Round results",
        "description": "Check how your team did this round.",
    },
    PHASE_FINISHED: {
        "title": "Game over",
        "description": "The final ranking has been announced.",
    },
}

_WAITING_INFO = {
    "title": "Waiting for the game",
    "description": "The game has not started yet.",
}


def phase_info(phase: str, is_active: bool = True) -> dict[str, str]:
    """Title/description for a phase; unknown phases and idle games get the waiting card."""
    if not is_active and phase != PHASE_FINISHED:
        return dict(_WAITING_INFO)
    return dict(PHASE_INFO.get(phase, _WAITING_INFO))


def format_time_remaining(ms: int) -> str:
    """Render milliseconds as ``M:SS``, rounding up to whole seconds."""
    total_seconds = max(0, math.ceil(ms / 1000))
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}:{seconds:02d}"


def is_urgent(time_remaining_ms: int) -> bool:
    return time_remaining_ms < URGENT_THRESHOLD_MS


def phase_progress(phase: str, time_remaining_ms: int) -> float:
    """Percent of the current phase that has elapsed (0-100)."""
    if phase == PHASE_FINISHED or time_remaining_ms <= 0:
        return 100.0
    duration = PHASE_DURATIONS_MS.get(phase)
    if not duration:
        return 0.0
    elapsed = 100.0 - (time_remaining_ms / duration) * 100.0
    return min(100.0, max(0.0, elapsed))
