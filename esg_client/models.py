"""Wire and domain models shared by the API client, reconciler, and service.

Field names are snake_case in Python and camelCase on the wire, matching the
game backend's JSON.  All models are immutable: the reconciler replaces a
snapshot or a flag pair as a whole value instead of mutating it.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .phases import PHASE_NEWS, PHASE_TRADING


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class GameSnapshot(_WireModel):
    """One reading of ``GET /game/state``.

    ``phase`` is kept as a plain string so that a phase the client does not
    know about still reaches the generic "wait" rule instead of failing
    validation.
    """

    current_round: int = 1
    phase: str = PHASE_NEWS
    time_remaining: int = 0
    is_active: bool = False

    model_config = ConfigDict(extra="ignore")

    @field_validator("time_remaining", mode="before")
    @classmethod
    def _clamp_time_remaining(cls, v):
        if v is None:
            return 0
        if isinstance(v, bool) or not isinstance(v, (int, float, str)):
            raise ValueError("timeRemaining must be a number")
        try:
            return max(0, int(v))
        except (TypeError, OverflowError) as e:
            raise ValueError(f"timeRemaining out of range: {v!r}") from e

    @property
    def can_trade(self) -> bool:
        return self.is_active and self.phase == PHASE_TRADING


class ProgressFlags(_WireModel):
    """Per-round, per-team completion flags."""

    has_seen_news: bool = False
    has_answered_quiz: bool = False

    model_config = ConfigDict(extra="ignore")

    @field_validator("has_seen_news", "has_answered_quiz", mode="before")
    @classmethod
    def _none_is_false(cls, v):
        return False if v is None else v


class ProgressReport(_WireModel):
    """Body of ``POST /teams/{teamId}/progress``."""

    round_number: int
    type: Literal["news", "quiz"]
    completed: bool = True


class Team(_WireModel):
    id: int
    code: str = ""
    name: str = ""
    balance: float = 0
    esg_score: float = 0
    quiz_score: float = 0

    model_config = ConfigDict(extra="allow")


class LoginResponse(_WireModel):
    message: str = ""
    team: Team


class NextAction(_WireModel):
    """What the player should do next.  Derived, never persisted."""

    type: Literal["news", "quiz", "trading", "finished", "wait"]
    title: str
    description: str
    button_text: str
    route: str
    priority: int = Field(ge=0)
