"""Per-session key-value cache mirroring the browser's localStorage.

Values are strings, keys are the same ones the web client used
(``teamData``, ``news_read_r{n}``, ``quiz_done_r{n}``) so a cache file can be
read by either.  One JSON object per session in ``{cache_dir}/{session}.json``;
writes use the same atomic temp-file-then-replace pattern as the other stores.

Passing ``cache_dir=None`` keeps everything in memory.
"""

import asyncio
import json
import logging
import os
import re
import tempfile
from pathlib import Path

from pydantic import ValidationError

from .models import ProgressFlags, Team
from .phases import TEAM_KEY, news_key, quiz_key

logger = logging.getLogger(__name__)

_SESSION_RE = re.compile(r"^[A-Za-z0-9_\-]{1,64}$")
_PROGRESS_KEY_RE = re.compile(r"^(news_read|quiz_done)_r\d+$")
_TRUE = "true"


def _is_valid_session(name: str) -> bool:
    return isinstance(name, str) and bool(_SESSION_RE.match(name))


class LocalCache:
    def __init__(self, cache_dir: str | Path | None = None, session: str = "default"):
        if not _is_valid_session(session):
            raise ValueError(f"Invalid session name: {session!r}")
        self.session = session
        self.filepath: Path | None = None
        if cache_dir is not None:
            self.filepath = (Path(cache_dir) / f"{session}.json").resolve()
        self._data: dict[str, str] = {}
        self._pending_saves: set[asyncio.Task] = set()
        self._save_lock = asyncio.Lock()
        self._load_sync()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load_sync(self):
        if self.filepath is None or not self.filepath.exists():
            return
        try:
            with open(self.filepath) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError):
            logger.warning("Corrupt cache file %s, starting fresh", self.filepath)
            return
        if not isinstance(data, dict):
            logger.warning("Cache file %s is not an object, starting fresh", self.filepath)
            return
        self._data = {str(k): str(v) for k, v in data.items()}

    def _save_sync(self, data: dict[str, str]):
        """Synchronous save -- runs via asyncio.to_thread() when a loop is running."""
        if self.filepath is None:
            return
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_path = tempfile.mkstemp(
            dir=str(self.filepath.parent), suffix=".tmp"
        )
        try:
            with os.fdopen(tmp_fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.filepath)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    async def _save(self):
        # Snapshot under the lock so the last write to land holds the newest data.
        async with self._save_lock:
            await asyncio.to_thread(self._save_sync, dict(self._data))

    def _persist(self):
        """Write the current contents to disk.

        Inside an event loop the write is handed to a worker thread and
        tracked until it lands; ``flush()`` waits for it.  Outside a loop
        it happens inline.
        """
        if self.filepath is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._save_sync(dict(self._data))
            return
        task = loop.create_task(self._save())
        self._pending_saves.add(task)
        task.add_done_callback(self._save_done)

    def _save_done(self, task: asyncio.Task):
        self._pending_saves.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Failed to write cache file %s: %s", self.filepath, exc, exc_info=exc)

    @property
    def pending_saves(self) -> int:
        return len(self._pending_saves)

    async def flush(self) -> None:
        """Wait for queued disk writes (used at shutdown and in tests)."""
        if self._pending_saves:
            await asyncio.gather(*list(self._pending_saves), return_exceptions=True)

    # ------------------------------------------------------------------
    # Raw key-value access
    # ------------------------------------------------------------------

    def get_item(self, key: str) -> str | None:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value
        self._persist()

    def remove_item(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._persist()

    def keys(self) -> list[str]:
        return list(self._data)

    # ------------------------------------------------------------------
    # Round progress
    # ------------------------------------------------------------------

    def read_progress(self, round_number: int) -> ProgressFlags:
        return ProgressFlags(
            has_seen_news=self.get_item(news_key(round_number)) == _TRUE,
            has_answered_quiz=self.get_item(quiz_key(round_number)) == _TRUE,
        )

    def mark_news_read(self, round_number: int) -> None:
        self.set_item(news_key(round_number), _TRUE)

    def mark_quiz_done(self, round_number: int) -> None:
        self.set_item(quiz_key(round_number), _TRUE)

    def clear_all_progress(self) -> None:
        stale = [k for k in self._data if _PROGRESS_KEY_RE.match(k)]
        for key in stale:
            del self._data[key]
        if stale:
            self._persist()

    # ------------------------------------------------------------------
    # Team identity
    # ------------------------------------------------------------------

    def load_team(self) -> Team | None:
        """Return the stored team, dropping the record if it cannot be parsed."""
        raw = self.get_item(TEAM_KEY)
        if raw is None:
            return None
        try:
            return Team.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding malformed team record in session %s", self.session)
            self.remove_item(TEAM_KEY)
            return None

    def save_team(self, team: Team) -> None:
        self.set_item(TEAM_KEY, team.model_dump_json(by_alias=True))

    def remove_team(self) -> None:
        self.remove_item(TEAM_KEY)
