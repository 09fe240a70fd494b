from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Protocol

from ..ttml.model import LyricDocument


class AudioClock(Protocol):
    @property
    def current_time_ms(self) -> float: ...

    @property
    def is_playing(self) -> bool: ...

    @property
    def playback_rate(self) -> float: ...

    def seek(self, time_seconds: float) -> None: ...


class DocumentStore(Protocol):
    def get(self) -> LyricDocument: ...

    def set(self, updater: Callable[[LyricDocument], LyricDocument]) -> None: ...


@dataclass(frozen=True, slots=True)
class KeyEvent:
    # ms the key was held before the event was registered
    down_time_offset: float = 0.0


class InMemoryDocumentStore:
    """
    Holds the current document; every commit replaces it. ``history`` keeps
    each committed snapshot so callers can undo by index.
    """

    def __init__(self, doc: LyricDocument, keep_history: bool = False):
        self._doc = doc
        self.revision = 0
        self.history: list[LyricDocument] | None = [doc] if keep_history else None

    def get(self) -> LyricDocument:
        return self._doc

    def set(self, updater: Callable[[LyricDocument], LyricDocument]) -> None:
        new = updater(self._doc)
        if new is self._doc:
            return
        self._doc = new
        self.revision += 1
        if self.history is not None:
            self.history.append(new)


class ManualClock:
    """
    Free-running clock for sessions without a player: time advances with
    the wall clock while playing and ``seek`` jumps it.
    """

    def __init__(self, rate: float = 1.0, now: Callable[[], float] = time.monotonic):
        self._now = now
        self._rate = rate
        self._base_ms = 0.0
        self._started_at: float | None = None

    @property
    def current_time_ms(self) -> float:
        if self._started_at is None:
            return self._base_ms
        return self._base_ms + (self._now() - self._started_at) * 1000.0 * self._rate

    @property
    def is_playing(self) -> bool:
        return self._started_at is not None

    @property
    def playback_rate(self) -> float:
        return self._rate

    def play(self) -> None:
        if self._started_at is None:
            self._started_at = self._now()

    def pause(self) -> None:
        self._base_ms = self.current_time_ms
        self._started_at = None

    def toggle(self) -> None:
        if self.is_playing:
            self.pause()
        else:
            self.play()

    def seek(self, time_seconds: float) -> None:
        self._base_ms = max(0.0, time_seconds * 1000.0)
        if self._started_at is not None:
            self._started_at = self._now()
