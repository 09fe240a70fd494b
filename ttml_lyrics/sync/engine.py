from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, replace
from enum import Enum

from ..ttml.model import LyricDocument, LyricLine, replace_word
from ..ttml.ruby import retime_ruby
from .clock import AudioClock, DocumentStore, KeyEvent
from .units import (
    SyncUnit,
    find_next_unit,
    find_prev_unit,
    find_unit,
    first_unit,
    get_synchronizable_units,
    is_synchronizable_line,
    last_unit,
    unit_position,
)

logger = logging.getLogger(__name__)


class JudgeMode(str, Enum):
    FIRST_KEY_DOWN_TIME = "first-keydown-time"
    FIRST_KEY_DOWN_TIME_LEGACY = "first-keydown-time-legacy"
    LAST_KEY_UP_TIME = "last-keyup-time"
    MIDDLE_KEY_TIME = "middle-key-time"


@dataclass(frozen=True, slots=True)
class SyncSettings:
    judge_mode: JudgeMode = JudgeMode.FIRST_KEY_DOWN_TIME
    smart_first_word: bool = False
    smart_last_word: bool = False
    # added to every clock reading, before the judge-mode adjustment
    sync_time_offset_ms: int = 0


@dataclass(frozen=True, slots=True)
class SyncState:
    line_id: str | None = None
    unit_id: str | None = None
    empty_beat: int = 0
    smart_first_word_active_id: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SyncState":
        return cls(
            line_id=data.get("line_id"),
            unit_id=data.get("unit_id"),
            empty_beat=int(data.get("empty_beat", 0) or 0),
            smart_first_word_active_id=data.get("smart_first_word_active_id"),
        )


@dataclass(frozen=True, slots=True)
class Location:
    line_index: int
    line: LyricLine
    units: list[SyncUnit]
    sync_index: int

    @property
    def unit(self) -> SyncUnit:
        return self.units[self.sync_index]

    @property
    def is_first(self) -> bool:
        return self.sync_index == 0

    @property
    def is_last(self) -> bool:
        return self.sync_index == len(self.units) - 1


def _set_unit_start(line: LyricLine, unit: SyncUnit, ms: int) -> LyricLine:
    word = line.words[unit.word_index]
    if unit.ruby_index is not None:
        word = retime_ruby(word, unit.ruby_index, start_time=ms)
    else:
        word = replace(word, start_time=ms)
    return replace_word(line, unit.word_index, word)


def _set_unit_end(line: LyricLine, unit: SyncUnit, ms: int) -> LyricLine:
    word = line.words[unit.word_index]
    if unit.ruby_index is not None:
        word = retime_ruby(word, unit.ruby_index, end_time=ms)
    else:
        word = replace(word, end_time=ms)
    return replace_word(line, unit.word_index, word)


class SyncEngine:
    """
    Turns timed key events into document edits.

    Every edit goes through ``store.set`` as a new document; the cursor and
    the countdown registers live in ``state``. Operations return ``False``
    instead of raising when there is nothing to act on.
    """

    def __init__(
        self,
        store: DocumentStore,
        clock: AudioClock,
        settings: SyncSettings | None = None,
        state: SyncState | None = None,
    ):
        self.store = store
        self.clock = clock
        self.settings = settings or SyncSettings()
        self.state = state or SyncState()

    # cursor

    def location(self) -> Location | None:
        st = self.state
        if st.line_id is None or st.unit_id is None:
            return None
        doc = self.store.get()
        li = doc.line_index(st.line_id)
        if li == -1:
            return None
        line = doc.lines[li]
        units = get_synchronizable_units(line)
        unit = find_unit(line, st.unit_id)
        if unit is None:
            return None
        return Location(line_index=li, line=line, units=units, sync_index=unit_position(units, unit.id))

    def _line_index(self) -> int:
        if self.state.line_id is None:
            return -1
        return self.store.get().line_index(self.state.line_id)

    def _move(self, line_id: str | None, unit_id: str | None) -> None:
        self.state = replace(self.state, line_id=line_id, unit_id=unit_id, empty_beat=0)

    def select(self, line_id: str, unit_id: str | None = None) -> bool:
        """Put the cursor on ``unit_id`` (or the line's first unit)."""
        doc = self.store.get()
        li = doc.line_index(line_id)
        if li == -1:
            return False
        line = doc.lines[li]
        unit = first_unit(line) if unit_id is None else find_unit(line, unit_id)
        if unit_id is not None and unit is None:
            return False
        self._move(line.id, unit.id if unit else None)
        return True

    def start(self, line_id: str | None = None) -> bool:
        if line_id is not None:
            return self.select(line_id)
        for line in self.store.get().lines:
            if is_synchronizable_line(line) and first_unit(line) is not None:
                return self.select(line.id)
        return False

    def _seek_to(self, unit: SyncUnit) -> None:
        self.clock.seek(unit.start_time / 1000)

    def move_next_unit(self, seek: bool = False) -> bool:
        loc = self.location()
        if loc is None:
            return False
        found = find_next_unit(self.store.get().lines, loc.line_index, loc.unit.id)
        if found is None:
            return False
        li, unit = found
        self._move(self.store.get().lines[li].id, unit.id)
        if seek:
            self._seek_to(unit)
        return True

    def move_prev_unit(self, seek: bool = False) -> bool:
        loc = self.location()
        if loc is None:
            return False
        found = find_prev_unit(self.store.get().lines, loc.line_index, loc.unit.id)
        if found is None:
            return False
        li, unit = found
        self._move(self.store.get().lines[li].id, unit.id)
        if seek:
            self._seek_to(unit)
        return True

    def _move_to_line(self, index: int) -> bool:
        lines = self.store.get().lines
        if not 0 <= index < len(lines):
            return False
        target = lines[index]
        head = first_unit(target)
        self._move(target.id, head.id if head else None)
        return True

    def move_next_line(self) -> bool:
        li = self._line_index()
        if li == -1:
            return False
        return self._move_to_line(li + 1)

    def move_prev_line(self) -> bool:
        li = self._line_index()
        if li <= 0:
            return False
        return self._move_to_line(li - 1)

    def move_to_first_unit(self) -> bool:
        li = self._line_index()
        if li == -1:
            return False
        line = self.store.get().lines[li]
        unit = first_unit(line)
        if unit is None:
            return False
        self._move(line.id, unit.id)
        self._seek_to(unit)
        return True

    def move_to_last_unit(self) -> bool:
        li = self._line_index()
        if li == -1:
            return False
        line = self.store.get().lines[li]
        unit = last_unit(line)
        if unit is None:
            return False
        self._move(line.id, unit.id)
        self._seek_to(unit)
        return True

    # timing

    def calc_judge_time(self, event: KeyEvent) -> int:
        clock_ms = self.clock.current_time_ms
        offset = self.settings.sync_time_offset_ms
        down = event.down_time_offset
        mode = self.settings.judge_mode

        if mode == JudgeMode.FIRST_KEY_DOWN_TIME_LEGACY:
            return math.floor(max(0.0, clock_ms - down + offset))

        current = max(0.0, clock_ms + offset)
        adjustment = 0.0
        if self.clock.is_playing:
            if mode == JudgeMode.FIRST_KEY_DOWN_TIME:
                adjustment = -down
            elif mode == JudgeMode.MIDDLE_KEY_TIME:
                adjustment = -down / 2
            adjustment *= self.clock.playback_rate
        return math.floor(max(0.0, current + adjustment))

    def _commit(self, line_index: int, fn) -> None:
        def updater(doc: LyricDocument) -> LyricDocument:
            return doc.replace_line(line_index, fn(doc.lines[line_index]))

        self.store.set(updater)

    def mark_start(self, event: KeyEvent | None = None) -> bool:
        loc = self.location()
        if loc is None:
            return False
        t = self.calc_judge_time(event or KeyEvent())
        if self.settings.smart_first_word and loc.is_first:
            self.state = replace(self.state, smart_first_word_active_id=loc.unit.word.id)

        unit, is_first = loc.unit, loc.is_first

        def stamp(line: LyricLine) -> LyricLine:
            if is_first:
                line = replace(line, start_time=t)
            return _set_unit_start(line, unit, t)

        self._commit(loc.line_index, stamp)
        return True

    def mark_next(self, event: KeyEvent | None = None) -> bool:
        loc = self.location()
        if loc is None:
            return False
        t = self.calc_judge_time(event or KeyEvent())
        unit = loc.unit
        smart_first = self.settings.smart_first_word

        if smart_first and loc.is_first and self.state.smart_first_word_active_id != unit.word.id:
            self._commit(loc.line_index, lambda line: _set_unit_start(replace(line, start_time=t), unit, t))
            self.state = replace(self.state, smart_first_word_active_id=unit.word.id)
            return True

        if not unit.word.has_ruby and self.state.empty_beat < unit.word.empty_beat:
            self.state = replace(self.state, empty_beat=self.state.empty_beat + 1)
            logger.debug("Empty beat %d/%d on %s", self.state.empty_beat, unit.word.empty_beat, unit.id)
            return True
        self.state = replace(self.state, smart_first_word_active_id=None)

        if self.settings.smart_last_word and loc.is_last:
            self._commit(loc.line_index, lambda line: replace(_set_unit_end(line, unit, t), end_time=t))
            self.move_next_unit()
            return True

        li, is_last = loc.line_index, loc.is_last

        def close_and_open(doc: LyricDocument) -> LyricDocument:
            cur = _set_unit_end(doc.lines[li], unit, t)
            if is_last:
                cur = replace(cur, end_time=t)
            doc = doc.replace_line(li, cur)
            found = find_next_unit(doc.lines, li, unit.id)
            if found is None:
                return doc
            ni, next_unit = found
            nxt = doc.lines[ni]
            if ni != li:
                nxt = replace(nxt, start_time=t)
            return doc.replace_line(ni, _set_unit_start(nxt, next_unit, t))

        self.store.set(close_and_open)
        self.move_next_unit()

        if smart_first:
            new_loc = self.location()
            if new_loc is not None and new_loc.is_first:
                self.state = replace(self.state, smart_first_word_active_id=new_loc.unit.word.id)
        return True

    def mark_end(self, event: KeyEvent | None = None) -> bool:
        loc = self.location()
        if loc is None:
            return False
        t = self.calc_judge_time(event or KeyEvent())
        unit, is_last = loc.unit, loc.is_last

        def stamp(line: LyricLine) -> LyricLine:
            line = _set_unit_end(line, unit, t)
            return replace(line, end_time=t) if is_last else line

        self._commit(loc.line_index, stamp)
        self.move_next_unit()
        return True
