from __future__ import annotations

import re
from dataclasses import dataclass

from ..ttml.model import LyricLine, LyricWord, RubyWord

_RUBY_ID_RE = re.compile(r"^(.*)-ruby-(\d+)$")


def build_ruby_selection_id(word_id: str, ruby_index: int) -> str:
    return f"{word_id}-ruby-{ruby_index}"


def parse_ruby_selection_id(unit_id: str) -> tuple[str, int] | None:
    """Return ``(word_id, ruby_index)`` for a Ruby unit id, ``None`` otherwise."""
    m = _RUBY_ID_RE.match(unit_id)
    if not m:
        return None
    return m.group(1), int(m.group(2))


@dataclass(frozen=True, slots=True)
class SyncUnit:
    """A time-assignable item: a word, or one Ruby entry of a word."""

    id: str
    word: LyricWord
    word_index: int
    ruby_index: int | None = None
    ruby_word: RubyWord | None = None

    @property
    def is_ruby(self) -> bool:
        return self.ruby_index is not None

    @property
    def text(self) -> str:
        return self.ruby_word.word if self.ruby_word is not None else self.word.word

    @property
    def start_time(self) -> int:
        return self.ruby_word.start_time if self.ruby_word is not None else self.word.start_time

    @property
    def end_time(self) -> int:
        return self.ruby_word.end_time if self.ruby_word is not None else self.word.end_time


def get_sync_units_for_line(line: LyricLine) -> list[SyncUnit]:
    """Every unit of the line in order, blank ones included."""
    units: list[SyncUnit] = []
    for wi, word in enumerate(line.words):
        if word.ruby:
            for ri, ruby in enumerate(word.ruby):
                units.append(
                    SyncUnit(
                        id=build_ruby_selection_id(word.id, ri),
                        word=word,
                        word_index=wi,
                        ruby_index=ri,
                        ruby_word=ruby,
                    )
                )
        else:
            units.append(SyncUnit(id=word.id, word=word, word_index=wi))
    return units


def get_synchronizable_units(line: LyricLine) -> list[SyncUnit]:
    return [u for u in get_sync_units_for_line(line) if u.text.strip()]


def is_synchronizable_line(line: LyricLine) -> bool:
    return not line.ignore_sync


def first_unit(line: LyricLine) -> SyncUnit | None:
    units = get_synchronizable_units(line)
    return units[0] if units else None


def last_unit(line: LyricLine) -> SyncUnit | None:
    units = get_synchronizable_units(line)
    return units[-1] if units else None


def unit_position(units: list[SyncUnit], unit_id: str) -> int:
    for i, u in enumerate(units):
        if u.id == unit_id:
            return i
    return -1


def find_unit(line: LyricLine, unit_id: str) -> SyncUnit | None:
    """
    Resolve a unit id, a Ruby selection id or a bare word id to a
    synchronizable unit of ``line``. A bare id of a word with Ruby resolves
    to its first Ruby unit.
    """
    units = get_synchronizable_units(line)
    i = unit_position(units, unit_id)
    if i != -1:
        return units[i]
    for u in units:
        if u.word.id == unit_id:
            return u
    return None


def find_next_unit(
    lines: tuple[LyricLine, ...], line_index: int, unit_id: str
) -> tuple[int, SyncUnit] | None:
    """
    The unit after ``unit_id``: later in the same line, otherwise the first
    unit of the next synchronizable line that has one.
    """
    if not 0 <= line_index < len(lines):
        return None
    units = get_synchronizable_units(lines[line_index])
    pos = unit_position(units, unit_id)
    if pos != -1 and pos + 1 < len(units):
        return line_index, units[pos + 1]
    for li in range(line_index + 1, len(lines)):
        line = lines[li]
        if not is_synchronizable_line(line):
            continue
        head = first_unit(line)
        if head is not None:
            return li, head
    return None


def find_prev_unit(
    lines: tuple[LyricLine, ...], line_index: int, unit_id: str
) -> tuple[int, SyncUnit] | None:
    if not 0 <= line_index < len(lines):
        return None
    units = get_synchronizable_units(lines[line_index])
    pos = unit_position(units, unit_id)
    if pos > 0:
        return line_index, units[pos - 1]
    for li in range(line_index - 1, -1, -1):
        line = lines[li]
        if not is_synchronizable_line(line):
            continue
        tail = last_unit(line)
        if tail is not None:
            return li, tail
    return None
