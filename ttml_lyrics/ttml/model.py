from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable


def new_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True, slots=True)
class RubyWord:
    word: str
    start_time: int = 0
    end_time: int = 0


@dataclass(frozen=True, slots=True)
class RomanWord:
    start_time: int
    end_time: int
    text: str


@dataclass(frozen=True, slots=True)
class LyricWord:
    word: str = ""
    start_time: int = 0
    end_time: int = 0
    empty_beat: int = 0
    obscene: bool = False
    roman_word: str = ""
    # None: no ruby at all; (): ruby enabled but empty
    ruby: tuple[RubyWord, ...] | None = None
    id: str = field(default_factory=new_id)

    @property
    def is_blank(self) -> bool:
        return not self.word.strip()

    @property
    def has_ruby(self) -> bool:
        return bool(self.ruby)


@dataclass(frozen=True, slots=True)
class LyricLine:
    words: tuple[LyricWord, ...] = ()
    start_time: int = 0
    end_time: int = 0
    is_background: bool = False
    is_duet: bool = False
    ignore_sync: bool = False
    translated_lyric: str = ""
    roman_lyric: str = ""
    translated_lyric_by_lang: dict[str, str] | None = None
    roman_lyric_by_lang: dict[str, str] | None = None
    word_romanization_by_lang: dict[str, tuple[RomanWord, ...]] | None = None
    vocal: tuple[str, ...] = ()
    id: str = field(default_factory=new_id)

    def word_index(self, word_id: str) -> int:
        for i, w in enumerate(self.words):
            if w.id == word_id:
                return i
        return -1


@dataclass(frozen=True, slots=True)
class MetadataEntry:
    key: str
    value: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class VocalTag:
    key: str
    value: str


@dataclass(frozen=True, slots=True)
class LyricDocument:
    lines: tuple[LyricLine, ...] = ()
    metadata: tuple[MetadataEntry, ...] = ()
    vocal_tags: tuple[VocalTag, ...] = ()

    def line_index(self, line_id: str) -> int:
        for i, line in enumerate(self.lines):
            if line.id == line_id:
                return i
        return -1

    def metadata_values(self, key: str) -> tuple[str, ...]:
        for entry in self.metadata:
            if entry.key == key:
                return entry.value
        return ()

    def replace_line(self, index: int, line: LyricLine) -> "LyricDocument":
        """Return a new document sharing every line except the one at ``index``."""
        lines = list(self.lines)
        lines[index] = line
        return replace(self, lines=tuple(lines))


def merge_metadata(entries: Iterable[tuple[str, str]]) -> tuple[MetadataEntry, ...]:
    """
    Fold (key, value) pairs into entries; repeated keys extend the first
    entry's value list and keep its position.
    """
    order: list[str] = []
    values: dict[str, list[str]] = {}
    for key, value in entries:
        if key not in values:
            order.append(key)
            values[key] = []
        values[key].append(value)
    return tuple(MetadataEntry(key=k, value=tuple(values[k])) for k in order)


def with_ruby_span(word: LyricWord) -> LyricWord:
    """Re-derive a word's span from its ruby entries; words without ruby are returned as-is."""
    if not word.ruby:
        return word
    return replace(
        word,
        start_time=min(r.start_time for r in word.ruby),
        end_time=max(r.end_time for r in word.ruby),
    )


def replace_word(line: LyricLine, index: int, word: LyricWord) -> LyricLine:
    words = list(line.words)
    words[index] = word
    return replace(line, words=tuple(words))


def update_word(
    doc: LyricDocument,
    word_id: str,
    fn: Callable[[LyricWord], LyricWord],
) -> LyricDocument:
    """Apply ``fn`` to the word with ``word_id``; unknown ids leave ``doc`` untouched."""
    for li, line in enumerate(doc.lines):
        wi = line.word_index(word_id)
        if wi != -1:
            return doc.replace_line(li, replace_word(line, wi, fn(line.words[wi])))
    return doc
