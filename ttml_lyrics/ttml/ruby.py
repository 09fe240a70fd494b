from __future__ import annotations

import re
from dataclasses import replace

import jaconv

from .model import LyricDocument, LyricWord, RubyWord, with_ruby_span

# Every helper returns a new word whose span covers its remaining ruby
# entries. Out-of-range indexes return the word unchanged.


def _has(word: LyricWord, index: int) -> bool:
    return word.ruby is not None and 0 <= index < len(word.ruby)


def _with_entries(word: LyricWord, entries: list[RubyWord]) -> LyricWord:
    return with_ruby_span(replace(word, ruby=tuple(entries)))


def enable_ruby(word: LyricWord) -> LyricWord:
    if word.ruby is not None:
        return word
    return replace(word, ruby=())


def add_ruby(word: LyricWord, text: str = "") -> LyricWord:
    """Append an entry spanning the word."""
    entries = list(word.ruby or ())
    entries.append(RubyWord(word=text, start_time=word.start_time, end_time=word.end_time))
    return _with_entries(word, entries)


def set_ruby_text(word: LyricWord, index: int, text: str) -> LyricWord:
    if not _has(word, index):
        return word
    entries = list(word.ruby)
    entries[index] = replace(entries[index], word=text)
    return _with_entries(word, entries)


def split_ruby(word: LyricWord, index: int, raw: str, sep: str = "|") -> LyricWord:
    """
    "ka|n" on entry ``index`` becomes two entries: the first keeps the
    entry's timing, the others take the word's span.
    """
    if not _has(word, index):
        return word
    parts = raw.split(sep)
    base = word.ruby[index]
    new = [replace(base, word=parts[0])]
    new.extend(RubyWord(word=p, start_time=word.start_time, end_time=word.end_time) for p in parts[1:])
    entries = list(word.ruby)
    entries[index : index + 1] = new
    return _with_entries(word, entries)


def remove_ruby(word: LyricWord, index: int) -> LyricWord:
    if not _has(word, index):
        return word
    entries = list(word.ruby)
    del entries[index]
    return _with_entries(word, entries)


def merge_ruby_with_previous(word: LyricWord, index: int) -> LyricWord:
    if index < 1 or not _has(word, index):
        return word
    entries = list(word.ruby)
    prev, cur = entries[index - 1], entries[index]
    entries[index - 1] = RubyWord(
        word=prev.word + cur.word,
        start_time=min(prev.start_time, cur.start_time),
        end_time=max(prev.end_time, cur.end_time),
    )
    del entries[index]
    return _with_entries(word, entries)


def retime_ruby(
    word: LyricWord,
    index: int,
    start_time: int | None = None,
    end_time: int | None = None,
) -> LyricWord:
    if not _has(word, index):
        return word
    entries = list(word.ruby)
    entry = entries[index]
    entries[index] = replace(
        entry,
        start_time=entry.start_time if start_time is None else start_time,
        end_time=entry.end_time if end_time is None else end_time,
    )
    return _with_entries(word, entries)


# -- generation from romanWord ------------------------------------------

# a reading with a contracted sound is kept as a single entry
_YOON = frozenset(
    k + small
    for k in "きぎしじちにひびぴみり"
    for small in "ゃゅょ"
) | frozenset(k + small for k in "キギ" for small in "ャュョ")

_KANA_ONLY_RE = re.compile(r"^[\u3040-\u309f\u30a0-\u30ff\uff66-\uff9f]+$")


def _to_kana(roman: str) -> str:
    return jaconv.alphabet2kana(roman.lower()).strip()


def _sokuon(ch: str) -> str:
    # a consonant left over before a doubled one is a small tsu
    return "っ" if ch.lower() in ("t", "s") else ch


def is_kana_only(text: str) -> bool:
    return bool(_KANA_ONLY_RE.match(text.strip()))


def generate_ruby_from_roman_word(word: LyricWord) -> tuple[RubyWord, ...] | None:
    """
    Kana ruby read from the word's ``roman_word``, one entry per kana, each
    spanning the word. None when there is nothing to generate: no
    romanization, or the word is already written in kana.
    """
    roman = (word.roman_word or "").strip()
    if not roman:
        return None
    kana = _to_kana(roman)
    if not kana or is_kana_only(word.word):
        return None

    compact = re.sub(r"\s+", "", kana)
    if not compact:
        return None
    if any(combo in compact for combo in _YOON):
        tokens = [compact]
    else:
        tokens = [_sokuon(ch) for ch in compact if ch.strip()]
    if not tokens:
        return None
    return tuple(RubyWord(word=t, start_time=word.start_time, end_time=word.end_time) for t in tokens)


def apply_generated_ruby(word: LyricWord, overwrite: bool = False) -> LyricWord:
    """Existing non-empty ruby is kept unless ``overwrite``."""
    generated = generate_ruby_from_roman_word(word)
    if not generated:
        return word
    if word.ruby and not overwrite:
        return word
    return with_ruby_span(replace(word, ruby=generated))


def generate_document_ruby(doc: LyricDocument, overwrite: bool = False) -> tuple[LyricDocument, int]:
    """Apply ``apply_generated_ruby`` to every word; returns the new doc and the number of words changed."""
    changed = 0
    lines = []
    for line in doc.lines:
        words = tuple(apply_generated_ruby(w, overwrite) for w in line.words)
        n = sum(1 for old, new in zip(line.words, words) if old is not new)
        changed += n
        lines.append(replace(line, words=words) if n else line)
    if not changed:
        return doc, 0
    return replace(doc, lines=tuple(lines)), changed
