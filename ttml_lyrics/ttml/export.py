from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from dataclasses import asdict, dataclass, field
from operator import attrgetter
from typing import Callable

from .model import LyricDocument, LyricLine, LyricWord, RomanWord
from .parse import UND
from .timestamp import format_timestamp

logger = logging.getLogger(__name__)

TTML_NAMESPACES = {
    "xmlns": "http://www.w3.org/ns/ttml",
    "xmlns:ttm": "http://www.w3.org/ns/ttml#metadata",
    "xmlns:tts": "http://www.w3.org/ns/ttml#styling",
    "xmlns:amll": "http://www.example.com/ns/amll",
    "xmlns:itunes": "http://music.apple.com/lyric-ttml-internal",
}
ITUNES_NS = "http://music.apple.com/lyric-ttml-internal"

MAIN_AGENT = "v1"
DUET_AGENT = "v2"

# metadata keys with a standard LRC tag
_LRC_TAGS = {"musicName": "ti", "artists": "ar", "album": "al", "ttmlAuthorGithubLogin": "by"}


@dataclass(slots=True)
class _LineGroup:
    key: str
    main: LyricLine
    backgrounds: list[LyricLine] = field(default_factory=list)


def _group_lines(lines: tuple[LyricLine, ...]) -> list[_LineGroup]:
    groups: list[_LineGroup] = []
    for line in lines:
        if line.is_background and groups:
            groups[-1].backgrounds.append(line)
            continue
        if line.is_background:
            logger.debug("Background line %s has no host line, writing it as a main line", line.id)
        groups.append(_LineGroup(key=f"L{len(groups) + 1}", main=line))
    return groups


def _append_text(parent: ET.Element, text: str) -> None:
    if len(parent):
        last = parent[-1]
        last.tail = (last.tail or "") + text
    else:
        parent.text = (parent.text or "") + text


def _is_bare(word: LyricWord) -> bool:
    """A word that round-trips as a plain text node between spans."""
    return (
        bool(word.word)
        and word.is_blank
        and word.start_time == 0
        and word.end_time == 0
        and word.ruby is None
        and not word.roman_word
        and not word.obscene
        and word.empty_beat == 0
    )


def _write_word(parent: ET.Element, word: LyricWord) -> None:
    attrs = {"begin": format_timestamp(word.start_time), "end": format_timestamp(word.end_time)}
    if word.empty_beat:
        attrs["amll:empty-beat"] = str(word.empty_beat)
    if word.obscene:
        attrs["amll:obscene"] = "true"

    if word.ruby is None:
        span = ET.SubElement(parent, "span", attrs)
        span.text = word.word
        return

    attrs["tts:ruby"] = "container"
    span = ET.SubElement(parent, "span", attrs)
    base = ET.SubElement(span, "span", {"tts:ruby": "base"})
    base.text = word.word
    texts = ET.SubElement(span, "span", {"tts:ruby": "textContainer"})
    for ruby in word.ruby:
        rt = ET.SubElement(
            texts,
            "span",
            {
                "tts:ruby": "text",
                "begin": format_timestamp(ruby.start_time),
                "end": format_timestamp(ruby.end_time),
            },
        )
        rt.text = ruby.word


def _write_words(parent: ET.Element, words: tuple[LyricWord, ...], background: bool) -> None:
    # background lines are written parenthesized; the decoder strips one pair
    prev_bare = False
    if background:
        _append_text(parent, "(")
        prev_bare = True
    for word in words:
        # two adjacent text runs would merge into one word
        if not background and not prev_bare and _is_bare(word):
            _append_text(parent, word.word)
            prev_bare = True
        else:
            _write_word(parent, word)
            prev_bare = False
    if background:
        _append_text(parent, ")")


_translations_of = attrgetter("translated_lyric_by_lang")
_romans_of = attrgetter("roman_lyric_by_lang")


def _ordered_langs(maps: list[dict | None]) -> list[str]:
    """
    Languages in an order that keeps every map's own key order.

    Decoded maps list their languages in document block order, and the
    primary values come from the last block, so the blocks must be
    written back in that order. Ties go to first appearance.
    """
    seen: list[str] = []
    before: dict[str, set[str]] = {}
    for m in maps:
        keys = list(m or ())
        for i, lang in enumerate(keys):
            if lang not in before:
                seen.append(lang)
                before[lang] = set()
            before[lang].update(keys[:i])

    langs: list[str] = []
    pending = list(seen)
    while pending:
        # a cycle only comes from hand-built maps; break it at the earliest language
        nxt = next((lang for lang in pending if before[lang].issubset(langs)), pending[0])
        langs.append(nxt)
        pending.remove(nxt)
    return langs


def _synth_fragments(line: LyricLine) -> tuple[RomanWord, ...]:
    return tuple(
        RomanWord(start_time=w.start_time, end_time=w.end_time, text=w.roman_word)
        for w in line.words
        if w.roman_word
    )


def _word_romanization(line: LyricLine) -> dict[str, tuple[RomanWord, ...]] | None:
    if line.word_romanization_by_lang is not None:
        return line.word_romanization_by_lang
    frags = _synth_fragments(line)
    return {UND: frags} if frags else None


@dataclass(slots=True)
class _Langs:
    translations: list[str]
    romans: list[str]

    @classmethod
    def of(cls, groups: list[_LineGroup]) -> _Langs:
        lines = [line for g in groups for line in (g.main, *g.backgrounds)]
        romans: list[dict | None] = []
        for line in lines:
            romans.append(line.roman_lyric_by_lang)
            romans.append(_word_romanization(line))
        return cls(
            translations=_ordered_langs([line.translated_lyric_by_lang for line in lines]),
            romans=_ordered_langs(romans),
        )


def _block_value(group: _LineGroup, line: LyricLine, langs: list[str], by_lang: Callable) -> str:
    """
    The primary text the iTunes blocks decode to for ``line``: the last
    block that has a text element for the group key wins.
    """
    first_bg = group.backgrounds[0] if group.backgrounds else None
    for lang in reversed(langs):
        main = (by_lang(group.main) or {}).get(lang, "")
        bg = (by_lang(first_bg) or {}).get(lang, "") if first_bg is not None else ""
        if main or bg:
            return main if line is group.main else bg
    return ""


def _write_inline_text(parent: ET.Element, group: _LineGroup, line: LyricLine, langs: _Langs) -> None:
    # the decoder reads inline spans only when the blocks give the line nothing
    if line.translated_lyric and not _block_value(group, line, langs.translations, _translations_of):
        ET.SubElement(parent, "span", {"ttm:role": "x-translation"}).text = line.translated_lyric
    if line.roman_lyric and not _block_value(group, line, langs.romans, _romans_of):
        ET.SubElement(parent, "span", {"ttm:role": "x-roman"}).text = line.roman_lyric


def _line_attrs(line: LyricLine) -> dict[str, str]:
    return {"begin": format_timestamp(line.start_time), "end": format_timestamp(line.end_time)}


def _write_group(div: ET.Element, group: _LineGroup, langs: _Langs) -> None:
    main = group.main
    attrs = _line_attrs(main)
    attrs["ttm:agent"] = DUET_AGENT if main.is_duet else MAIN_AGENT
    attrs["itunes:key"] = group.key
    if main.vocal:
        attrs["amll:vocal"] = " ".join(main.vocal)
    p = ET.SubElement(div, "p", attrs)
    _write_words(p, main.words, background=False)

    for bg in group.backgrounds:
        bg_attrs = {"ttm:role": "x-bg", **_line_attrs(bg)}
        # a background line without the attribute inherits its host's vocals
        if bg.vocal != main.vocal:
            bg_attrs["amll:vocal"] = " ".join(bg.vocal)
        span = ET.SubElement(p, "span", bg_attrs)
        _write_words(span, bg.words, background=True)
        _write_inline_text(span, group, bg, langs)

    _write_inline_text(p, group, main, langs)


def _lang_block(parent: ET.Element, tag: str, lang: str, **attrs: str) -> ET.Element:
    block = ET.SubElement(parent, tag, attrs)
    if lang != UND:
        block.set("xml:lang", lang)
    return block


def _write_translations(itunes: ET.Element, groups: list[_LineGroup], langs: list[str]) -> None:
    if not langs:
        return
    container = ET.SubElement(itunes, "translations")
    for lang in langs:
        block = _lang_block(container, "translation", lang, type="subtitle")
        for g in groups:
            main = (g.main.translated_lyric_by_lang or {}).get(lang, "")
            bg = ""
            if g.backgrounds:
                bg = (g.backgrounds[0].translated_lyric_by_lang or {}).get(lang, "")
            if not main and not bg:
                continue
            text_el = ET.SubElement(block, "text", {"for": g.key})
            text_el.text = main
            if bg:
                ET.SubElement(text_el, "span", {"ttm:role": "x-bg"}).text = f"({bg})"
        if not len(block):
            container.remove(block)
    if not len(container):
        itunes.remove(container)


def _write_fragments(parent: ET.Element, frags: tuple[RomanWord, ...]) -> None:
    for frag in frags:
        span = ET.SubElement(
            parent,
            "span",
            {"begin": format_timestamp(frag.start_time), "end": format_timestamp(frag.end_time)},
        )
        span.text = frag.text


def _write_transliterations(itunes: ET.Element, groups: list[_LineGroup], langs: list[str]) -> None:
    word_maps = {line.id: _word_romanization(line) for g in groups for line in (g.main, *g.backgrounds)}
    if not langs:
        return

    container = ET.SubElement(itunes, "transliterations")
    for lang in langs:
        block = _lang_block(container, "transliteration", lang)
        for g in groups:
            main_text = (g.main.roman_lyric_by_lang or {}).get(lang, "")
            main_frags = (word_maps[g.main.id] or {}).get(lang, ())
            bg_text = ""
            bg_frags: tuple[RomanWord, ...] = ()
            if g.backgrounds:
                first_bg = g.backgrounds[0]
                bg_text = (first_bg.roman_lyric_by_lang or {}).get(lang, "")
                bg_frags = (word_maps[first_bg.id] or {}).get(lang, ())
            if not (main_text or main_frags or bg_text or bg_frags):
                continue

            text_el = ET.SubElement(block, "text", {"for": g.key})
            text_el.text = main_text
            _write_fragments(text_el, main_frags)
            if bg_text:
                ET.SubElement(text_el, "span", {"ttm:role": "x-bg"}).text = f"({bg_text})"
            if bg_frags:
                _write_fragments(ET.SubElement(text_el, "span", {"ttm:role": "x-bg"}), bg_frags)
        if not len(block):
            container.remove(block)
    if not len(container):
        itunes.remove(container)


def export_ttml(doc: LyricDocument) -> str:
    """
    Inverse of ``parse_ttml``: decoding the result gives back ``doc`` up to
    regenerated ids. Output is compact; no whitespace is added inside lines.
    """
    groups = _group_lines(doc.lines)
    langs = _Langs.of(groups)

    root = ET.Element("tt", TTML_NAMESPACES)
    head = ET.SubElement(root, "head")
    metadata = ET.SubElement(head, "metadata")
    ET.SubElement(metadata, "ttm:agent", {"type": "person", "xml:id": MAIN_AGENT})
    if any(g.main.is_duet for g in groups):
        ET.SubElement(metadata, "ttm:agent", {"type": "other", "xml:id": DUET_AGENT})
    if doc.vocal_tags:
        vocals = ET.SubElement(metadata, "amll:vocals")
        for tag in doc.vocal_tags:
            ET.SubElement(vocals, "amll:vocal", {"key": tag.key, "value": tag.value})
    for entry in doc.metadata:
        for value in entry.value:
            ET.SubElement(metadata, "amll:meta", {"key": entry.key, "value": value})

    itunes = ET.Element("iTunesMetadata", {"xmlns": ITUNES_NS})
    _write_translations(itunes, groups, langs.translations)
    _write_transliterations(itunes, groups, langs.romans)
    if len(itunes):
        metadata.append(itunes)

    body_attrs: dict[str, str] = {}
    div_attrs: dict[str, str] = {}
    if doc.lines:
        last_end = max(line.end_time for line in doc.lines)
        body_attrs["dur"] = format_timestamp(last_end)
        div_attrs = {"begin": format_timestamp(doc.lines[0].start_time), "end": format_timestamp(last_end)}
    body = ET.SubElement(root, "body", body_attrs)
    div = ET.SubElement(body, "div", div_attrs)
    for group in groups:
        _write_group(div, group, langs)

    return ET.tostring(root, encoding="unicode")


def export_json(doc: LyricDocument) -> str:
    return json.dumps(
        {
            "metadata": {entry.key: list(entry.value) for entry in doc.metadata},
            "vocal_tags": [{"key": t.key, "value": t.value} for t in doc.vocal_tags],
            "lines": [asdict(line) for line in doc.lines],
        },
        ensure_ascii=False,
        indent=2,
    )


def _fmt_lrc_time(ms: int) -> str:
    m, rem = divmod(max(ms, 0), 60_000)
    s, ms2 = divmod(rem, 1_000)
    # keep 2 decimals for compatibility
    return f"{m:02d}:{s:02d}.{ms2 // 10:02d}"


def export_lrc(doc: LyricDocument, include_tags: bool = True) -> str:
    """Line-level LRC of the main vocal; background lines are dropped."""
    out: list[str] = []
    if include_tags:
        for entry in doc.metadata:
            tag = _LRC_TAGS.get(entry.key)
            if tag and entry.value:
                out.append(f"[{tag}:{'/'.join(entry.value)}]")

    for line in doc.lines:
        if line.is_background:
            continue
        text = "".join(w.word for w in line.words).strip()
        out.append(f"[{_fmt_lrc_time(line.start_time)}]{text}")
    return "\n".join(out) + ("\n" if out else "")
