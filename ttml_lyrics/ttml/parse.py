from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field, replace
from typing import Iterator

from .model import (
    LyricDocument,
    LyricLine,
    LyricWord,
    MetadataEntry,
    RomanWord,
    RubyWord,
    VocalTag,
    merge_metadata,
    with_ruby_span,
)
from .timestamp import TimestampParseError, parse_timespan

logger = logging.getLogger(__name__)

UND = "und"
DEFAULT_MAIN_AGENT = "v1"

_OPEN_PARENS = ("(", "（")
_CLOSE_PARENS = (")", "）")
_VOCAL_SPLIT_RE = re.compile(r"[\s,]+")


@dataclass(frozen=True, slots=True)
class TtmlParseStats:
    lines_total: int
    background_lines: int
    words_total: int
    skipped_nodes: int
    unmatched_roman_words: int


@dataclass(slots=True)
class _LineText:
    main: str
    bg: str


@dataclass(slots=True)
class _WordPool:
    main: list[RomanWord]
    bg: list[RomanWord]


@dataclass(slots=True)
class _TranslationLayer:
    untimed: dict[str, _LineText] = field(default_factory=dict)
    # span-bearing <text> blocks win over plain ones for the same key
    timed: dict[str, _LineText] = field(default_factory=dict)

    def lookup(self, key: str) -> _LineText | None:
        if key in self.timed:
            return self.timed[key]
        return self.untimed.get(key)


@dataclass(slots=True)
class _RomanLayer:
    lines: dict[str, _LineText] = field(default_factory=dict)
    words: dict[str, _WordPool] = field(default_factory=dict)


def _local(name: str) -> str:
    # "{uri}local" and "prefix:local" both reduce to "local"
    if name.startswith("{"):
        return name.rsplit("}", 1)[1]
    return name.rsplit(":", 1)[-1]


def _attr(el: ET.Element, name: str) -> str | None:
    for k, v in el.attrib.items():
        if _local(k) == name:
            return v
    return None


def _text(el: ET.Element) -> str:
    return "".join(el.itertext())


def _child_nodes(el: ET.Element) -> Iterator[str | ET.Element]:
    """Children in document order, text runs included (DOM childNodes)."""
    if el.text:
        yield el.text
    for child in el:
        yield child
        if child.tail:
            yield child.tail


def _iter_local(root: ET.Element, name: str) -> Iterator[ET.Element]:
    for el in root.iter():
        if _local(el.tag) == name:
            yield el


def _strip_parens(text: str) -> str:
    text = text.strip()
    if text.startswith(_OPEN_PARENS):
        text = text[1:]
    if text.endswith(_CLOSE_PARENS):
        text = text[:-1]
    return text.strip()


def _parse_vocal(value: str | tuple[str, ...] | None) -> tuple[str, ...]:
    if not value:
        return ()
    parts = value if isinstance(value, tuple) else _VOCAL_SPLIT_RE.split(value)
    return tuple(p.strip() for p in parts if p.strip())


def _lang_of(el: ET.Element) -> str:
    return (_attr(el, "lang") or "").strip()


class _TtmlDecoder:
    def __init__(self, root: ET.Element):
        self.root = root
        self.skipped = 0
        self.unmatched_roman = 0
        self.main_agent = DEFAULT_MAIN_AGENT

        self.translations = _TranslationLayer()
        self.translations_by_lang: dict[str, _TranslationLayer] = {}
        self.romans = _RomanLayer()
        self.romans_by_lang: dict[str, _RomanLayer] = {}

    # -- head ----------------------------------------------------------

    def _collect_metadata(self) -> tuple[MetadataEntry, ...]:
        pairs: list[tuple[str, str]] = []
        for meta in _iter_local(self.root, "meta"):
            key = meta.get("key")
            value = meta.get("value")
            if key and value:
                pairs.append((key, value))
        for container in _iter_local(self.root, "songwriters"):
            for el in container:
                if _local(el.tag) != "songwriter":
                    continue
                name = _text(el).strip()
                if name:
                    pairs.append(("songwriter", name))
        return merge_metadata(pairs)

    def _collect_vocal_tags(self) -> tuple[VocalTag, ...]:
        tags: dict[str, str] = {}
        for container in _iter_local(self.root, "vocals"):
            for vocal in _iter_local(container, "vocal"):
                key = vocal.get("key")
                if not key:
                    continue
                tags[key] = vocal.get("value") or ""
        return tuple(VocalTag(key=k, value=v) for k, v in tags.items())

    def _find_main_agent(self) -> str:
        for agent in _iter_local(self.root, "agent"):
            if agent.get("type") == "person":
                agent_id = _attr(agent, "id")
                if agent_id:
                    return agent_id
        return DEFAULT_MAIN_AGENT

    # -- iTunes translation / transliteration tables -------------------

    def _blocks(self, container: str, block: str) -> list[ET.Element]:
        out: list[ET.Element] = []
        for parent in _iter_local(self.root, container):
            out.extend(el for el in parent if _local(el.tag) == block)
        return out

    def _parse_translation_text(self, text_el: ET.Element) -> _LineText | None:
        main = ""
        bg = ""
        for node in _child_nodes(text_el):
            if isinstance(node, str):
                main += node
            elif _attr(node, "role") == "x-bg":
                bg += _text(node)
            else:
                main += _text(node)
        main = main.strip()
        bg = _strip_parens(bg)
        if main or bg:
            return _LineText(main=main, bg=bg)
        return None

    def _timed_fragment(self, span: ET.Element, text: str) -> RomanWord | None:
        try:
            return RomanWord(
                start_time=parse_timespan(span.get("begin") or ""),
                end_time=parse_timespan(span.get("end") or ""),
                text=text,
            )
        except TimestampParseError as e:
            logger.debug("Skipping romanization fragment: %s", e)
            self.skipped += 1
            return None

    def _parse_roman_text(self, text_el: ET.Element) -> tuple[_LineText | None, _WordPool | None]:
        main_words: list[RomanWord] = []
        bg_words: list[RomanWord] = []
        line_main = ""
        line_bg = ""
        word_by_word = False

        for node in _child_nodes(text_el):
            if isinstance(node, str):
                line_main += node
                continue
            if _attr(node, "role") == "x-bg":
                nested = [
                    s
                    for s in list(node.iter())[1:]
                    if _local(s.tag) == "span" and "begin" in s.attrib and "end" in s.attrib
                ]
                if nested:
                    word_by_word = True
                    for span in nested:
                        frag = self._timed_fragment(span, _strip_parens(_text(span)))
                        if frag is not None:
                            bg_words.append(frag)
                else:
                    line_bg += _text(node)
            elif "begin" in node.attrib and "end" in node.attrib:
                word_by_word = True
                frag = self._timed_fragment(node, _text(node))
                if frag is not None:
                    main_words.append(frag)

        words = _WordPool(main=main_words, bg=bg_words) if word_by_word else None
        line_main = line_main.strip()
        line_bg = _strip_parens(line_bg)
        line = _LineText(main=line_main, bg=line_bg) if (line_main or line_bg) else None
        return line, words

    def _collect_translations(self) -> None:
        blocks = self._blocks("translations", "translation")
        # language tagging is all-or-nothing: one tagged block hides every untagged one
        tagged = any(_lang_of(b) for b in blocks)
        for block in blocks:
            lang = _lang_of(block)
            if not lang and tagged:
                continue
            layer = self.translations_by_lang.setdefault(lang or UND, _TranslationLayer())
            for text_el in _iter_local(block, "text"):
                key = text_el.get("for")
                if not key:
                    continue
                parsed = self._parse_translation_text(text_el)
                if parsed is None:
                    continue
                timed = any(
                    _local(d.tag) == "span" and "begin" in d.attrib for d in list(text_el.iter())[1:]
                )
                for target in (layer, self.translations):
                    if timed:
                        target.timed[key] = parsed
                    else:
                        target.untimed[key] = parsed

    def _collect_romanizations(self) -> None:
        blocks = self._blocks("transliterations", "transliteration")
        tagged = any(_lang_of(b) for b in blocks)
        for block in blocks:
            lang = _lang_of(block)
            if not lang and tagged:
                continue
            layer = self.romans_by_lang.setdefault(lang or UND, _RomanLayer())
            for text_el in _iter_local(block, "text"):
                key = text_el.get("for")
                if not key:
                    continue
                line, words = self._parse_roman_text(text_el)
                for target in (layer, self.romans):
                    if words is not None:
                        target.words[key] = words
                    if line is not None:
                        target.lines[key] = line

    # -- body ----------------------------------------------------------

    def _parse_ruby(
        self, container: ET.Element, start: int, end: int
    ) -> tuple[str, tuple[RubyWord, ...]]:
        base = ""
        entries: list[RubyWord] = []
        for el in list(container.iter())[1:]:
            role = _attr(el, "ruby")
            if role == "base":
                base += _text(el)
            elif role == "text":
                try:
                    r_start = parse_timespan(el.get("begin")) if el.get("begin") else start
                    r_end = parse_timespan(el.get("end")) if el.get("end") else end
                except TimestampParseError as e:
                    logger.debug("Ruby entry with bad timing, using word span: %s", e)
                    r_start, r_end = start, end
                entries.append(RubyWord(word=_text(el), start_time=r_start, end_time=r_end))
        return base, tuple(entries)

    def _parse_word(self, el: ET.Element, pool: list[RomanWord]) -> LyricWord | None:
        try:
            start = parse_timespan(el.get("begin") or "")
            end = parse_timespan(el.get("end") or "")
        except TimestampParseError as e:
            logger.debug("Skipping word span: %s", e)
            return None

        ruby: tuple[RubyWord, ...] | None = None
        if _attr(el, "ruby") == "container":
            text, ruby = self._parse_ruby(el, start, end)
        else:
            text = _text(el)

        empty_beat = 0
        raw_beat = _attr(el, "empty-beat")
        if raw_beat:
            try:
                empty_beat = max(int(raw_beat), 0)
            except ValueError:
                logger.debug("Ignoring empty-beat=%r", raw_beat)

        word = with_ruby_span(
            LyricWord(
                word=text,
                start_time=start,
                end_time=end,
                empty_beat=empty_beat,
                obscene=_attr(el, "obscene") == "true",
                ruby=ruby,
            )
        )

        # greedy: first fragment in pool order with the exact same span, consumed on use
        for i, frag in enumerate(pool):
            if frag.start_time == word.start_time and frag.end_time == word.end_time:
                word = replace(word, roman_word=frag.text)
                del pool[i]
                break
        return word

    def _resolve_text(
        self, key: str | None, is_bg: bool
    ) -> tuple[str, str, dict[str, str] | None, dict[str, str] | None, dict[str, tuple[RomanWord, ...]] | None]:
        if not key:
            return "", "", None, None, None

        def pick(pair: _LineText | None) -> str | None:
            if pair is None:
                return None
            return pair.bg if is_bg else pair.main

        translated = pick(self.translations.lookup(key)) or ""
        roman = pick(self.romans.lines.get(key)) or ""

        translated_by_lang: dict[str, str] = {}
        for lang, layer in self.translations_by_lang.items():
            value = pick(layer.lookup(key))
            if value is not None:
                translated_by_lang[lang] = value

        roman_by_lang: dict[str, str] = {}
        word_roman_by_lang: dict[str, tuple[RomanWord, ...]] = {}
        for lang, roman_layer in self.romans_by_lang.items():
            value = pick(roman_layer.lines.get(key))
            if value is not None:
                roman_by_lang[lang] = value
            pool = roman_layer.words.get(key)
            if pool is not None:
                frags = pool.bg if is_bg else pool.main
                if frags:
                    word_roman_by_lang[lang] = tuple(frags)

        return (
            translated,
            roman,
            translated_by_lang or None,
            roman_by_lang or None,
            word_roman_by_lang or None,
        )

    def _parse_line(
        self,
        el: ET.Element,
        *,
        is_bg: bool = False,
        is_duet: bool = False,
        parent_key: str | None = None,
        parent_vocal: tuple[str, ...] | None = None,
    ) -> list[LyricLine]:
        """
        Returns the line followed by every background line nested in it,
        so hosts always precede their background vocals.
        """
        begin_attr = el.get("begin")
        end_attr = el.get("end")
        start = end = 0
        explicit = False
        if begin_attr and end_attr:
            try:
                start = parse_timespan(begin_attr)
                end = parse_timespan(end_attr)
                explicit = True
            except TimestampParseError as e:
                logger.debug("Line span ignored, deriving from words: %s", e)
                start = end = 0

        vocal_attr = _attr(el, "vocal")
        vocal = _parse_vocal(vocal_attr if vocal_attr is not None else (parent_vocal if is_bg else None))
        agent = _attr(el, "agent")
        duet = is_duet if is_bg else bool(agent) and agent != self.main_agent
        key = parent_key if is_bg else _attr(el, "key")

        translated, roman, translated_by_lang, roman_by_lang, word_roman_by_lang = self._resolve_text(key, is_bg)
        source = self.romans.words.get(key) if key else None
        pool = list((source.bg if is_bg else source.main) if source else [])

        words: list[LyricWord] = []
        nested: list[LyricLine] = []
        for node in _child_nodes(el):
            if isinstance(node, str):
                timed = bool(node.strip())
                words.append(
                    LyricWord(
                        word=node,
                        start_time=start if timed else 0,
                        end_time=end if timed else 0,
                    )
                )
                continue

            role = _attr(node, "role")
            if _local(node.tag) == "span" and role:
                if role == "x-bg":
                    nested.extend(
                        self._parse_line(
                            node,
                            is_bg=True,
                            is_duet=duet,
                            parent_key=key,
                            parent_vocal=vocal or None,
                        )
                    )
                elif role == "x-translation":
                    # inline text only when iTunes metadata gave nothing
                    if not translated:
                        translated = _text(node)
                elif role == "x-roman":
                    if not roman:
                        roman = _text(node)
                else:
                    self.skipped += 1
                continue

            if "begin" not in node.attrib or "end" not in node.attrib:
                self.skipped += 1
                continue
            word = self._parse_word(node, pool)
            if word is None:
                self.skipped += 1
                continue
            words.append(word)

        if pool:
            logger.debug("%d romanization fragment(s) left unassigned for key %s", len(pool), key)
            self.unmatched_roman += len(pool)

        if not explicit:
            timed_words = [w for w in words if not w.is_blank]
            start = min((w.start_time for w in timed_words), default=0)
            end = max((w.end_time for w in timed_words), default=0)

        if is_bg and words:
            first = words[0]
            if first.word.startswith(_OPEN_PARENS):
                words[0] = replace(first, word=first.word[1:])
                if not words[0].word:
                    words.pop(0)
        if is_bg and words:
            last = words[-1]
            if last.word.endswith(_CLOSE_PARENS):
                words[-1] = replace(last, word=last.word[:-1])
                if not words[-1].word:
                    words.pop()

        line = LyricLine(
            words=tuple(words),
            start_time=start,
            end_time=end,
            is_background=is_bg,
            is_duet=duet,
            translated_lyric=translated,
            roman_lyric=roman,
            translated_lyric_by_lang=translated_by_lang,
            roman_lyric_by_lang=roman_by_lang,
            word_romanization_by_lang=word_roman_by_lang,
            vocal=vocal,
        )
        return [line, *nested]

    def decode(self) -> LyricDocument:
        metadata = self._collect_metadata()
        vocal_tags = self._collect_vocal_tags()
        self.main_agent = self._find_main_agent()
        self._collect_translations()
        self._collect_romanizations()

        body = next(_iter_local(self.root, "body"), None)
        scope = body if body is not None else self.root
        lines: list[LyricLine] = []
        for p in _iter_local(scope, "p"):
            lines.extend(self._parse_line(p))

        logger.debug("Decoded %d line(s), %d metadata key(s)", len(lines), len(metadata))
        return LyricDocument(lines=tuple(lines), metadata=metadata, vocal_tags=vocal_tags)


def parse_ttml(text: str) -> LyricDocument:
    """
    Lenient TTML decoder:
    - unknown elements and bad spans are skipped
    - text that is not well-formed XML gives an empty document
    """
    doc, _stats = parse_ttml_with_stats(text)
    return doc


def parse_ttml_with_stats(text: str) -> tuple[LyricDocument, TtmlParseStats]:
    try:
        root = ET.fromstring(text.lstrip("\ufeff"))
    except ET.ParseError as e:
        logger.warning("Input is not well-formed XML, returning empty document: %s", e)
        return LyricDocument(), TtmlParseStats(0, 0, 0, 0, 0)

    decoder = _TtmlDecoder(root)
    doc = decoder.decode()
    stats = TtmlParseStats(
        lines_total=len(doc.lines),
        background_lines=sum(1 for line in doc.lines if line.is_background),
        words_total=sum(len(line.words) for line in doc.lines),
        skipped_nodes=decoder.skipped,
        unmatched_roman_words=decoder.unmatched_roman,
    )
    return doc, stats
