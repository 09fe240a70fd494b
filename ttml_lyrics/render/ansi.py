from __future__ import annotations

import shutil
import signal
import sys
from dataclasses import dataclass
from typing import Callable

from colorama import Fore, Style

from ..sync.units import get_sync_units_for_line
from ..ttml.model import LyricLine
from ..ttml.timestamp import format_timestamp

CSI = "\x1b["


@dataclass(frozen=True, slots=True)
class Theme:
    title: str = Fore.CYAN + Style.BRIGHT
    current: str = Fore.GREEN + Style.BRIGHT
    unit: str = Fore.BLACK + "\x1b[42m"  # black on green
    dim: str = Style.DIM
    warning: str = Fore.YELLOW + Style.BRIGHT
    reset: str = Style.RESET_ALL


def format_line(line: LyricLine, unit_id: str | None, theme: Theme, base: str = "") -> str:
    """
    Line text with the unit ``unit_id`` highlighted. Ruby units show as
    ``word[ruby ruby]``; ``base`` is the style restored after the highlight.
    """
    parts: list[str] = []
    by_word: dict[int, list] = {}
    for u in get_sync_units_for_line(line):
        by_word.setdefault(u.word_index, []).append(u)

    for wi, word in enumerate(line.words):
        units = by_word.get(wi, [])
        if word.ruby:
            rubies = " ".join(
                f"{theme.unit}{u.text}{theme.reset}{base}" if u.id == unit_id else u.text for u in units
            )
            parts.append(f"{word.word}[{rubies}]")
        elif unit_id is not None and word.id == unit_id:
            parts.append(f"{theme.unit}{word.word}{theme.reset}{base}")
        else:
            parts.append(word.word)

    text = "".join(parts)
    if line.is_background:
        text = f"  ({text})"
    prefix = f"{format_timestamp(line.start_time)} "
    return prefix + text


class AnsiRenderer:
    def __init__(self, use_alt_screen: bool = True, theme: Theme | None = None):
        self.use_alt_screen = use_alt_screen
        self.theme = theme or Theme()
        self._entered = False
        self._resize_handler: Callable[..., None] | None = None
        self._last_render_args: tuple[str, list[str], int, int, str] | None = None

    def __enter__(self):
        self.enter()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.exit()

    def enter(self) -> None:
        if self._entered:
            return
        if self.use_alt_screen:
            sys.stdout.write(CSI + "?1049h")  # alt screen
        sys.stdout.write(CSI + "?25l")  # hide cursor
        sys.stdout.write(CSI + "H" + CSI + "2J")  # home + clear
        sys.stdout.flush()
        self._entered = True

        # redraw the last frame on resize
        def _on_resize(signum=None, frame=None):
            if self._last_render_args:
                self.render(*self._last_render_args)

        self._resize_handler = _on_resize
        signal.signal(signal.SIGWINCH, _on_resize)

    def exit(self) -> None:
        if not self._entered:
            return
        if self._resize_handler:
            signal.signal(signal.SIGWINCH, signal.SIG_DFL)
            self._resize_handler = None
        sys.stdout.write(self.theme.reset)
        sys.stdout.write(CSI + "?25h")  # show cursor
        if self.use_alt_screen:
            sys.stdout.write(CSI + "?1049l")  # normal screen
        sys.stdout.flush()
        self._entered = False
        self._last_render_args = None

    def render(
        self,
        title: str,
        lines: list[str],
        current_idx: int,
        context_lines: int = 1,
        status: str = "",
    ) -> None:
        self._last_render_args = (title, lines, current_idx, context_lines, status)

        cols, rows = shutil.get_terminal_size(fallback=(80, 24))
        # title and status lines
        body_rows = max(rows - 2, 1)

        if current_idx < 0:
            start = 0
        else:
            start = max(current_idx - context_lines, 0)
        end = min(start + body_rows, len(lines))
        start = max(end - body_rows, 0)

        out: list[str] = [f"{self.theme.title}{title}{self.theme.reset}"]
        for i in range(start, end):
            t = lines[i]
            if i == current_idx:
                out.append(f"{self.theme.current}{t}{self.theme.reset}")
            else:
                out.append(f"{self.theme.dim}{t}{self.theme.reset}")
        if status:
            out.append(f"{self.theme.warning}{status[:cols]}{self.theme.reset}")

        sys.stdout.write(CSI + "H" + CSI + "2J")
        sys.stdout.write("\r\n".join(out))
        sys.stdout.write(self.theme.reset)
        sys.stdout.flush()
