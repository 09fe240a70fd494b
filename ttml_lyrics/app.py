from __future__ import annotations

import logging
import os
import select
import signal
import sys
import termios
import tty
from pathlib import Path
from typing import Callable

from ttml_lyrics.config import AppConfig
from ttml_lyrics.mpris.errors import PlayerUnavailable
from ttml_lyrics.render.ansi import AnsiRenderer, format_line
from ttml_lyrics.sync.clock import AudioClock, InMemoryDocumentStore, KeyEvent
from ttml_lyrics.sync.engine import SyncEngine
from ttml_lyrics.ttml.export import export_ttml
from ttml_lyrics.ttml.model import LyricDocument
from ttml_lyrics.ttml.timestamp import format_timestamp

logger = logging.getLogger(__name__)

# raw terminal: no key-down duration is available
_KEY_EVENT = KeyEvent(down_time_offset=0)

KEYMAP: dict[str, Callable[[SyncEngine], bool]] = {
    "f": lambda e: e.mark_start(_KEY_EVENT),
    "j": lambda e: e.mark_next(_KEY_EVENT),
    "k": lambda e: e.mark_end(_KEY_EVENT),
    "a": lambda e: e.move_prev_unit(),
    "d": lambda e: e.move_next_unit(),
    "A": lambda e: e.move_prev_unit(seek=True),
    "D": lambda e: e.move_next_unit(seek=True),
    "w": lambda e: e.move_prev_line(),
    "s": lambda e: e.move_next_line(),
    "h": lambda e: e.move_to_first_unit(),
    "l": lambda e: e.move_to_last_unit(),
}

HELP = "f start  j next  k end  a/d word  A/D word+seek  w/s line  h/l first/last  space play  q save+quit"


def dispatch(engine: SyncEngine, key: str) -> bool:
    """Run the engine operation bound to ``key``; unbound keys are no-ops."""
    op = KEYMAP.get(key)
    if op is None:
        return False
    return op(engine)


def frame(doc: LyricDocument, engine: SyncEngine, renderer: AnsiRenderer) -> tuple[list[str], int]:
    line_id, unit_id = engine.state.line_id, engine.state.unit_id
    current = doc.line_index(line_id) if line_id else -1
    lines = [
        format_line(
            line,
            unit_id if i == current else None,
            renderer.theme,
            base=renderer.theme.current if i == current else renderer.theme.dim,
        )
        for i, line in enumerate(doc.lines)
    ]
    return lines, current


def save(doc: LyricDocument, out: Path) -> None:
    out.write_text(export_ttml(doc), encoding="utf-8")
    logger.info("Saved %d lines to %s", len(doc.lines), out)


def sync_session(
    cfg: AppConfig,
    doc: LyricDocument,
    clock: AudioClock,
    out: Path,
    *,
    toggle_play: Callable[[], None] | None = None,
) -> int:
    """
    Interactive loop:
    key -> engine -> store -> render. ``out`` is written whenever the
    loop ends: on quit, on Ctrl-C, and on errors.
    """
    store = InMemoryDocumentStore(doc)
    engine = SyncEngine(store, clock, cfg.sync_settings())
    if not engine.start():
        logger.error("Nothing to synchronize: no line has a non-blank word")
        return 1

    fd = sys.stdin.fileno()
    saved_attrs = termios.tcgetattr(fd)
    renderer = AnsiRenderer(use_alt_screen=cfg.use_alt_screen)

    def _on_sigint(signum, frame_):
        renderer.exit()
        raise KeyboardInterrupt

    prev_sigint = signal.signal(signal.SIGINT, _on_sigint)
    tick_s = 1.0 / max(cfg.refresh_hz, 1.0)
    status = HELP

    tty.setcbreak(fd)
    renderer.enter()
    try:
        while True:
            ready, _, _ = select.select([fd], [], [], tick_s)
            if ready:
                key = os.read(fd, 1).decode("utf-8", errors="ignore")
                if key == "q":
                    break
                if key == " " and toggle_play is not None:
                    try:
                        toggle_play()
                    except PlayerUnavailable as e:
                        status = f"play/pause failed: {e}"
                elif not dispatch(engine, key):
                    status = f"'{key}': nothing to do"
                else:
                    status = HELP

            doc_now = store.get()
            lines, current = frame(doc_now, engine, renderer)
            title = f"{out.name}  {format_timestamp(int(clock.current_time_ms))}"
            renderer.render(title, lines, current, cfg.context_lines, status=status)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        renderer.exit()
        termios.tcsetattr(fd, termios.TCSADRAIN, saved_attrs)
        signal.signal(signal.SIGINT, prev_sigint)
        save(store.get(), out)
    return 0
