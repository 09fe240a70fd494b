from __future__ import annotations

from dataclasses import replace
from pathlib import Path

from colorama import Fore, Style, just_fix_windows_console
import typer

from ttml_lyrics.app import sync_session
from ttml_lyrics.config import load_config, save_sync_settings
from ttml_lyrics.logging_setup import setup_logging
from ttml_lyrics.mpris.client import MprisAudioClock, MprisClient
from ttml_lyrics.mpris.errors import NoPlayersFound
from ttml_lyrics.sync.clock import ManualClock
from ttml_lyrics.sync.engine import JudgeMode
from ttml_lyrics.sync.units import get_synchronizable_units, is_synchronizable_line
from ttml_lyrics.ttml.export import export_json, export_lrc, export_ttml
from ttml_lyrics.ttml.model import LyricDocument
from ttml_lyrics.ttml.parse import parse_ttml, parse_ttml_with_stats
from ttml_lyrics.ttml.ruby import generate_document_ruby
from ttml_lyrics.ttml.timestamp import format_timestamp


app = typer.Typer(no_args_is_help=True, add_completion=False)


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise typer.BadParameter(f"cannot read {path}: {e}") from e


def _load(path: Path) -> LyricDocument:
    return parse_ttml(_read(path))


@app.callback()
def _root(debug: bool = typer.Option(False, "--debug", help="Enable debug logging")):
    setup_logging(debug)
    just_fix_windows_console()


@app.command()
def parse(ttml_path: Path):
    """Parse TTML and print stats."""
    doc, stats = parse_ttml_with_stats(_read(ttml_path))
    typer.echo(f"lines_total={stats.lines_total}")
    typer.echo(f"background_lines={stats.background_lines}")
    typer.echo(f"words_total={stats.words_total}")
    typer.echo(f"skipped_nodes={stats.skipped_nodes}")
    typer.echo(f"unmatched_roman_words={stats.unmatched_roman_words}")
    typer.echo(f"metadata={ {e.key: list(e.value) for e in doc.metadata} }")
    typer.echo(f"vocal_tags={[t.key for t in doc.vocal_tags]}")


@app.command()
def export(
    ttml_path: Path,
    fmt: str = typer.Option("ttml", "--format", case_sensitive=False, help="ttml|json|lrc"),
    out: Path | None = typer.Option(None, "--out", help="Output file (default: stdout)"),
):
    """Re-encode TTML (normalized) or export it to JSON/LRC."""
    doc = _load(ttml_path)
    fmt_l = fmt.lower()
    if fmt_l == "ttml":
        data = export_ttml(doc)
    elif fmt_l == "json":
        data = export_json(doc)
    elif fmt_l == "lrc":
        data = export_lrc(doc)
    else:
        raise typer.BadParameter("format must be one of: ttml, json, lrc")

    if out:
        out.write_text(data, encoding="utf-8")
    else:
        typer.echo(data, nl=not data.endswith("\n"))


@app.command()
def units(ttml_path: Path):
    """List the synchronizable units of every line."""
    doc = _load(ttml_path)
    for i, line in enumerate(doc.lines, 1):
        flags = "bg " if line.is_background else ""
        if not is_synchronizable_line(line):
            typer.echo(f"{i:>3} {flags}[ignored]")
            continue
        cells = [
            f"{u.text}@{format_timestamp(u.start_time)}-{format_timestamp(u.end_time)}"
            for u in get_synchronizable_units(line)
        ]
        typer.echo(f"{i:>3} {flags}" + " | ".join(cells))


@app.command()
def ruby(
    ttml_path: Path,
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace ruby that is already there"),
    out: Path | None = typer.Option(None, "--out", help="Where to save (default: overwrite input)"),
):
    """Generate kana ruby from each word's romanization."""
    doc, changed = generate_document_ruby(_load(ttml_path), overwrite=overwrite)
    target = out or ttml_path
    target.write_text(export_ttml(doc), encoding="utf-8")
    typer.echo(f"ruby generated for {changed} word(s) -> {target}")


@app.command()
def check(ttml_path: Path):
    """
    Report timing problems (start after end, overlaps inside a line).

    Exit code 1 when any problem is found.
    """
    doc = _load(ttml_path)
    problems = 0

    def warn(msg: str) -> None:
        nonlocal problems
        problems += 1
        typer.echo(f"{Fore.YELLOW}{Style.BRIGHT}warning{Style.RESET_ALL} {msg}")

    for i, line in enumerate(doc.lines, 1):
        if line.start_time > line.end_time:
            warn(f"line {i}: starts after it ends ({line.start_time} > {line.end_time})")
        prev_end = None
        for u in get_synchronizable_units(line):
            if u.start_time > u.end_time:
                warn(f"line {i} '{u.text}': starts after it ends ({u.start_time} > {u.end_time})")
            if prev_end is not None and u.start_time < prev_end:
                warn(f"line {i} '{u.text}': overlaps the previous word")
            prev_end = u.end_time

    if problems:
        raise typer.Exit(code=1)
    typer.echo(f"{Fore.GREEN}ok{Style.RESET_ALL} {len(doc.lines)} lines")


@app.command()
def players():
    """List available MPRIS players."""
    for p in MprisClient.list_players():
        typer.echo(p)


@app.command()
def settings(
    judge_mode: JudgeMode | None = typer.Option(None, "--judge-mode", help="How key presses become timestamps"),
    smart_first_word: bool | None = typer.Option(None, "--smart-first-word/--no-smart-first-word"),
    smart_last_word: bool | None = typer.Option(None, "--smart-last-word/--no-smart-last-word"),
    offset_ms: int | None = typer.Option(None, "--offset-ms", help="Latency compensation added to the clock"),
):
    """Show sync settings; with options, update and save them."""
    current = load_config().sync_settings()
    changes = {
        k: v
        for k, v in (
            ("judge_mode", judge_mode),
            ("smart_first_word", smart_first_word),
            ("smart_last_word", smart_last_word),
            ("sync_time_offset_ms", offset_ms),
        )
        if v is not None
    }
    if changes:
        current = replace(current, **changes)
        path = save_sync_settings(current)
        typer.echo(f"Saved: {path}")
    typer.echo(f"judge_mode={current.judge_mode.value}")
    typer.echo(f"smart_first_word={current.smart_first_word}")
    typer.echo(f"smart_last_word={current.smart_last_word}")
    typer.echo(f"sync_time_offset_ms={current.sync_time_offset_ms}")


@app.command()
def sync(
    ttml_path: Path,
    out: Path | None = typer.Option(None, "--out", help="Where to save (default: overwrite input)"),
    player: str | None = typer.Option(None, "--player", help="MPRIS service or short name (e.g. vlc)"),
    no_player: bool = typer.Option(False, "--no-player", help="Use a free-running clock instead of MPRIS"),
    no_alt_screen: bool = typer.Option(False, "--no-alt-screen", help="Do not use alternate screen buffer"),
    context_lines: int | None = typer.Option(None, "--context", help="Lines above/below current line"),
):
    """
    Time-axis sync in the terminal against the playing MPRIS player.
    """
    cfg = load_config()
    if context_lines is not None:
        cfg = replace(cfg, context_lines=context_lines)
    if no_alt_screen:
        cfg = replace(cfg, use_alt_screen=False)

    doc = _load(ttml_path)
    if no_player:
        manual = ManualClock()
        clock, toggle = manual, manual.toggle
    else:
        try:
            client = MprisClient.pick_player(preferred=player or cfg.preferred_player)
        except NoPlayersFound as e:
            typer.echo(f"{e}; use --no-player for a free-running clock", err=True)
            raise typer.Exit(code=1)
        clock, toggle = MprisAudioClock(client), client.play_pause

    raise typer.Exit(code=sync_session(cfg, doc, clock, out or ttml_path, toggle_play=toggle))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
