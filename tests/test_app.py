from __future__ import annotations

import types
from pathlib import Path
from unittest.mock import Mock

import pytest

import ttml_lyrics.app as app
from ttml_lyrics.app import KEYMAP, dispatch, frame, save, sync_session
from ttml_lyrics.config import AppConfig
from ttml_lyrics.mpris.client import MprisAudioClock
from ttml_lyrics.render.ansi import AnsiRenderer
from ttml_lyrics.sync.clock import InMemoryDocumentStore, ManualClock
from ttml_lyrics.sync.engine import JudgeMode, SyncEngine
from ttml_lyrics.ttml.model import LyricDocument, LyricLine, LyricWord
from ttml_lyrics.ttml.parse import parse_ttml
from tests.mocks.clock_mock import FakeClock
from tests.mocks.mpris_mock import MockMprisClient


def _engine(clock=None) -> SyncEngine:
    doc = LyricDocument(
        lines=(
            LyricLine(words=(LyricWord("a", 100, 200), LyricWord("b", 200, 300)), start_time=100, end_time=300),
            LyricLine(words=(LyricWord("c", 400, 500),), start_time=400, end_time=500),
        )
    )
    engine = SyncEngine(InMemoryDocumentStore(doc), clock or FakeClock(1000))
    engine.start()
    return engine


class TestKeyDispatch:
    def test_sync_keys_drive_the_engine(self):
        clock = FakeClock(1000)
        engine = _engine(clock)

        assert dispatch(engine, "f")
        clock.current_time_ms = 1200
        assert dispatch(engine, "j")
        clock.current_time_ms = 1500
        assert dispatch(engine, "k")

        a, b = engine.store.get().lines[0].words
        assert (a.start_time, a.end_time) == (1000, 1200)
        assert (b.start_time, b.end_time) == (1200, 1500)
        assert engine.location().unit.text == "c"

    def test_navigation_keys(self):
        clock = FakeClock()
        engine = _engine(clock)
        assert dispatch(engine, "s")
        assert engine.location().unit.text == "c"
        assert dispatch(engine, "w")
        assert dispatch(engine, "l")
        assert engine.location().unit.text == "b"
        assert dispatch(engine, "A")
        assert engine.location().unit.text == "a"
        assert clock.seeks == [0.2, 0.1]

    def test_unbound_key_is_noop(self):
        engine = _engine()
        before = engine.store.get()
        assert dispatch(engine, "z") is False
        assert engine.store.get() is before

    def test_keymap_has_no_quit_or_play(self):
        assert "q" not in KEYMAP
        assert " " not in KEYMAP


def test_frame_marks_current_line_and_unit():
    engine = _engine()
    renderer = AnsiRenderer(use_alt_screen=False)
    lines, current = frame(engine.store.get(), engine, renderer)
    assert current == 0
    assert len(lines) == 2
    assert renderer.theme.unit + "a" in lines[0]
    assert renderer.theme.unit not in lines[1]


def test_save_writes_decodable_ttml(tmp_path: Path):
    engine = _engine()
    dispatch(engine, "j")
    out = tmp_path / "out.ttml"
    save(engine.store.get(), out)
    doc = parse_ttml(out.read_text(encoding="utf-8"))
    assert [w.word for w in doc.lines[0].words] == ["a", "b"]
    assert doc.lines[0].words[0].end_time == 1000


class TestManualClock:
    def test_runs_only_while_playing(self):
        now = [10.0]
        clock = ManualClock(now=lambda: now[0])
        assert clock.current_time_ms == 0
        clock.play()
        now[0] = 11.5
        assert clock.current_time_ms == 1500
        clock.pause()
        now[0] = 20.0
        assert clock.current_time_ms == 1500
        assert clock.is_playing is False

    def test_seek_and_rate(self):
        now = [0.0]
        clock = ManualClock(rate=2.0, now=lambda: now[0])
        clock.seek(3.0)
        clock.toggle()
        now[0] = 1.0
        assert clock.current_time_ms == 5000
        assert clock.playback_rate == 2.0
        clock.seek(-1)
        assert clock.current_time_ms == 0


def _cfg(tmp_path: Path) -> AppConfig:
    return AppConfig(
        config_dir=tmp_path / "config",
        judge_mode=JudgeMode.FIRST_KEY_DOWN_TIME,
        smart_first_word=False,
        smart_last_word=False,
        sync_time_offset_ms=0,
        preferred_player=None,
        refresh_hz=100.0,
        context_lines=1,
        use_alt_screen=False,
    )


def _two_words() -> LyricDocument:
    return LyricDocument(lines=(LyricLine(words=(LyricWord("a"), LyricWord(" "), LyricWord("b"))),))


class TestSyncSession:
    """The session loop with a scripted keyboard and no real terminal."""

    @pytest.fixture
    def terminal(self, monkeypatch):
        keys: list = []
        termios = types.SimpleNamespace(tcgetattr=lambda fd: "attrs", tcsetattr=Mock(), TCSADRAIN=1)

        def _read(fd, n):
            key = keys.pop(0)
            if callable(key):
                key()
                key = keys.pop(0)
            if isinstance(key, BaseException):
                raise key
            return key.encode("utf-8")

        monkeypatch.setattr(app, "sys", types.SimpleNamespace(stdin=types.SimpleNamespace(fileno=lambda: 0)))
        monkeypatch.setattr(app, "termios", termios)
        monkeypatch.setattr(app, "tty", types.SimpleNamespace(setcbreak=lambda fd: None))
        monkeypatch.setattr(app, "select", types.SimpleNamespace(select=lambda r, w, x, t: (r, [], [])))
        monkeypatch.setattr(app, "os", types.SimpleNamespace(read=_read))
        return keys, termios

    def test_quit_saves(self, tmp_path, terminal):
        keys, termios = terminal
        keys.extend(["f", "j", "k", "q"])
        out = tmp_path / "out.ttml"
        assert sync_session(_cfg(tmp_path), _two_words(), FakeClock(700), out) == 0

        a, _, b = parse_ttml(out.read_text(encoding="utf-8")).lines[0].words
        assert (a.start_time, a.end_time, b.start_time, b.end_time) == (700, 700, 700, 700)
        termios.tcsetattr.assert_called_once_with(0, 1, "attrs")

    def test_ctrl_c_still_saves(self, tmp_path, terminal):
        keys, _ = terminal
        keys.extend(["f", KeyboardInterrupt()])
        out = tmp_path / "out.ttml"
        assert sync_session(_cfg(tmp_path), _two_words(), FakeClock(300), out) == 0
        assert parse_ttml(out.read_text(encoding="utf-8")).lines[0].words[0].start_time == 300

    def test_player_quitting_mid_session_keeps_the_work(self, tmp_path, terminal):
        keys, _ = terminal
        player = MockMprisClient(position_ms=1500)
        keys.extend(["f", player.quit, "j", " ", "k", "q"])
        out = tmp_path / "out.ttml"

        code = sync_session(
            _cfg(tmp_path), _two_words(), MprisAudioClock(player), out, toggle_play=player.play_pause
        )
        assert code == 0
        a, _, b = parse_ttml(out.read_text(encoding="utf-8")).lines[0].words
        assert (a.start_time, a.end_time) == (1500, 1500)
        assert (b.start_time, b.end_time) == (1500, 1500)

    def test_unexpected_error_saves_and_propagates(self, tmp_path, terminal):
        keys, _ = terminal
        keys.extend(["f", RuntimeError("boom")])
        out = tmp_path / "out.ttml"
        with pytest.raises(RuntimeError):
            sync_session(_cfg(tmp_path), _two_words(), FakeClock(200), out)
        assert out.exists()
