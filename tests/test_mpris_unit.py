from __future__ import annotations

import logging
import types
from unittest.mock import Mock

import pytest

import ttml_lyrics.mpris.client as mpris_client
from ttml_lyrics.mpris.client import MprisAudioClock, MprisClient, _join_artist
from ttml_lyrics.mpris.errors import PlayerUnavailable, SeekUnsupported
from ttml_lyrics.sync.clock import InMemoryDocumentStore, KeyEvent
from ttml_lyrics.sync.engine import SyncEngine
from ttml_lyrics.ttml.model import LyricDocument, LyricLine, LyricWord
from tests.mocks.mpris_mock import MockMprisClient


class _FakeDbusException(Exception):
    pass


def _fake_dbus(**extra):
    return types.SimpleNamespace(
        DBusException=_FakeDbusException,
        ObjectPath=lambda p: ("path", p),
        Int64=lambda v: ("int64", v),
        Array=list,
        **extra,
    )


def _bare_client(monkeypatch, props: dict) -> tuple[MprisClient, Mock]:
    """MprisClient wired to fake D-Bus proxies, no session bus needed."""
    monkeypatch.setattr(mpris_client, "dbus", _fake_dbus())
    client = MprisClient.__new__(MprisClient)
    client.service_name = "org.mpris.MediaPlayer2.fake"

    def _get(iface, name):
        value = props[name]
        if isinstance(value, Exception):
            raise value
        return value

    client._props = Mock(Get=Mock(side_effect=_get))
    client._player = Mock()
    return client, client._player


def test_list_players_returns_empty_on_dbus_error(monkeypatch):
    def _raise_session_bus():
        raise _FakeDbusException("no session bus")

    monkeypatch.setattr(mpris_client, "dbus", _fake_dbus(SessionBus=_raise_session_bus))
    assert MprisClient.list_players() == []


@pytest.mark.parametrize(
    "value, expected",
    [
        (["A", "B"], "A, B"),
        (("A", "", "B"), "A, B"),
        ("Solo", "Solo"),
        (123, "123"),
        (None, ""),
    ],
)
def test_join_artist_handles_common_types(value, expected):
    assert _join_artist(value) == expected


def test_position_rate_and_status(monkeypatch):
    client, _ = _bare_client(
        monkeypatch, {"Position": 12_345_678, "Rate": 1.5, "PlaybackStatus": "Playing"}
    )
    assert client.position_ms() == 12_345
    assert client.rate() == 1.5
    assert client.playback_status() == "Playing"


def test_missing_rate_defaults_to_one(monkeypatch):
    client, _ = _bare_client(monkeypatch, {"Rate": _FakeDbusException("no Rate")})
    assert client.rate() == 1.0


def test_property_errors_become_player_unavailable(monkeypatch):
    client, _ = _bare_client(monkeypatch, {"Position": _FakeDbusException("gone")})
    with pytest.raises(PlayerUnavailable):
        client.position_ms()


def test_set_position_uses_current_track_id(monkeypatch):
    client, player = _bare_client(
        monkeypatch, {"CanSeek": True, "Metadata": {"mpris:trackid": "/org/mpris/MediaPlayer2/Track/7", "xesam:title": "T"}}
    )
    client.set_position(1500)
    player.SetPosition.assert_called_once_with(("path", "/org/mpris/MediaPlayer2/Track/7"), ("int64", 1_500_000))


def test_set_position_without_track_id(monkeypatch):
    client, player = _bare_client(monkeypatch, {"CanSeek": True, "Metadata": {}})
    with pytest.raises(SeekUnsupported):
        client.set_position(1500)
    player.SetPosition.assert_not_called()


def test_set_position_when_player_cannot_seek(monkeypatch):
    client, player = _bare_client(
        monkeypatch, {"CanSeek": False, "Metadata": {"mpris:trackid": "/org/mpris/MediaPlayer2/Track/7"}}
    )
    with pytest.raises(SeekUnsupported, match="does not support seeking"):
        client.set_position(1500)
    player.SetPosition.assert_not_called()


class TestMprisAudioClock:
    def test_reads_player_state(self):
        clock = MprisAudioClock(MockMprisClient(position_ms=4200, rate=0.5, playback_status="Paused"))
        assert clock.current_time_ms == 4200.0
        assert clock.is_playing is False
        assert clock.playback_rate == 0.5

    def test_seek_converts_seconds(self):
        player = MockMprisClient()
        clock = MprisAudioClock(player)
        clock.seek(1.25)
        assert player.seeks == [1250]
        assert clock.current_time_ms == 1250.0

    def test_failed_seek_is_logged_not_raised(self, caplog):
        player = MockMprisClient(metadata={})
        clock = MprisAudioClock(player)
        with caplog.at_level(logging.WARNING):
            clock.seek(2.0)
        assert player.seeks == []
        assert "Seek to 2.000s failed" in caplog.text

    def test_seek_refused_when_player_cannot_seek(self, caplog):
        player = MockMprisClient(can_seek=False)
        with caplog.at_level(logging.WARNING):
            MprisAudioClock(player).seek(1.0)
        assert player.seeks == []
        assert "CanSeek is false" in caplog.text

    def test_lost_player_holds_last_position(self, caplog):
        player = MockMprisClient(position_ms=3000)
        clock = MprisAudioClock(player)
        assert clock.current_time_ms == 3000.0

        player.quit()
        with caplog.at_level(logging.WARNING):
            assert clock.current_time_ms == 3000.0
            assert clock.is_playing is False
            assert clock.current_time_ms == 3000.0
        # one warning per outage
        assert caplog.text.count("Player unavailable") == 1

        player.available = True
        player._position_ms = 5000
        assert clock.current_time_ms == 5000.0
        assert clock.is_playing is True

    def test_engine_keeps_working_after_player_quits(self):
        doc = LyricDocument(
            lines=(
                LyricLine(
                    words=(LyricWord("a", 0, 0), LyricWord("b", 0, 0)),
                ),
            )
        )
        player = MockMprisClient(position_ms=1200)
        engine = SyncEngine(InMemoryDocumentStore(doc), MprisAudioClock(player))
        assert engine.start()
        assert engine.mark_start(KeyEvent())

        player.quit()
        assert engine.mark_next(KeyEvent())
        a, b = engine.store.get().lines[0].words
        assert (a.start_time, a.end_time) == (1200, 1200)
        assert b.start_time == 1200
