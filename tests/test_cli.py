from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

import ttml_lyrics.cli as cli
from ttml_lyrics.ttml.parse import parse_ttml

runner = CliRunner()

SAMPLE = (
    '<tt xmlns="http://www.w3.org/ns/ttml" xmlns:ttm="http://www.w3.org/ns/ttml#metadata" '
    'xmlns:amll="http://www.example.com/ns/amll">'
    '<head><metadata><amll:meta key="musicName" value="Song"/></metadata></head>'
    "<body><div>"
    '<p begin="00:00:01.000" end="00:00:02.000">'
    '<span begin="00:00:01.000" end="00:00:01.500">Hel</span>'
    '<span begin="00:00:01.500" end="00:00:02.000">lo</span>'
    '<span ttm:role="x-bg" begin="00:00:01.500" end="00:00:02.000">'
    '<span begin="00:00:01.500" end="00:00:02.000">(ooh)</span></span>'
    "</p>"
    "</div></body></tt>"
)


@pytest.fixture
def sample(tmp_path):
    path = tmp_path / "song.ttml"
    path.write_text(SAMPLE, encoding="utf-8")
    return path


def test_parse_prints_stats(sample):
    result = runner.invoke(cli.app, ["parse", str(sample)])
    assert result.exit_code == 0, result.output
    assert "lines_total=2" in result.output
    assert "background_lines=1" in result.output
    assert "words_total=3" in result.output


def test_export_ttml_roundtrips(sample, tmp_path):
    out = tmp_path / "out.ttml"
    result = runner.invoke(cli.app, ["export", str(sample), "--out", str(out)])
    assert result.exit_code == 0, result.output
    doc = parse_ttml(out.read_text(encoding="utf-8"))
    assert ["".join(w.word for w in line.words) for line in doc.lines] == ["Hello", "ooh"]


def test_export_json_and_lrc(sample):
    result = runner.invoke(cli.app, ["export", str(sample), "--format", "json"])
    assert json.loads(result.output)["metadata"] == {"musicName": ["Song"]}

    result = runner.invoke(cli.app, ["export", str(sample), "--format", "LRC"])
    assert result.output.splitlines() == ["[ti:Song]", "[00:01.00]Hello"]


def test_export_rejects_unknown_format(sample):
    result = runner.invoke(cli.app, ["export", str(sample), "--format", "srt"])
    assert result.exit_code != 0


def test_units_lists_lines(sample):
    result = runner.invoke(cli.app, ["units", str(sample)])
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[0].startswith("  1 Hel@00:00:01.000-00:00:01.500 | lo@")
    assert lines[1].startswith("  2 bg ooh@")


def test_check_flags_inverted_spans(tmp_path, sample):
    assert runner.invoke(cli.app, ["check", str(sample)]).exit_code == 0

    bad = tmp_path / "bad.ttml"
    bad.write_text(
        '<p begin="00:00:02.000" end="00:00:01.000"><span begin="00:00:03.000" end="00:00:02.000">x</span></p>',
        encoding="utf-8",
    )
    result = runner.invoke(cli.app, ["check", str(bad)])
    assert result.exit_code == 1
    assert result.output.count("starts after it ends") == 2


def test_settings_update_and_show(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    monkeypatch.delenv("TTML_LYRICS_JUDGE_MODE", raising=False)

    result = runner.invoke(cli.app, ["settings", "--judge-mode", "middle-key-time", "--smart-last-word", "--offset-ms", "40"])
    assert result.exit_code == 0, result.output
    assert "judge_mode=middle-key-time" in result.output

    result = runner.invoke(cli.app, ["settings"])
    assert "smart_last_word=True" in result.output
    assert "sync_time_offset_ms=40" in result.output
    assert (tmp_path / "ttml-lyrics" / "config.json").exists()


def test_players_lists_mpris_names(monkeypatch):
    monkeypatch.setattr(cli.MprisClient, "list_players", staticmethod(lambda: ["org.mpris.MediaPlayer2.vlc"]))
    result = runner.invoke(cli.app, ["players"])
    assert result.output.strip() == "org.mpris.MediaPlayer2.vlc"


def test_sync_without_players_exits(sample, monkeypatch):
    def _none(preferred=None):
        raise cli.NoPlayersFound("No active MPRIS players")

    monkeypatch.setattr(cli.MprisClient, "pick_player", staticmethod(_none))
    result = runner.invoke(cli.app, ["sync", str(sample)])
    assert result.exit_code == 1


@pytest.mark.parametrize("command", ["parse", "export", "units", "check"])
def test_missing_file_is_a_usage_error(tmp_path, command):
    result = runner.invoke(cli.app, [command, str(tmp_path / "nope.ttml")])
    assert result.exit_code == 2
    assert not isinstance(result.exception, OSError)
    assert "cannot read" in result.output


def test_ruby_generates_from_romanization(tmp_path):
    src = tmp_path / "jp.ttml"
    src.write_text(
        '<tt xmlns="http://www.w3.org/ns/ttml" xmlns:itunes="http://music.apple.com/lyric-ttml-internal">'
        '<head><metadata><iTunesMetadata xmlns="http://music.apple.com/lyric-ttml-internal">'
        '<transliterations><transliteration><text for="L1">'
        '<span begin="00:00:01.000" end="00:00:02.000">sakura</span>'
        "</text></transliteration></transliterations></iTunesMetadata></metadata></head>"
        '<body><div><p begin="00:00:01.000" end="00:00:02.000" itunes:key="L1">'
        '<span begin="00:00:01.000" end="00:00:02.000">桜</span></p></div></body></tt>',
        encoding="utf-8",
    )
    out = tmp_path / "out.ttml"
    result = runner.invoke(cli.app, ["ruby", str(src), "--out", str(out)])
    assert result.exit_code == 0, result.output
    assert "ruby generated for 1 word(s)" in result.output

    word = parse_ttml(out.read_text(encoding="utf-8")).lines[0].words[0]
    assert word.roman_word == "sakura"
    assert [r.word for r in word.ruby] == ["さ", "く", "ら"]
