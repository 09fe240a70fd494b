from __future__ import annotations

import json
from dataclasses import dataclass
import logging
import os
from pathlib import Path
from typing import Any

from .sync.engine import JudgeMode, SyncSettings

logger = logging.getLogger(__name__)

_FALSY = ("0", "false", "False", "no")


def _config_dir() -> Path:
    xdg = os.getenv("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "ttml-lyrics"
    return Path.home() / ".config" / "ttml-lyrics"


def _config_file() -> Path:
    return _config_dir() / "config.json"


@dataclass(frozen=True)
class AppConfig:
    config_dir: Path

    # Sync
    judge_mode: JudgeMode
    smart_first_word: bool
    smart_last_word: bool
    sync_time_offset_ms: int

    # MPRIS
    preferred_player: str | None

    # Rendering
    refresh_hz: float
    context_lines: int  # lines above/below current
    use_alt_screen: bool

    def sync_settings(self) -> SyncSettings:
        return SyncSettings(
            judge_mode=self.judge_mode,
            smart_first_word=self.smart_first_word,
            smart_last_word=self.smart_last_word,
            sync_time_offset_ms=self.sync_time_offset_ms,
        )


def _read_file(cfg_path: Path) -> dict[str, Any]:
    if not cfg_path.exists():
        return {}
    try:
        data = json.loads(cfg_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable config %s: %s", cfg_path, e)
        return {}
    return data if isinstance(data, dict) else {}


def _bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value) not in _FALSY


def _judge_mode(raw: Any) -> JudgeMode:
    try:
        return JudgeMode(str(raw))
    except ValueError:
        logger.warning("Unknown judge mode %r, using %s", raw, JudgeMode.FIRST_KEY_DOWN_TIME.value)
        return JudgeMode.FIRST_KEY_DOWN_TIME


def load_config() -> AppConfig:
    # Priority: config.json → TTML_LYRICS_* → defaults
    config_dir = _config_dir()
    data = _read_file(config_dir / "config.json")

    def pick(key: str, env: str, default: str) -> Any:
        if key in data and data[key] is not None:
            return data[key]
        return os.getenv(env, default)

    return AppConfig(
        config_dir=config_dir,
        judge_mode=_judge_mode(pick("judge_mode", "TTML_LYRICS_JUDGE_MODE", JudgeMode.FIRST_KEY_DOWN_TIME.value)),
        smart_first_word=_bool(pick("smart_first_word", "TTML_LYRICS_SMART_FIRST_WORD", "0")),
        smart_last_word=_bool(pick("smart_last_word", "TTML_LYRICS_SMART_LAST_WORD", "0")),
        sync_time_offset_ms=int(pick("sync_time_offset_ms", "TTML_LYRICS_SYNC_OFFSET_MS", "0")),
        preferred_player=os.getenv("TTML_LYRICS_PLAYER") or None,
        refresh_hz=float(os.getenv("TTML_LYRICS_REFRESH_HZ", "30.0")),
        context_lines=int(os.getenv("TTML_LYRICS_CONTEXT_LINES", "3")),
        use_alt_screen=os.getenv("TTML_LYRICS_ALT_SCREEN", "1") not in _FALSY,
    )


def save_sync_settings(settings: SyncSettings) -> Path:
    cfg_path = _config_file()
    cfg_path.parent.mkdir(parents=True, exist_ok=True)
    data = _read_file(cfg_path)
    data.update(
        judge_mode=settings.judge_mode.value,
        smart_first_word=settings.smart_first_word,
        smart_last_word=settings.smart_last_word,
        sync_time_offset_ms=settings.sync_time_offset_ms,
    )
    cfg_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    return cfg_path
