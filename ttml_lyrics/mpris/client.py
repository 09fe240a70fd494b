from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

import dbus

from .errors import NoPlayersFound, PlayerUnavailable, SeekUnsupported

logger = logging.getLogger(__name__)

PLAYER_IFACE = "org.mpris.MediaPlayer2.Player"


@dataclass(frozen=True, slots=True)
class TrackInfo:
    title: str
    artist: str
    album: str
    track_id: str


def _to_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _join_artist(value: Any) -> str:
    if isinstance(value, (list, tuple, dbus.Array)):
        return ", ".join(_to_str(x) for x in value if _to_str(x))
    return _to_str(value)


class MprisClient:
    def __init__(self, service_name: str):
        self.service_name = service_name
        self._bus = dbus.SessionBus()
        self._obj = self._bus.get_object(service_name, "/org/mpris/MediaPlayer2")
        self._props = dbus.Interface(self._obj, "org.freedesktop.DBus.Properties")
        self._player = dbus.Interface(self._obj, PLAYER_IFACE)

    @staticmethod
    def list_players() -> list[str]:
        try:
            bus = dbus.SessionBus()
            return [s for s in bus.list_names() if s.startswith("org.mpris.MediaPlayer2.")]
        except dbus.DBusException as e:
            # no session bus in sandboxes and CI
            logger.debug("Unable to connect to D-Bus session bus: %s", e)
            return []

    @staticmethod
    def pick_player(preferred: str | None = None) -> "MprisClient":
        players = MprisClient.list_players()
        if not players:
            raise NoPlayersFound("No active MPRIS players")

        if preferred:
            # allow passing short name like "vlc"
            for s in players:
                if s == preferred or s.endswith("." + preferred):
                    return MprisClient(s)
            logger.warning("Preferred player '%s' not found, falling back", preferred)

        # prefer Playing
        for s in players:
            try:
                c = MprisClient(s)
                if c.playback_status().lower() == "playing":
                    return c
            except (dbus.DBusException, PlayerUnavailable) as e:
                logger.debug("Skipping player %s: %s", s, e)

        return MprisClient(players[0])

    def _get(self, name: str) -> Any:
        try:
            return self._props.Get(PLAYER_IFACE, name)
        except dbus.DBusException as e:
            raise PlayerUnavailable(str(e)) from e

    def playback_status(self) -> str:
        return _to_str(self._get("PlaybackStatus"))

    def metadata(self) -> dict[str, Any]:
        return dict(self._get("Metadata"))

    def position_ms(self) -> int:
        """
        MPRIS Position is microseconds.
        """
        return int(self._get("Position")) // 1000

    def rate(self) -> float:
        # Rate is optional on MPRIS players; without it they run at 1.0
        try:
            return float(self._get("Rate")) or 1.0
        except PlayerUnavailable:
            return 1.0

    def track_info(self) -> TrackInfo:
        md = self.metadata()
        return TrackInfo(
            title=_to_str(md.get("xesam:title", "")),
            artist=_join_artist(md.get("xesam:artist", [])),
            album=_to_str(md.get("xesam:album", "")),
            track_id=_to_str(md.get("mpris:trackid", "")),
        )

    def set_position(self, ms: int) -> None:
        """
        Absolute seek. MPRIS ignores SetPosition unless the track id matches
        the current one.
        """
        if not bool(self._get("CanSeek")):
            raise SeekUnsupported(f"{self.service_name} does not support seeking")
        track_id = self.track_info().track_id
        if not track_id:
            raise SeekUnsupported(f"{self.service_name} has no current track id")
        try:
            self._player.SetPosition(dbus.ObjectPath(track_id), dbus.Int64(max(0, ms) * 1000))
        except dbus.DBusException as e:
            raise PlayerUnavailable(str(e)) from e

    def play_pause(self) -> None:
        try:
            self._player.PlayPause()
        except dbus.DBusException as e:
            raise PlayerUnavailable(str(e)) from e


class MprisAudioClock:
    """
    Reads the player on every access; seeks are fire-and-forget.

    While the player is unreachable the clock holds the last position it
    read and reports not playing.
    """

    def __init__(self, client: MprisClient):
        self.client = client
        self._last_ms = 0.0
        self._lost = False

    def _unavailable(self, e: PlayerUnavailable) -> None:
        # once per outage, reads happen on every frame
        if not self._lost:
            logger.warning("Player unavailable, holding at %.3fs: %s", self._last_ms / 1000, e)
        self._lost = True

    @property
    def current_time_ms(self) -> float:
        try:
            self._last_ms = float(self.client.position_ms())
        except PlayerUnavailable as e:
            self._unavailable(e)
            return self._last_ms
        if self._lost:
            logger.info("Player is back at %.3fs", self._last_ms / 1000)
            self._lost = False
        return self._last_ms

    @property
    def is_playing(self) -> bool:
        try:
            return self.client.playback_status().lower() == "playing"
        except PlayerUnavailable as e:
            self._unavailable(e)
            return False

    @property
    def playback_rate(self) -> float:
        return self.client.rate()

    def seek(self, time_seconds: float) -> None:
        try:
            self.client.set_position(int(time_seconds * 1000))
        except (PlayerUnavailable, SeekUnsupported) as e:
            logger.warning("Seek to %.3fs failed: %s", time_seconds, e)
