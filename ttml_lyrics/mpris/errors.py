class MprisError(RuntimeError):
    pass


class NoPlayersFound(MprisError):
    pass


class PlayerUnavailable(MprisError):
    pass


class SeekUnsupported(MprisError):
    """The player reports ``CanSeek = false`` or has no current track id."""
