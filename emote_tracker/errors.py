"""Exception types raised across component boundaries."""


class EmoteTrackerError(Exception):
    """Base class for emote-tracker errors."""


class ChannelResolutionError(EmoteTrackerError):
    """The channel's Twitch user id could not be determined."""
