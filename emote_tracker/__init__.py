"""emote-tracker — Twitch chat emote statistics bot."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("emote-tracker")
except PackageNotFoundError:
    __version__ = "0.0.0"
