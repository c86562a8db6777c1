"""Chat command handler — read-only statistics queries.

Commands arrive as ``!word args...``. Aliases resolve through a lookup built
once at import. Two throttles apply, both silent: a global per-user rate
limit and a per-user, per-command cooldown.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable

from .utils import days_since, now_ms

if TYPE_CHECKING:
    from .config import TrackerConfig
    from .emote_catalog import EmoteCatalog
    from .stats_store import StatsStore


UNKNOWN_COMMAND_REPLY = "❓ Unknown command. Use !help to see the available commands."
ERROR_REPLY = "❌ Something went wrong processing your command. Please try again."


class Command(Enum):
    STATS = "stats"
    TOP = "top"
    EMOTE = "emote"
    RANK = "rank"
    PLATFORMS = "platforms"
    HELP = "help"
    METRICS = "metrics"


@dataclass(frozen=True)
class CommandSpec:
    aliases: tuple[str, ...]
    usage: str
    description: str
    admin: bool = False


COMMANDS: dict[Command, CommandSpec] = {
    Command.STATS: CommandSpec(
        ("s", "info"), "!stats [username]", "Shows a user's emote usage statistics",
    ),
    Command.TOP: CommandSpec(
        ("leaderboard", "ranking", "t"), "!top", "Shows the top 3 users by emotes used",
    ),
    Command.EMOTE: CommandSpec(
        ("e", "emoteinfo"), "!emote <code>", "Shows information about an emote",
    ),
    Command.RANK: CommandSpec(
        ("r", "position"), "!rank", "Shows your position in the ranking",
    ),
    Command.PLATFORMS: CommandSpec(
        ("p", "sources"), "!platforms", "Shows emote usage per platform",
    ),
    Command.HELP: CommandSpec(
        ("h", "commands"), "!help [command]", "Lists the available commands",
    ),
    Command.METRICS: CommandSpec(
        ("m",), "!metrics", "Shows bot metrics (channel owner only)", admin=True,
    ),
}


def _build_alias_map() -> dict[str, Command]:
    aliases: dict[str, Command] = {}
    for command, spec in COMMANDS.items():
        aliases[command.value] = command
        for alias in spec.aliases:
            aliases[alias] = command
    return aliases


_ALIASES = _build_alias_map()


def resolve_command(word: str) -> Command | None:
    """Map a command word or alias (with or without ``!``) to its Command."""
    return _ALIASES.get(word.lower().lstrip("!"))


def _utc_timestamp() -> float:
    return datetime.now(timezone.utc).timestamp()


# ══════════════════════════════════════════════════════════
#  Rate Limiter
# ══════════════════════════════════════════════════════════

class CommandRateLimiter:
    """Per-user rate limit plus per-user, per-command cooldown."""

    def __init__(
        self,
        rate_limit_seconds: float = 1.0,
        cooldown_seconds: float = 3.0,
        clock: Callable[[], float] = _utc_timestamp,
    ) -> None:
        self._rate_limit = rate_limit_seconds
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._last_command: dict[str, float] = {}
        self._cooldowns: dict[tuple[str, str], float] = {}

    def check(self, username: str) -> bool:
        """Return True if the user may issue any command right now."""
        now = self._clock()
        last = self._last_command.get(username)
        if last is not None and now - last < self._rate_limit:
            return False
        self._last_command[username] = now
        return True

    def check_cooldown(self, username: str, command: str) -> bool:
        """Return True if *command* is off cooldown for the user."""
        now = self._clock()
        key = (username, command)
        last = self._cooldowns.get(key)
        if last is not None and now - last < self._cooldown:
            return False
        self._cooldowns[key] = now
        return True

    def cleanup(self, max_age_seconds: float = 3600) -> int:
        """Remove entries older than *max_age_seconds* (call periodically)."""
        cutoff = self._clock() - max_age_seconds
        removed = 0
        for table in (self._last_command, self._cooldowns):
            stale = [k for k, t in table.items() if t < cutoff]
            for k in stale:
                del table[k]
            removed += len(stale)
        return removed

    def __len__(self) -> int:
        return len(self._last_command) + len(self._cooldowns)


# ══════════════════════════════════════════════════════════
#  Handler
# ══════════════════════════════════════════════════════════

class CommandHandler:
    """Parses, throttles and answers chat commands."""

    def __init__(
        self,
        config: TrackerConfig,
        store: StatsStore,
        catalog: EmoteCatalog,
        send: Callable[[str, str], Awaitable[None]],
        logger: logging.Logger | None = None,
        rate_limiter: CommandRateLimiter | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._config = config
        self._store = store
        self._catalog = catalog
        self._send = send
        self._logger = logger or logging.getLogger("emotes.commands")
        self._clock = clock
        self._owner = config.twitch.channel.lower()
        self.rate_limiter = rate_limiter or CommandRateLimiter(
            rate_limit_seconds=config.commands.rate_limit_seconds,
            cooldown_seconds=config.commands.cooldown_seconds,
        )

        self._command_map: dict[Command, Callable[[str, list[str]], Awaitable[str]]] = {
            Command.STATS: self._cmd_stats,
            Command.TOP: self._cmd_top,
            Command.EMOTE: self._cmd_emote,
            Command.RANK: self._cmd_rank,
            Command.PLATFORMS: self._cmd_platforms,
            Command.HELP: self._cmd_help,
            Command.METRICS: self._cmd_metrics,
        }

    async def handle_command(self, channel: str, username: str, text: str) -> str | None:
        """Answer one ``!command`` line. Returns the reply sent, if any."""
        parts = text.strip().lstrip("!").split()
        if not parts:
            return None

        if not self.rate_limiter.check(username):
            return None

        command = resolve_command(parts[0])
        args = parts[1:]

        try:
            if command is None:
                response = UNKNOWN_COMMAND_REPLY
            else:
                if not self.rate_limiter.check_cooldown(username, command.value):
                    return None
                if COMMANDS[command].admin and username.lower() != self._owner:
                    return None
                self._store.record_command()
                response = await self._command_map[command](username, args)
        except Exception:
            self._logger.exception("Command handler error for %s/%s", username, parts[0])
            response = ERROR_REPLY

        await self._reply(channel, response)
        return response

    async def _reply(self, channel: str, message: str) -> None:
        try:
            await self._send(channel, message)
        except Exception:
            self._logger.exception("Failed to send command response")

    # ══════════════════════════════════════════════════════════
    #  Commands
    # ══════════════════════════════════════════════════════════

    async def _cmd_stats(self, username: str, args: list[str]) -> str:
        target = args[0].lstrip("@") if args else username
        stats = await self._store.get_user_stats(target)
        if stats is None:
            return f"@{target} hasn't used any tracked emotes yet 🤔"
        favorite = self._store.get_most_used_emote(stats.emotes)
        active = days_since(stats.first_seen, self._clock())
        return (
            f"@{target} → Total: {stats.total} emotes | Active: {active} days | "
            f"Favorite: {favorite} ({stats.emotes.get(favorite, 0)}x) 📊"
        )

    async def _cmd_top(self, username: str, args: list[str]) -> str:
        top = await self._store.get_top_users(3)
        if not top:
            return "No statistics recorded yet 📊"
        ranking = " │ ".join(f"{i}. {name}: {s.total}" for i, (name, s) in enumerate(top, start=1))
        return f"🏆 Top {len(top)}: {ranking}"

    async def _cmd_emote(self, username: str, args: list[str]) -> str:
        if not args:
            return f"❌ Usage: {COMMANDS[Command.EMOTE].usage}"
        code = args[0]
        record = self._catalog.get_info(code)
        if record is None:
            return f'❌ Emote "{code}" not found'
        usage = await self._store.get_emote_usage_count(code)
        return f'Emote "{code}" ({record.platform.value}) → used {usage}x in total 🎯'

    async def _cmd_rank(self, username: str, args: list[str]) -> str:
        rank = await self._store.get_user_rank(username)
        if rank is None or rank[1] == 0:
            return f"@{username} is not ranked yet 📊"
        position, total = rank
        return f"@{username} → Rank #{position} │ Total: {total} emotes 🏆"

    async def _cmd_platforms(self, username: str, args: list[str]) -> str:
        totals = await self._store.get_platform_stats()
        if not totals:
            return "No platform statistics yet 📊"
        ordered = sorted(totals.items(), key=lambda kv: kv[1], reverse=True)
        return "📊 Usage by platform: " + " │ ".join(f"{p}: {c}" for p, c in ordered)

    async def _cmd_help(self, username: str, args: list[str]) -> str:
        if args:
            command = resolve_command(args[0])
            if command is None:
                return "❌ Command not found"
            spec = COMMANDS[command]
            aliases = ", ".join(f"!{a}" for a in spec.aliases)
            return f"ℹ️ {spec.usage} - {spec.description} │ Aliases: {aliases}"

        listed = ", ".join(f"!{c.value}" for c, spec in COMMANDS.items() if not spec.admin)
        return f"📚 Available commands: {listed} │ Use !help <command> for details"

    async def _cmd_metrics(self, username: str, args: list[str]) -> str:
        m = self._store.metrics
        return (
            f"📊 Metrics → Messages: {m.messages_processed} │ "
            f"Emotes: {m.emotes_detected} │ Commands: {m.commands_executed}"
        )
