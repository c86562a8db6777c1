"""CLI entry point for emote-tracker."""
import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from .config import load_config
from .errors import ChannelResolutionError
from .main import EmoteTrackerApp, reset_statistics


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="emote-tracker — Twitch chat emote statistics")
    parser.add_argument("--config", type=str, help="Path to config.yaml")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--validate-config", action="store_true", help="Validate config and exit without starting")
    parser.add_argument("-r", "--reset", action="store_true", help="Erase all statistics (asks for confirmation)")
    return parser.parse_args(argv)


def confirm_reset() -> bool:
    try:
        answer = input("⚠️  This will erase ALL statistics. Continue? (y/N) ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


async def main_async(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger = logging.getLogger("emotes")

    # Config path resolution
    config_path = args.config
    if not config_path and Path("./config.yaml").exists():
        config_path = "./config.yaml"
    if not config_path:
        logger.error("No config file found. Use --config or place config.yaml in CWD.")
        sys.exit(1)

    try:
        config = load_config(config_path)
    except Exception as e:
        logger.error("Config validation failed: %s", e)
        sys.exit(1)

    if args.validate_config:
        logger.info("Config is valid.")
        return

    if args.reset:
        if confirm_reset():
            await reset_statistics(config)
            logger.info("Statistics reset.")
        else:
            logger.info("Reset cancelled.")
        return

    app = EmoteTrackerApp(config_path, config=config)

    # Signal handling (Unix only; Windows uses KeyboardInterrupt)
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(app.stop()))

    exit_code = 0
    try:
        await app.start()
    except KeyboardInterrupt:
        pass
    except ChannelResolutionError as e:
        logger.error("%s", e)
        exit_code = 1
    except Exception:
        logger.exception("Fatal error during startup")
        exit_code = 1
    finally:
        await app.stop()

    if exit_code:
        sys.exit(exit_code)


def main() -> None:
    """Sync entry point for pyproject.toml [project.scripts]."""
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
