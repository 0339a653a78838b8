import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

import discord

from .config import (
    ConfigurationError,
    describe_config,
    get_config_path,
    read_config_file,
    resolve_api_key,
)
from .discord_bot import RetentionBot
from .services.config_watcher import ConfigStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1


def _resolve_log_level(level: Optional[str]) -> int:
    # Accepts aliases such as WARN and FATAL; unknown names fall back to INFO.
    value = logging.getLevelName((level or "INFO").strip().upper())
    return value if isinstance(value, int) else logging.INFO


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=_resolve_log_level(level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Deletes Discord messages older than a per-channel age")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to configuration.json (default: $CONFIGURATION_FILE_LOCATION or ./configuration.json)",
    )
    parser.add_argument("--print-config", action="store_true", help="Print active config summary")
    parser.add_argument(
        "--config-poll-sec",
        type=float,
        default=2.0,
        help="How often to check the configuration file for changes",
    )
    parser.add_argument("--status-host", default="127.0.0.1", help="Status API bind host")
    parser.add_argument(
        "--status-port",
        type=int,
        default=0,
        help="Serve the status API on this port (0 disables it)",
    )
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    return parser


async def _run(args: argparse.Namespace) -> int:
    config_path = get_config_path(args.config)
    store = ConfigStore(config_path)
    try:
        config = await store.load()
    except (FileNotFoundError, ConfigurationError) as exc:
        logger.error("%s", exc)
        return EXIT_FATAL

    token = resolve_api_key(config, config_path)
    if not token:
        logger.error("Missing Discord API key (DiscordApiKey or DISCORD_API_KEY).")
        return EXIT_FATAL

    bot = RetentionBot(store)
    store.start_watching(args.config_poll_sec)

    status_server = None
    status_task: Optional[asyncio.Task] = None
    if args.status_port:
        from discord_retention_bot.control_center.app import create_app
        import uvicorn

        app = create_app(bot.supervisor, config_store=store)
        status_server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=args.status_host,
                port=args.status_port,
                log_level=_resolve_log_level(args.log_level),
            )
        )
        status_task = asyncio.create_task(status_server.serve(), name="status-api")

    logger.debug("Starting Discord bot.")
    try:
        await bot.start(token)
    except discord.LoginFailure as exc:
        logger.error("Discord login failed: %s", exc)
        return EXIT_FATAL
    finally:
        if not bot.is_closed():
            await bot.close()
        await store.stop_watching()
        if status_server is not None and status_task is not None:
            status_server.should_exit = True
            await status_task
    return EXIT_OK


def main() -> None:
    args = _build_parser().parse_args()
    _configure_logging(args.log_level)

    if args.print_config:
        config_path = get_config_path(args.config)
        try:
            config = read_config_file(config_path)
        except (FileNotFoundError, ConfigurationError) as exc:
            print(str(exc), file=sys.stderr)
            sys.exit(EXIT_FATAL)
        for line in describe_config(config, config_path):
            print(line)
        return

    try:
        code = asyncio.run(_run(args))
    except KeyboardInterrupt:
        code = EXIT_OK
    sys.exit(code)


if __name__ == "__main__":
    main()
