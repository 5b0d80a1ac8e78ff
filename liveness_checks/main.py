from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys
from pathlib import Path

import httpx

from liveness_checks.checks import CheckResult, check_target
from liveness_checks.config import DEFAULT_CONFIG_PATH, ConfigError, MonitorConfig, describe_config, load_config
from liveness_checks.dedup import NotificationDeduplicator, TtlCache
from liveness_checks.identity import discover_server_identity
from liveness_checks.notifier import AlertNotifier, messagebird_config_from_settings
from liveness_checks.pipeline import CheckScheduler, FailureAggregator, new_result_channel
from liveness_checks.targets import Target


LOGGER = logging.getLogger("liveness-monitor")

USER_AGENT = "liveness-monitor/1.0"


async def run_monitor(config: MonitorConfig, *, once: bool = False) -> int:
    settings = config.config
    targets = config.targets()
    LOGGER.info("Liveness monitor running config=%s", describe_config(config))

    server = discover_server_identity(settings.server_nice_name)
    deduplicator = NotificationDeduplicator(TtlCache(default_ttl_seconds=settings.default_ttl_seconds))
    channel = new_result_channel(targets)

    async with httpx.AsyncClient(headers={"User-Agent": USER_AGENT}) as http_client:
        notifier = AlertNotifier(http_client, messagebird_config_from_settings(settings), server)

        async def _check(target: Target) -> CheckResult:
            return await check_target(target, http_client, settings=settings)

        scheduler = CheckScheduler(
            targets,
            _check,
            channel,
            interval_seconds=settings.check_frequency_seconds,
        )
        aggregator = FailureAggregator(channel, deduplicator, notifier.notify)
        aggregator_task = asyncio.create_task(aggregator.run_forever())

        try:
            if once:
                await scheduler.run_round()
                await channel.join()
                await aggregator.drain()
                return 0
            await scheduler.run_forever()
        finally:
            aggregator_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await aggregator_task
    return 0


def _configure_logging(*, output: bool, log_level: str) -> None:
    # Quiet mode: only fatal config errors (printed directly) reach the console.
    level = getattr(logging, str(log_level).upper(), logging.INFO) if output else logging.CRITICAL
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stdout,
    )

    # Keep basic-auth headers and URLs out of the log.
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Process, TCP and HTTP liveness monitor")
    parser.add_argument(
        "-f",
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to YAML config (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "-o",
        "--output",
        action="store_true",
        help="Write status lines to the console",
    )
    parser.add_argument("--once", action="store_true", help="Run one check round and exit")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level when console output is on (INFO, WARNING, ...)",
    )
    args = parser.parse_args(argv)

    _configure_logging(output=bool(args.output), log_level=args.log_level)

    try:
        config = load_config(Path(args.config))
    except ConfigError as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        return 2

    try:
        return asyncio.run(run_monitor(config, once=bool(args.once)))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
