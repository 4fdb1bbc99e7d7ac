from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import Optional, Sequence

from pydantic import ValidationError

from .config import ConfigPathError, WatcherSettings, load_settings, parse_duration
from .config_store import ConfigStore
from .orchestrator import SyncOrchestrator
from .remote_source import RemoteParameterClient
from .service_reloader import build_reloader

logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2


def _duration(raw: str) -> float:
    try:
        return parse_duration(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Poll a parameter endpoint and keep a service's .env file in sync.",
    )
    parser.add_argument("--endpoint", default=None, help="HTTP endpoint to poll.")
    parser.add_argument(
        "--interval",
        type=_duration,
        default=None,
        help="Polling interval (e.g. 30s, 1m). Default: 30s.",
    )
    parser.add_argument(
        "--env",
        dest="env_path",
        default=None,
        help="Path to the .env file (default: ~/sp1-cluster/infra/.env).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Don't run systemctl commands (good for local testing).",
    )
    parser.add_argument("--service", default=None, help="systemd unit to restart (default: bidder).")
    parser.add_argument(
        "--http-timeout",
        type=_duration,
        default=None,
        help="Timeout for one endpoint request (default: 10s).",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: INFO).")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit.")
    return parser


def _configure_logging(settings: WatcherSettings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handle(signum, _frame) -> None:
        logger.info("Received %s, stopping after the current cycle", signal.Signals(signum).name)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _handle)


def build_orchestrator(settings: WatcherSettings) -> SyncOrchestrator:
    env_path = settings.resolved_env_path()
    return SyncOrchestrator(
        source=RemoteParameterClient(endpoint=settings.endpoint, timeout_s=settings.http_timeout_s),
        store=ConfigStore(env_path),
        reloader=build_reloader(
            dry_run=settings.dry_run,
            service=settings.service,
            use_sudo=settings.use_sudo,
            timeout_s=settings.command_timeout_s,
        ),
    )


def main(argv: Optional[Sequence[str]] = None, *, stop_event: Optional[threading.Event] = None) -> int:
    args = _parser().parse_args(argv)
    try:
        settings = load_settings(
            endpoint=args.endpoint,
            interval_s=args.interval,
            env_path=args.env_path,
            dry_run=args.dry_run,
            service=args.service,
            http_timeout_s=args.http_timeout,
            log_level=args.log_level,
        )
    except ValidationError as exc:
        print(f"error: invalid settings: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    _configure_logging(settings)
    try:
        orchestrator = build_orchestrator(settings)
    except ConfigPathError as exc:
        logger.critical("%s", exc)
        return EXIT_CONFIG_ERROR

    logger.info("Starting bidder config watcher")
    logger.info("Endpoint: %s", settings.endpoint)
    logger.info("Interval: %gs", settings.interval_s)
    logger.info(".env path: %s", settings.resolved_env_path())
    if settings.dry_run:
        logger.info("Dry-run mode: systemctl commands will NOT be executed")

    if stop_event is None:
        stop_event = threading.Event()
        _install_signal_handlers(stop_event)
    orchestrator.run_forever(
        settings.interval_s,
        stop_event=stop_event,
        max_cycles=1 if args.once else None,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
