"""Application entry point for the otpwatch monitor."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from logging.handlers import RotatingFileHandler
from typing import Iterable, List, Optional

from art import tprint

import settings
from adapters.clipboard_sink import ClipboardSink
from adapters.imessage_source import IMessageSource
from adapters.logging_sink import LoggingSink
from adapters.notification_formatting import format_notification, mask_code
from adapters.notification_sink import NotificationSink
from adapters.sqlite_state import SQLiteStateStore
from core.config import DedupConfig, MonitorConfig
from core.errors import SourceUnavailable
from core.extractor import OTPExtractor
from core.models import CycleReport
from core.monitor import DETECTION_COUNT_KEY, OTPMonitor
from core.patterns import PatternLibrary
from core.ports import DispatchSink
from core.watermark import Watermark

NAME = "OTPWATCH"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    """Mask secret env values and, when enabled, the codes detections carry.

    Log calls that mention a code pass it as ``extra={"otp_code": code}``.
    """

    def __init__(
        self,
        fmt: str,
        datefmt: Optional[str] = None,
        secrets: Iterable[str] = (),
        mask_codes: bool = False,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        # Longest first so a secret containing another is masked whole.
        self._secrets = sorted({secret for secret in secrets if secret}, key=len, reverse=True)
        self._mask_codes = mask_codes

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        code = getattr(record, "otp_code", None)
        if self._mask_codes and code:
            message = message.replace(code, mask_code(code))
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _env_secrets(redact_cfg: dict) -> list[str]:
    """Values of the environment variables listed under ``logging.redact``."""

    if not redact_cfg.get("enabled", False):
        return []
    return [os.environ[name] for name in redact_cfg.get("patterns", []) if os.environ.get(name)]


def _redact_codes() -> bool:
    return bool((settings.LOGGING or {}).get("redact_codes", False))


def _log_file_handler(file_cfg: dict) -> RotatingFileHandler:
    path = file_cfg.get("path", "logs/otpwatch.log")
    if not os.path.isabs(path):
        path = os.path.join(settings.PROJECT_ROOT, path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
        backupCount=int(file_cfg.get("backup_count", 5)),
        encoding="utf-8",
    )


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    level = getattr(logging, str(config.get("level", "INFO")).upper(), logging.INFO)
    formatter = _RedactingFormatter(
        "%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        secrets=_env_secrets(config.get("redact", {})),
        mask_codes=_redact_codes(),
    )

    handlers: list[logging.Handler] = []
    if config.get("console", True):
        handlers.append(logging.StreamHandler())
    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        handlers.append(_log_file_handler(file_cfg))
    if not handlers:
        return

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers)


def _build_store() -> SQLiteStateStore:
    store = SQLiteStateStore(settings.STATE_DB_PATH)
    store.init_db()
    return store


def _build_sinks(dispatch: bool = True) -> List[DispatchSink]:
    sinks: List[DispatchSink] = []
    if dispatch and settings.DISPATCH_CLIPBOARD:
        sinks.append(ClipboardSink())
    if dispatch and settings.DISPATCH_NOTIFICATIONS:
        sinks.append(NotificationSink(settings.SENDER_ALIASES, sound=settings.NOTIFICATION_SOUND))
    if not sinks:
        sinks.append(LoggingSink(settings.SENDER_ALIASES, redact=_redact_codes()))
    return sinks


def _build_monitor(store: SQLiteStateStore, dispatch: bool = True) -> OTPMonitor:
    logger = logging.getLogger(__name__)
    if settings.DEDUP_MODE != "off":
        removed = store.cleanup_seen(settings.DEDUP_TTL_DAYS)
        logger.info("Dedup cleanup removed %s fingerprints", removed)

    library = PatternLibrary.from_config(settings.PATTERNS_CONFIG)
    logger.info("%s service rules and %s general rules are loaded", len(library.service_rules), len(library.general_rules))

    return OTPMonitor(
        source=IMessageSource(settings.SOURCE_DB_PATH),
        extractor=OTPExtractor(library),
        watermark=Watermark(store),
        store=store,
        sinks=_build_sinks(dispatch),
        config=MonitorConfig(
            poll_interval_seconds=settings.POLL_INTERVAL_SECONDS,
            batch_size=settings.BATCH_SIZE,
            fetch_timeout_seconds=settings.FETCH_TIMEOUT_SECONDS,
            catch_up=settings.CATCH_UP,
            redact_codes=_redact_codes(),
        ),
        dedup_config=DedupConfig(mode=settings.DEDUP_MODE, ttl_days=settings.DEDUP_TTL_DAYS),
    )


def _explain_unavailable(exc: SourceUnavailable) -> None:
    logger = logging.getLogger(__name__)
    logger.error("Cannot read messages: %s", exc.message)
    if exc.reason == "permission":
        print("Grant Full Disk Access to the app running otpwatch:")
        print("System Settings > Privacy & Security > Full Disk Access")
    elif exc.reason == "missing":
        print(f"No Messages database at {settings.SOURCE_DB_PATH}")


async def _run_monitor() -> None:
    logger = logging.getLogger(__name__)
    monitor = _build_monitor(_build_store())

    # Signals only request a stop; monitor.stop() lets the current cycle finish.
    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    try:
        await monitor.start()
    except SourceUnavailable as exc:
        _explain_unavailable(exc)
        raise SystemExit(1) from exc

    logger.info("Watching %s. Press Ctrl+C to stop.", settings.SOURCE_DB_PATH)
    await stop_requested.wait()
    await monitor.stop()
    state = monitor.state
    logger.info("Stopped after %s detections in total", state.detection_count)


def _run() -> None:
    _print_banner()
    _configure_logging()
    logging.getLogger(__name__).info("Starting otpwatch")
    asyncio.run(_run_monitor())


def _print_report(report: CycleReport) -> None:
    redact = _redact_codes()
    print(f"Messages checked: {report.messages_seen} (skipped {report.messages_skipped})")
    print(f"Detections: {len(report.detections)} (duplicates {report.duplicates})")
    for detection in report.detections:
        print("  " + format_notification(detection, settings.SENDER_ALIASES, mode="line", redact=redact))
    for failure in report.dispatch_failures:
        print(f"  dispatch failed: {failure.sink}: {failure.error}")
    print(f"Watermark: {report.watermark}")


def _scan(dispatch: bool) -> int:
    _configure_logging()

    async def _run_scan() -> Optional[CycleReport]:
        monitor = _build_monitor(_build_store(), dispatch=dispatch)
        return await monitor.poll_now()

    report = asyncio.run(_run_scan())
    if report is None:
        return 1
    _print_report(report)
    if report.error:
        print(f"Error: {report.error}")
        return 1
    return 0


def _status(limit: int) -> int:
    store = _build_store()
    watermark = Watermark(store)
    print(f"Source: {settings.SOURCE_DB_PATH}")
    print(f"Watermark: {watermark.read()}")
    print(f"Detections: {store.get_value(DETECTION_COUNT_KEY) or 0}")
    recent = store.recent_detections(limit)
    if recent:
        print("Recent:")
    redact = _redact_codes()
    for detection in recent:
        print("  " + format_notification(detection, settings.SENDER_ALIASES, mode="line", redact=redact))
    return 0


def _reset(what: str) -> int:
    _configure_logging()

    async def _run_reset() -> None:
        monitor = _build_monitor(_build_store(), dispatch=False)
        if what == "watermark":
            await monitor.reset_watermark()
        else:
            await monitor.reset_statistics()

    asyncio.run(_run_reset())
    print(f"Reset {what}.")
    return 0


def _extract(text: str) -> int:
    library = PatternLibrary.from_config(settings.PATTERNS_CONFIG)
    candidate = OTPExtractor(library).extract(text)
    if candidate is None:
        print("No code found")
        return 1
    print(f"{candidate.captured_value} (rule {candidate.rule_name})")
    return 0


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="otpwatch")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the monitor")
    scan_parser = subparsers.add_parser("scan", help="Run one poll cycle and print what was found")
    scan_parser.add_argument(
        "--no-dispatch",
        action="store_true",
        help="Log detections instead of copying them or raising notifications",
    )
    status_parser = subparsers.add_parser("status", help="Show the watermark and recent detections")
    status_parser.add_argument("--limit", type=int, default=5)
    subparsers.add_parser("reset-watermark", help="Reprocess the message log from the beginning")
    subparsers.add_parser("reset-stats", help="Reset the detection counter")
    extract_parser = subparsers.add_parser("extract", help="Extract a code from TEXT")
    extract_parser.add_argument("text")

    args = parser.parse_args(argv)
    if args.command == "scan":
        raise SystemExit(_scan(dispatch=not args.no_dispatch))
    if args.command == "status":
        raise SystemExit(_status(args.limit))
    if args.command == "reset-watermark":
        raise SystemExit(_reset("watermark"))
    if args.command == "reset-stats":
        raise SystemExit(_reset("statistics"))
    if args.command == "extract":
        raise SystemExit(_extract(args.text))
    _run()


if __name__ == "__main__":
    main()
