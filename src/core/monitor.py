"""Poll scheduler for the message log (core domain).

The monitor enforces a strict order for every poll cycle:
1) Read the watermark W
2) Fetch the next page of messages above W, oldest first
3) Fast-exit for already processed, outgoing or empty messages
4) Extract a code
5) Detection fingerprint check (optional)
6) Persist the detection, mark its fingerprint, dispatch to sinks
7) Advance the watermark after the page is fully handled

Lifecycle: stopped -> starting -> running (idle <-> polling) -> stopped.
All state changes happen under one lock on the monitor's event loop, so
cycles never overlap and observers only ever see whole snapshots.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
from dataclasses import replace
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Coroutine, Iterable, Optional

from core.config import DedupConfig, MonitorConfig
from core.dedup import compute_fingerprint
from core.errors import DispatchFailure, SourceUnavailable
from core.extractor import OTPExtractor
from core.models import CycleReport, Detection, Message, MonitorPhase, MonitorState
from core.ports import DispatchSink, MessageSourcePort, StatePort
from core.watermark import Watermark

LOGGER = logging.getLogger(__name__)

DETECTION_COUNT_KEY = "cumulative-detection-count"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OTPMonitor:
    """Orchestrates polling, extraction, dedup, persistence and dispatch."""

    def __init__(
        self,
        source: MessageSourcePort,
        extractor: OTPExtractor,
        watermark: Watermark,
        store: StatePort,
        sinks: Iterable[DispatchSink] = (),
        config: Optional[MonitorConfig] = None,
        dedup_config: Optional[DedupConfig] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._source = source
        self._extractor = extractor
        self._watermark = watermark
        self._store = store
        self._sinks = list(sinks)
        self._config = config or MonitorConfig()
        self._dedup = dedup_config or DedupConfig()
        self._clock = clock

        recent = store.recent_detections(1)
        self._state = MonitorState(
            detection_count=store.get_value(DETECTION_COUNT_KEY) or 0,
            last_detection=recent[0] if recent else None,
        )
        self._cycle_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._timer_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._degraded = False

    @property
    def state(self) -> MonitorState:
        """Latest published snapshot; safe to read from any thread."""

        return self._state

    def _publish(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)

    def _display(self, code: str) -> str:
        return "*" * len(code) if self._config.redact_codes else code

    async def start(self) -> MonitorState:
        """Check the source, poll once immediately, then arm the timer.

        Raises SourceUnavailable (after publishing the reason as status text)
        when the source cannot be read.
        """

        if self._state.phase is not MonitorPhase.STOPPED:
            return self._state

        self._loop = asyncio.get_running_loop()
        self._stop_event.clear()
        self._publish(phase=MonitorPhase.STARTING, status_text="Starting")
        try:
            await self._call_source(self._source.check_available)
            if not self._config.catch_up and not self._watermark.is_initialized():
                latest = await self._call_source(self._source.latest_sequence_id)
                self._watermark.advance(latest)
                LOGGER.info("Catch-up disabled; skipping history up to message %s", latest)
            watermark = self._watermark.read()
        except SourceUnavailable as exc:
            self._publish(phase=MonitorPhase.STOPPED, status_text=exc.message)
            LOGGER.warning("Cannot start monitoring: %s", exc.message)
            raise
        except Exception as exc:
            self._publish(phase=MonitorPhase.STOPPED, status_text=f"Start failed: {exc}")
            LOGGER.exception("Cannot start monitoring")
            raise

        if self._stop_event.is_set():
            self._publish(phase=MonitorPhase.STOPPED, status_text="Ready")
            return self._state

        self._publish(phase=MonitorPhase.IDLE, status_text="Monitoring")
        LOGGER.info(
            "Monitoring started (interval=%ss, watermark=%s)",
            self._config.poll_interval_seconds,
            watermark,
        )

        await self.poll_now()
        if not self._stop_event.is_set():
            self._timer_task = asyncio.create_task(self._tick_loop(), name="otpwatch-poll")
        return self._state

    async def stop(self) -> None:
        """Cancel the timer; an in-flight cycle is allowed to finish."""

        if self._state.phase is MonitorPhase.STOPPED:
            return

        self._stop_event.set()
        task, self._timer_task = self._timer_task, None
        if task is not None:
            await task
        # An on-demand cycle may still hold the lock.
        async with self._cycle_lock:
            self._publish(phase=MonitorPhase.STOPPED, status_text="Ready")
        LOGGER.info("Monitoring stopped")

    async def poll_now(self) -> Optional[CycleReport]:
        """Run one cycle now; returns None if a cycle is already running."""

        if self._cycle_lock.locked():
            LOGGER.debug("Poll cycle already in flight; skipping")
            return None
        async with self._cycle_lock:
            return await self._run_cycle()

    async def reset_watermark(self) -> None:
        async with self._cycle_lock:
            self._watermark.reset()
            self._publish(status_text="Ready")
        LOGGER.info("Watermark reset to 0")

    async def reset_statistics(self) -> None:
        async with self._cycle_lock:
            self._store.set_value(DETECTION_COUNT_KEY, 0)
            self._publish(detection_count=0, last_detection=None, status_text="Ready")
        LOGGER.info("Detection statistics reset")

    def submit(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        """Schedule one of the monitor coroutines from another thread."""

        loop = self._loop
        if loop is None or loop.is_closed():
            coro.close()
            raise RuntimeError("Monitor is not attached to a running event loop")
        return asyncio.run_coroutine_threadsafe(coro, loop)

    async def _tick_loop(self) -> None:
        interval = self._config.poll_interval_seconds
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                # A failed tick must not end the timer; the next one retries.
                try:
                    await self.poll_now()
                except Exception:
                    LOGGER.exception("Poll tick failed")

    async def _call_source(self, func: Callable[..., Any], *args: Any) -> Any:
        # Source calls block on SQLite, so they run off the event loop.
        call = asyncio.to_thread(func, *args)
        timeout = self._config.fetch_timeout_seconds
        if timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout)
        except asyncio.TimeoutError as exc:
            raise SourceUnavailable(
                f"Message source did not answer within {timeout:g}s", reason="timeout"
            ) from exc

    async def _run_cycle(self) -> CycleReport:
        report = CycleReport()
        if self._state.is_running:
            self._publish(phase=MonitorPhase.POLLING)

        try:
            low = self._watermark.read()
            report.watermark = low
            while True:
                messages = await self._call_source(self._source.fetch_since, low, self._config.batch_size)
                if not messages:
                    break

                highest = low
                for message in messages:
                    await self._process(message, low, report)
                    highest = max(highest, message.sequence_id)

                # The page is fully handled; only now is it safe to move past it.
                self._watermark.advance(highest)
                report.watermark = max(low, highest)
                if highest <= low or len(messages) < self._config.batch_size:
                    break
                low = highest
        except SourceUnavailable as exc:
            report.error = exc.message
            self._degraded = True
            self._publish(status_text=exc.message)
            LOGGER.warning("Poll cycle aborted: %s", exc.message)
        except Exception as exc:
            report.error = str(exc) or type(exc).__name__
            self._degraded = True
            self._publish(status_text=f"Poll failed: {report.error}")
            LOGGER.exception("Poll cycle failed")
        else:
            if self._degraded:
                self._degraded = False
                LOGGER.info("Polling recovered")
                if not report.detections:
                    self._publish(status_text="Monitoring")
        finally:
            if self._state.phase is MonitorPhase.POLLING:
                self._publish(phase=MonitorPhase.IDLE)

        if report.detections or report.messages_seen:
            LOGGER.debug(
                "Cycle done: seen=%s skipped=%s detections=%s watermark=%s",
                report.messages_seen,
                report.messages_skipped,
                len(report.detections),
                report.watermark,
            )
        return report

    async def _process(self, message: Message, floor: int, report: CycleReport) -> None:
        report.messages_seen += 1

        # Sequence ids only grow, so anything at or below the watermark has
        # already been handled.
        if message.sequence_id <= floor:
            report.messages_skipped += 1
            return
        if message.is_outgoing or not message.body.strip():
            report.messages_skipped += 1
            return

        candidate = self._extractor.extract(message.body)
        if candidate is None:
            return

        detection = Detection(
            code=candidate.captured_value,
            sender=message.sender,
            source_message=message.sequence_id,
            detected_at=self._clock(),
            message_timestamp=message.timestamp,
            rule_name=candidate.rule_name,
        )

        fingerprint = compute_fingerprint(
            detection.sender, detection.code, detection.message_timestamp, self._dedup.mode
        )
        if fingerprint and self._store.is_seen(fingerprint):
            report.duplicates += 1
            LOGGER.info("Dedup skip for message %s (same code)", message.sequence_id)
            return

        self._record(detection)
        # Marked only once the detection is recorded, so a failed write is
        # retried on the next cycle. Marked before dispatch: a crash during
        # dispatch loses one notification rather than repeating it.
        if fingerprint:
            self._store.mark_seen(fingerprint)
        report.detections.append(detection)
        LOGGER.info(
            "OTP %s detected from %s (message %s, rule %s)",
            self._display(detection.code),
            detection.sender,
            detection.source_message,
            detection.rule_name,
            extra={"otp_code": detection.code},
        )
        await self._dispatch(detection, report)

    def _record(self, detection: Detection) -> None:
        count = self._state.detection_count + 1
        self._store.save_detection(detection)
        self._store.set_value(DETECTION_COUNT_KEY, count)
        self._publish(
            last_detection=detection,
            detection_count=count,
            status_text=f"Found OTP: {self._display(detection.code)}",
        )

    async def _dispatch(self, detection: Detection, report: CycleReport) -> None:
        # Best effort: a failing sink is reported, never retried, and does not
        # stop the remaining sinks.
        for sink in self._sinks:
            name = type(sink).__name__
            try:
                await sink.on_detection(detection)
            except Exception as exc:
                LOGGER.exception(
                    "Dispatch to %s failed for message %s",
                    name,
                    detection.source_message,
                    extra={"otp_code": detection.code},
                )
                failure = DispatchFailure(sink=name, detection=detection, error=str(exc) or type(exc).__name__)
                report.dispatch_failures.append(failure)
                self._publish(status_text=f"Dispatch failed ({name}): {failure.error}")
