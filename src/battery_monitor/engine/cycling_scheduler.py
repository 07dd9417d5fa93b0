#!/usr/bin/env python3
"""
Cycling Scheduler - replays a fixed telemetry dataset

Owns the immutable sample sequence, a cursor into it, and the single
"latest record" slot that the web server reads.

Tick:
    ┌──────────────┐   samples[cursor]   ┌──────────────────┐
    │  Tick Loop   │────────────────────▶│ Derivation Engine│
    │ (every 3 s)  │                     └────────┬─────────┘
    └──────────────┘                              │ DiagnosticRecord
           ▲                                      ▼
           │   cursor = (cursor + 1) % N     latest = record
           └──────────────────────────────────────┘

The tick loop is the only writer of (cursor, latest). Ticks are serialized
by a lock; readers never take it. Each tick publishes a new frozen record by
rebinding `latest`, so a reader sees either the previous or the new record.
"""

import copy
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..errors import DatasetError
from ..interfaces.diagnostic_record import DiagnosticRecord, TelemetrySample
from .derivation import derive, normalize

logger = logging.getLogger('battery-monitor.scheduler')

DEFAULT_INTERVAL_S = 3.0


def utc_now() -> datetime:
    """Default scheduler clock."""
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """
    Format a datetime as ISO-8601 UTC with millisecond precision.

    Examples:
        2024-01-01 00:00:00+00:00 -> "2024-01-01T00:00:00.000Z"

    Naive datetimes are taken to be UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime('%Y-%m-%dT%H:%M:%S.') + f"{dt.microsecond // 1000:03d}Z"


class CyclingScheduler:
    """
    Periodic replay of a telemetry dataset through the derivation engine.

    The first record is derived at construction, so get_latest() is valid
    before the first tick.
    """

    def __init__(
        self,
        samples: Sequence[Any],
        interval: float = DEFAULT_INTERVAL_S,
        clock: Optional[Callable[[], datetime]] = None,
        normalized: Optional[Sequence[TelemetrySample]] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            samples: Raw dataset entries (flat or 'enc'-nested), in replay order
            interval: Seconds between ticks
            clock: Returns the current aware datetime (injectable for tests)
            normalized: Pre-validated TelemetrySamples matching `samples`;
                normalized here when omitted

        Raises:
            DatasetError: If `samples` is empty
            SampleValidationError: If a sample is malformed
        """
        if not samples:
            raise DatasetError("dataset must contain at least one sample")
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")

        # Raw entries are kept for /api/all; the engine only sees the normalized form
        self._raw_samples = tuple(copy.deepcopy(list(samples)))
        if normalized is None:
            normalized = [normalize(raw) for raw in self._raw_samples]
        elif len(normalized) != len(self._raw_samples):
            raise DatasetError(
                f"normalized samples ({len(normalized)}) do not match dataset ({len(self._raw_samples)})"
            )
        self.samples = tuple(normalized)

        self.interval = interval
        self.clock = clock or utc_now

        self.cursor = 0
        self.running = False
        self.loop_thread: Optional[threading.Thread] = None
        self._tick_lock = threading.Lock()

        # Callback for new records (used by the web server for logging/metrics)
        self.on_tick: Optional[Callable[[DiagnosticRecord], None]] = None

        self.stats = {
            'tick_count': 0,
            'tick_errors': 0,
            'start_time': time.time(),
        }

        self.latest: DiagnosticRecord = derive(self.samples[0], format_timestamp(self.clock()))

        logger.info("=" * 60)
        logger.info("CyclingScheduler initializing")
        logger.info(f"  Samples: {len(self.samples)}")
        logger.info(f"  Interval: {self.interval:.1f} s")
        logger.info(f"  Initial: {self.latest.diagnostics.summary}")
        logger.info("=" * 60)

    def tick(self, now: Optional[datetime] = None) -> DiagnosticRecord:
        """
        Derive a record from the sample at the cursor and advance the cursor.

        Args:
            now: Capture time for the record (default: scheduler clock)

        Returns:
            The newly published record
        """
        with self._tick_lock:
            index = self.cursor
            timestamp = format_timestamp(now if now is not None else self.clock())
            record = derive(self.samples[index], timestamp)

            self.latest = record
            self.cursor = (index + 1) % len(self.samples)
            self.stats['tick_count'] += 1

        logger.debug(
            f"Tick #{self.stats['tick_count']}: sample {index} -> {record.diagnostics.summary}"
        )

        if record.diagnostics.anomalies:
            logger.debug(f"  Anomalies: {', '.join(record.diagnostics.anomalies)}")

        if self.on_tick:
            self.on_tick(record)

        return record

    # =========================================================================
    # Read-only accessors (transport layer)
    # =========================================================================

    def get_latest(self) -> DiagnosticRecord:
        """Most recently derived record."""
        return self.latest

    def get_all_samples(self) -> List[Any]:
        """The original dataset, as loaded. Callers get their own copy."""
        return copy.deepcopy(list(self._raw_samples))

    def health_check(self) -> Dict[str, Any]:
        """Liveness probe, independent of derivation state."""
        return {'ok': True, 'now': format_timestamp(self.clock())}

    def get_status(self) -> Dict[str, Any]:
        """Scheduler status for /status and /metrics."""
        latest = self.latest
        return {
            'timestamp': time.time(),
            'running': self.running,
            'interval_seconds': self.interval,
            'dataset_size': len(self.samples),
            'cursor': self.cursor,
            'tick_count': self.stats['tick_count'],
            'tick_errors': self.stats['tick_errors'],
            'uptime_seconds': time.time() - self.stats['start_time'],
            'latest': latest.to_dict(),
        }

    # =========================================================================
    # Tick loop
    # =========================================================================

    def _tick_loop(self):
        """
        Tick loop thread.

        Deadlines are fixed multiples of the interval from start, so a slow
        tick does not push later ticks back.
        """
        logger.info("Tick loop thread started")

        next_deadline = time.monotonic() + self.interval

        while self.running:
            wait_time = next_deadline - time.monotonic()

            # Sleep with periodic checks for shutdown
            while wait_time > 0 and self.running:
                time.sleep(min(wait_time, 0.5))
                wait_time = next_deadline - time.monotonic()

            if not self.running:
                break

            try:
                self.tick()
            except Exception as e:
                self.stats['tick_errors'] += 1
                logger.exception(f"Tick error: {e}")

            next_deadline += self.interval
            # Missed deadlines are dropped rather than replayed in a burst
            now = time.monotonic()
            if next_deadline <= now:
                skipped = int((now - next_deadline) // self.interval) + 1
                next_deadline += skipped * self.interval
                logger.warning(f"Tick loop fell behind, skipped {skipped} deadline(s)")

        logger.info("Tick loop thread stopped")

    def start(self):
        """Start the tick loop in a background thread."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting CyclingScheduler...")
        self.stats['start_time'] = time.time()
        self.running = True

        self.loop_thread = threading.Thread(
            target=self._tick_loop,
            name="TickLoop",
            daemon=True
        )
        self.loop_thread.start()

        logger.info("CyclingScheduler started")
        logger.info(f"  First tick in {self.interval:.1f} s")

    def stop(self):
        """Stop the tick loop."""
        logger.info("Stopping CyclingScheduler...")
        self.running = False

        if self.loop_thread and self.loop_thread is not threading.current_thread():
            self.loop_thread.join(timeout=2)

        uptime = time.time() - self.stats['start_time']
        logger.info("CyclingScheduler stopped")
        logger.info(f"  Uptime: {uptime:.1f}s")
        logger.info(f"  Ticks: {self.stats['tick_count']}")

    def run(self):
        """Run the scheduler (blocking)."""
        import signal

        # Handle shutdown signals
        def handle_signal(signum, frame):
            logger.info(f"Received signal {signum}")
            self.running = False

        signal.signal(signal.SIGTERM, handle_signal)
        signal.signal(signal.SIGINT, handle_signal)

        self.start()

        # Block until stopped
        try:
            while self.running:
                time.sleep(1)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()
