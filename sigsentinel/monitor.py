"""Local live-audio monitor playback with jitter buffering and gain control."""

from __future__ import annotations

import dataclasses
import functools
import logging
import math
import queue
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol

from .chanutil import publish_latest
from .sinks import SYSTEM_DEFAULT_DEVICE, open_default_sink

MIN_GAIN_DB = -60.0
MAX_GAIN_DB = 24.0
DEFAULT_BUFFER_FRAMES = 128
DEFAULT_JITTER_FRAMES = 6

_INT16_MIN = -32768
_INT16_MAX = 32767
_UINT32_MASK = 0xFFFFFFFF
_WORKER_POLL = 0.05

_log = logging.getLogger(__name__)


class _Sink(Protocol):
    def write_pcm(self, samples: Sequence[int]) -> None: ...

    def close(self) -> None: ...


@dataclass
class Frame:
    """One decoded PCM frame from the RTP stream."""

    samples: list[int]
    received_at: Optional[datetime] = None
    rtp_timestamp: int = 0


@dataclass(frozen=True)
class MonitorStatus:
    """Monitor runtime state exposed to callers."""

    enabled: bool
    muted: bool
    gain_db: float
    output_device: str
    last_error: str
    updated_at: datetime


@dataclass
class MonitorConfig:
    """Settings for a MonitorManager."""

    output_device: str = ""
    gain_db: float = 0.0
    buffer_frames: int = 0
    jitter_frames: int = 0
    sink_factory: Optional[Callable[[str], _Sink]] = None
    logger: Optional[logging.Logger] = None
    on_status_change: Optional[Callable[[MonitorStatus], None]] = None
    on_error: Optional[Callable[[BaseException], None]] = None


class MonitorClosedError(RuntimeError):
    """Raised when a closed MonitorManager is used."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_output_device(value: str) -> str:
    """Trim a device name, mapping empty to 'system-default'."""
    value = value.strip()
    return value or SYSTEM_DEFAULT_DEVICE


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def apply_monitor_audio(samples: Sequence[int], muted: bool, gain_db: float) -> list[int]:
    """Apply mute and gain to samples, clamping to the 16-bit range."""
    if muted:
        return [0] * len(samples)
    scale = 10 ** (gain_db / 20.0)
    return [
        min(_INT16_MAX, max(_INT16_MIN, _round_half_away(sample * scale)))
        for sample in samples
    ]


def rtp_timestamp_before(a: int, b: int) -> bool:
    """Wrap-aware ordering of 32-bit RTP timestamps (valid within 2**31 of each other)."""
    return ((a - b) & _UINT32_MASK) >= 0x80000000


def _compare_timestamps(a: int, b: int) -> int:
    if rtp_timestamp_before(a, b):
        return -1
    if rtp_timestamp_before(b, a):
        return 1
    return 0


class JitterBuffer:
    """Reorders frames by RTP timestamp, skipping gaps when too many frames wait."""

    def __init__(self, max_pending: int) -> None:
        self.max_pending = max_pending if max_pending > 0 else DEFAULT_JITTER_FRAMES
        self.pending: dict[int, Frame] = {}
        self.expected = 0
        self.ready = False

    def _advance(self, timestamp: int, frame: Frame) -> None:
        step = len(frame.samples) or 1
        self.expected = (timestamp + step) & _UINT32_MASK

    def push(self, frame: Frame) -> list[Frame]:
        """Add a frame and return the frames now ready to play, in order."""
        if not frame.samples:
            return []
        if not self.ready:
            self.expected = frame.rtp_timestamp
            self.ready = True
        elif rtp_timestamp_before(frame.rtp_timestamp, self.expected):
            # Late frame that was already played or skipped.
            return []

        self.pending.setdefault(
            frame.rtp_timestamp, dataclasses.replace(frame, samples=list(frame.samples))
        )

        out = []
        while self.expected in self.pending:
            item = self.pending.pop(self.expected)
            out.append(item)
            self._advance(self.expected, item)

        if len(self.pending) > self.max_pending:
            keys = sorted(self.pending, key=functools.cmp_to_key(_compare_timestamps))
            for ts in keys:
                if len(self.pending) <= self.max_pending:
                    break
                if rtp_timestamp_before(ts, self.expected):
                    del self.pending[ts]
                    continue
                item = self.pending.pop(ts)
                out.append(item)
                self._advance(ts, item)
        return out


@dataclass
class _Worker:
    sink: _Sink
    frames: "queue.Queue[list[int]]"
    jitter: JitterBuffer
    stop: threading.Event = field(default_factory=threading.Event)
    thread: Optional[threading.Thread] = None


class MonitorManager:
    """Plays live audio frames through a local output sink."""

    def __init__(self, config: Optional[MonitorConfig] = None) -> None:
        cfg = dataclasses.replace(config) if config is not None else MonitorConfig()
        if cfg.buffer_frames <= 0:
            cfg.buffer_frames = DEFAULT_BUFFER_FRAMES
        if cfg.jitter_frames <= 0:
            cfg.jitter_frames = DEFAULT_JITTER_FRAMES
        if cfg.sink_factory is None:
            cfg.sink_factory = open_default_sink
        self._cfg = cfg
        self._lock = threading.Lock()
        self._enabled = False
        self._muted = False
        gain = cfg.gain_db
        self._gain_db = gain if MIN_GAIN_DB <= gain <= MAX_GAIN_DB else 0.0
        self._output_device = normalize_output_device(cfg.output_device)
        self._last_error = ""
        self._updated_at = _now()
        self._worker: Optional[_Worker] = None
        self._closed = False

    def snapshot(self) -> MonitorStatus:
        """Return the current monitor status."""
        with self._lock:
            return self._snapshot_locked()

    def set_listen(self, enabled: bool) -> None:
        """Start or stop playback."""
        if enabled:
            error: Optional[BaseException] = None
            with self._lock:
                self._ensure_open()
                if not self._enabled:
                    try:
                        self._start_locked()
                    except RuntimeError as err:
                        error = err
                status = self._snapshot_locked()
            self._emit_status(status)
            if error is not None:
                raise error
            return
        with self._lock:
            self._ensure_open()
            worker = self._detach_locked()
        self._stop_worker(worker)
        self._emit_status(self.snapshot())

    def set_muted(self, muted: bool) -> None:
        """Mute or unmute playback."""
        with self._lock:
            self._ensure_open()
            self._muted = muted
            self._updated_at = _now()
            status = self._snapshot_locked()
        self._emit_status(status)

    def set_gain_db(self, gain_db: float) -> None:
        """Set playback gain in decibels."""
        if not MIN_GAIN_DB <= gain_db <= MAX_GAIN_DB:
            raise ValueError(
                f"monitor gain must be between {MIN_GAIN_DB:.0f} and {MAX_GAIN_DB:.0f} dB"
            )
        with self._lock:
            self._ensure_open()
            self._gain_db = gain_db
            self._updated_at = _now()
            status = self._snapshot_locked()
        self._emit_status(status)

    def set_output_device(self, output_device: str) -> None:
        """Switch the output device, restarting playback if it is running."""
        output_device = normalize_output_device(output_device)
        with self._lock:
            self._ensure_open()
            if output_device == self._output_device:
                status = self._snapshot_locked()
                listening = None
            else:
                listening = self._enabled
                self._output_device = output_device
                self._updated_at = _now()
        if listening is None:
            self._emit_status(status)
            return
        if not listening:
            self._emit_status(self.snapshot())
            return
        self.set_listen(False)
        self.set_listen(True)

    def push_frame(self, frame: Frame) -> None:
        """Queue a frame for playback; ignored when not listening."""
        if not frame.samples:
            return
        with self._lock:
            worker = self._worker
            if self._closed or not self._enabled or worker is None:
                return
            ordered = worker.jitter.push(frame)
            muted = self._muted
            gain_db = self._gain_db
        for item in ordered:
            samples = apply_monitor_audio(item.samples, muted, gain_db)
            if samples:
                publish_latest(worker.frames, samples)

    def close(self) -> None:
        """Stop playback and refuse further changes."""
        with self._lock:
            if self._closed:
                return
            worker = self._detach_locked()
            self._closed = True
        self._stop_worker(worker)
        self._emit_status(self.snapshot())

    def _ensure_open(self) -> None:
        if self._closed:
            raise MonitorClosedError("monitor manager is closed")

    def _start_locked(self) -> None:
        factory = self._cfg.sink_factory
        assert factory is not None
        try:
            sink = factory(self._output_device)
        except Exception as err:
            wrapped = RuntimeError(f"monitor output start failed: {err}")
            wrapped.__cause__ = err
            self._set_error_locked(wrapped)
            raise wrapped from err
        worker = _Worker(
            sink=sink,
            frames=queue.Queue(maxsize=self._cfg.buffer_frames),
            jitter=JitterBuffer(self._cfg.jitter_frames),
        )
        worker.thread = threading.Thread(
            target=self._run_worker, args=(worker,), name="monitor-output", daemon=True
        )
        self._enabled = True
        self._worker = worker
        self._last_error = ""
        self._updated_at = _now()
        worker.thread.start()

    def _detach_locked(self) -> Optional[_Worker]:
        worker = self._worker
        self._enabled = False
        self._worker = None
        self._updated_at = _now()
        return worker

    @staticmethod
    def _stop_worker(worker: Optional[_Worker]) -> None:
        if worker is None:
            return
        worker.stop.set()
        if worker.thread is not None and worker.thread is not threading.current_thread():
            worker.thread.join()
        try:
            worker.sink.close()
        except Exception:
            pass

    def _run_worker(self, worker: _Worker) -> None:
        while not worker.stop.is_set():
            try:
                samples = worker.frames.get(timeout=_WORKER_POLL)
            except queue.Empty:
                continue
            if worker.stop.is_set():
                return
            if not samples:
                continue
            try:
                worker.sink.write_pcm(samples)
            except Exception as err:
                if worker.stop.is_set():
                    return
                self._handle_worker_error(err, worker)
                return

    def _handle_worker_error(self, err: BaseException, worker: _Worker) -> None:
        wrapped = RuntimeError(f"monitor output failed: {err}")
        wrapped.__cause__ = err
        with self._lock:
            if self._worker is not worker:
                return
            self._enabled = False
            self._worker = None
            self._set_error_locked(wrapped)
            status = self._snapshot_locked()
        try:
            worker.sink.close()
        except Exception:
            pass
        self._emit_status(status)
        if self._cfg.on_error is not None:
            self._cfg.on_error(wrapped)

    def _set_error_locked(self, err: BaseException) -> None:
        self._last_error = str(err)
        self._updated_at = _now()
        (self._cfg.logger or _log).error("monitor: %s", err)

    def _snapshot_locked(self) -> MonitorStatus:
        return MonitorStatus(
            enabled=self._enabled,
            muted=self._muted,
            gain_db=self._gain_db,
            output_device=self._output_device,
            last_error=self._last_error,
            updated_at=self._updated_at,
        )

    def _emit_status(self, status: MonitorStatus) -> None:
        if self._cfg.on_status_change is not None:
            self._cfg.on_status_change(status)