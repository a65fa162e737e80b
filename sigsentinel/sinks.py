"""Monitor audio sinks backed by external command-line players."""

from __future__ import annotations

import shutil
import struct
import subprocess
import threading
from collections.abc import Sequence

SYSTEM_DEFAULT_DEVICE = "system-default"

_STARTUP_GRACE = 0.15
_CLOSE_GRACE = 0.5


class SinkError(RuntimeError):
    """Raised when a monitor sink cannot be opened or written."""


class ExecSink:
    """Streams 16-bit little-endian PCM into the stdin of a child process."""

    def __init__(self, path: str, *args: str) -> None:
        self._stderr = bytearray()
        self._close_lock = threading.Lock()
        self._closed = False
        self._proc = subprocess.Popen(
            [path, *args],
            stdin=subprocess.PIPE,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
        self._stderr_thread = threading.Thread(target=self._drain_stderr, daemon=True)
        self._stderr_thread.start()
        try:
            returncode = self._proc.wait(timeout=_STARTUP_GRACE)
        except subprocess.TimeoutExpired:
            return
        self._close_stdin()
        self._stderr_thread.join(timeout=_CLOSE_GRACE)
        self._closed = True
        message = f"exit status {returncode}"
        detail = self._stderr.decode(errors="replace").strip()
        if detail:
            message = f"{message}: {detail}"
        raise SinkError(message)

    def _drain_stderr(self) -> None:
        stream = self._proc.stderr
        if stream is None:
            return
        for chunk in iter(lambda: stream.read(4096), b""):
            self._stderr.extend(chunk)
        stream.close()

    def _close_stdin(self) -> None:
        if self._proc.stdin is None:
            return
        try:
            self._proc.stdin.close()
        except OSError:
            pass

    def write_pcm(self, samples: Sequence[int]) -> None:
        """Write signed 16-bit samples to the player."""
        if not samples:
            return
        try:
            payload = struct.pack(f"<{len(samples)}h", *samples)
            stdin = self._proc.stdin
            if stdin is None:
                raise ValueError("stdin is not available")
            stdin.write(payload)
            stdin.flush()
        except (OSError, ValueError, struct.error) as err:
            raise SinkError(f"write monitor pcm: {err}") from err

    def close(self) -> None:
        """Close the player's input and wait for it, killing it if it lingers."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._close_stdin()
        try:
            self._proc.wait(timeout=_CLOSE_GRACE)
        except subprocess.TimeoutExpired:
            self._proc.kill()
            self._proc.wait()


def normalize_sink_output_device(output_device: str) -> str:
    """Return the device name to pass to a player, or '' for the system default."""
    output_device = output_device.strip()
    if not output_device or output_device.lower() == SYSTEM_DEFAULT_DEVICE:
        return ""
    return output_device


def open_ffplay_sink(output_device: str) -> ExecSink:
    """Open an ffplay sink; ffplay always plays on the system default output."""
    path = shutil.which("ffplay")
    if path is None:
        raise SinkError("ffplay not found")
    return ExecSink(
        path,
        "-hide_banner",
        "-loglevel", "error",
        "-nodisp",
        "-autoexit",
        "-f", "s16le",
        "-ar", "8000",
        "-ac", "1",
        "-i", "pipe:0",
    )


def open_aplay_sink(output_device: str) -> ExecSink:
    """Open an aplay sink, optionally targeting a specific ALSA device."""
    path = shutil.which("aplay")
    if path is None:
        raise SinkError("aplay not found")
    args = ["-q", "-f", "S16_LE", "-r", "8000", "-c", "1"]
    device = normalize_sink_output_device(output_device)
    if device:
        args += ["-D", device]
    return ExecSink(path, *args)


def open_default_sink(output_device: str) -> ExecSink:
    """Open the best available sink: aplay for named devices, then ffplay, then aplay."""
    normalized = normalize_sink_output_device(output_device)
    attempts = []
    if normalized:
        attempts.append(lambda: open_aplay_sink(normalized))
    attempts.append(lambda: open_ffplay_sink(""))
    attempts.append(lambda: open_aplay_sink(normalized))
    for attempt in attempts:
        try:
            return attempt()
        except (SinkError, OSError):
            continue
    raise SinkError("no supported monitor output backend found (ffplay/aplay)")


def parse_aplay_device_list(raw: str) -> list[str]:
    """Extract device identifiers from ``aplay -L`` output."""
    devices = []
    for line in raw.split("\n"):
        if not line.strip():
            continue
        # Device IDs are top-level lines; descriptions are indented.
        if line[0] in (" ", "\t"):
            continue
        fields = line.split()
        if fields:
            devices.append(fields[0])
    return devices


def _list_aplay_devices() -> list[str]:
    path = shutil.which("aplay")
    if path is None:
        return []
    try:
        result = subprocess.run([path, "-L"], capture_output=True, text=True)
    except OSError:
        return []
    if result.returncode != 0:
        return []
    return parse_aplay_device_list(result.stdout)


def list_output_devices() -> list[str]:
    """Return selectable output devices, 'system-default' first, the rest sorted."""
    seen = {SYSTEM_DEFAULT_DEVICE}
    devices = []
    for device in _list_aplay_devices():
        device = device.strip()
        if not device or device in seen:
            continue
        seen.add(device)
        devices.append(device)
    return [SYSTEM_DEFAULT_DEVICE, *sorted(devices)]