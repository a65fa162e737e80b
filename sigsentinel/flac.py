"""Atomic FLAC writer for 8 kHz mono 16-bit PCM using verbatim subframes."""

from __future__ import annotations

import hashlib
import os
import struct
import tempfile
from collections.abc import Iterable, Sequence

FLAC_SAMPLE_RATE = 8000
FLAC_CHANNELS = 1
FLAC_BITS_PER_SAMPLE = 16
DEFAULT_BLOCK_SIZE = 1024

_STREAMINFO_OFFSET = 8
_STREAMINFO_LEN = 34


def _crc8_table() -> list[int]:
    table = []
    for byte in range(256):
        crc = byte
        for _ in range(8):
            crc = ((crc << 1) ^ 0x07) if crc & 0x80 else (crc << 1)
            crc &= 0xFF
        table.append(crc)
    return table


def _crc16_table() -> list[int]:
    table = []
    for byte in range(256):
        crc = byte << 8
        for _ in range(8):
            crc = ((crc << 1) ^ 0x1021) if crc & 0x8000 else (crc << 1)
            crc &= 0xFFFF
        table.append(crc)
    return table


_CRC8 = _crc8_table()
_CRC16 = _crc16_table()


def crc8(data: bytes) -> int:
    """CRC-8 with polynomial 0x07 and zero initial value, as used in FLAC frame headers."""
    crc = 0
    for b in data:
        crc = _CRC8[crc ^ b]
    return crc


def crc16(data: bytes) -> int:
    """CRC-16 with polynomial 0x8005-style FLAC framing (0x1021, zero init)."""
    crc = 0
    for b in data:
        crc = ((crc << 8) & 0xFFFF) ^ _CRC16[(crc >> 8) ^ b]
    return crc


def flac_block_size_code(block_size: int) -> tuple[int, bytes]:
    """Return the 4-bit block size code and any trailing header bytes it needs."""
    if block_size <= 0:
        raise ValueError("invalid block size")
    if block_size == DEFAULT_BLOCK_SIZE:
        return 0xA, b""
    if block_size <= 256:
        return 0x6, bytes([block_size - 1])
    if block_size <= 65536:
        return 0x7, struct.pack(">H", block_size - 1)
    raise ValueError("unsupported block size")


def encode_utf8_uint64(value: int) -> bytes:
    """Encode an integer using FLAC's extended UTF-8 style coding (up to 36 bits)."""
    if value < 0:
        raise ValueError("value exceeds FLAC UTF-8 integer range")
    if value <= 0x7F:
        return bytes([value])
    if value <= 0x7FF:
        lead, count = 0xC0, 1
    elif value <= 0xFFFF:
        lead, count = 0xE0, 2
    elif value <= 0x1FFFFF:
        lead, count = 0xF0, 3
    elif value <= 0x3FFFFFF:
        lead, count = 0xF8, 4
    elif value <= 0x7FFFFFFF:
        lead, count = 0xFC, 5
    elif value <= 0xFFFFFFFFF:
        lead, count = 0xFE, 6
    else:
        raise ValueError("value exceeds FLAC UTF-8 integer range")
    first = lead | ((value >> (6 * count)) & 0xFF) if lead != 0xFE else 0xFE
    tail = [0x80 | ((value >> (6 * shift)) & 0x3F) for shift in range(count - 1, -1, -1)]
    return bytes([first, *tail])


class FLACWriter:
    """Writes PCM into a temporary file and atomically moves it into place on finalize."""

    def __init__(self, final_path: str | os.PathLike[str]) -> None:
        final_path = os.fspath(final_path)
        if not final_path:
            raise ValueError("final path is required")
        directory = os.path.dirname(final_path) or "."
        os.makedirs(directory, mode=0o755, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=directory, prefix=f".{os.path.basename(final_path)}", suffix=".tmp"
        )
        self._final_path = final_path
        self._tmp_path: str | None = tmp_path
        self._file = os.fdopen(fd, "w+b")
        self._pending: list[int] = []
        self._total_samples = 0
        self._frame_number = 0
        self._min_frame_size = 0
        self._max_frame_size = 0
        self._min_block_size = 0
        self._max_block_size = 0
        self._closed = False
        self._md5 = hashlib.md5()
        try:
            self._write_header()
        except BaseException:
            self._discard_temp()
            raise

    def pending_path(self) -> str | None:
        """Path of the temporary file, or None once it has been moved or removed."""
        return self._tmp_path

    def _write_header(self) -> None:
        self._file.write(b"fLaC")
        # Last metadata block, STREAMINFO type, 34-byte payload.
        self._file.write(bytes([0x80, 0x00, 0x00, 0x22]))
        placeholder = struct.pack(">HH", DEFAULT_BLOCK_SIZE, DEFAULT_BLOCK_SIZE)
        self._file.write(placeholder.ljust(_STREAMINFO_LEN, b"\x00"))
        self._file.flush()

    def write_pcm(self, samples: Iterable[int]) -> None:
        """Append signed 16-bit samples, emitting full frames as they fill."""
        samples = list(samples)
        if not samples:
            return
        if self._closed:
            raise ValueError("writer closed")
        self._md5.update(struct.pack(f"<{len(samples)}h", *samples))
        self._pending.extend(samples)
        while len(self._pending) >= DEFAULT_BLOCK_SIZE:
            self._write_frame(self._pending[:DEFAULT_BLOCK_SIZE])
            del self._pending[:DEFAULT_BLOCK_SIZE]

    def _write_frame(self, samples: Sequence[int]) -> None:
        if not samples:
            return
        code, extra = flac_block_size_code(len(samples))
        # Sync, fixed blocksize, block size code, 8-bit kHz rate, mono, 16-bit.
        header = bytearray([0xFF, 0xF8, (code << 4) | 0x0C, 0x08])
        header += encode_utf8_uint64(self._frame_number)
        header += extra
        header.append(FLAC_SAMPLE_RATE // 1000)
        header.append(crc8(header))

        frame = header
        frame.append(0x02)  # verbatim subframe, no wasted bits
        frame += struct.pack(f">{len(samples)}h", *samples)
        frame += struct.pack(">H", crc16(frame))

        self._file.write(frame)
        self._file.flush()

        frame_size = len(frame)
        if self._min_frame_size == 0 or frame_size < self._min_frame_size:
            self._min_frame_size = frame_size
        self._max_frame_size = max(self._max_frame_size, frame_size)
        block_size = len(samples)
        if self._min_block_size == 0 or block_size < self._min_block_size:
            self._min_block_size = block_size
        self._max_block_size = max(self._max_block_size, block_size)
        self._total_samples += block_size
        self._frame_number += 1

    def finalize(self) -> int:
        """Flush remaining samples, move the file into place and return its size."""
        if self._closed:
            return os.stat(self._final_path).st_size
        if self._pending:
            self._write_frame(self._pending)
            self._pending = []
        self._patch_stream_info()
        self._file.flush()
        os.fsync(self._file.fileno())
        self._file.close()
        os.chmod(self._tmp_path, 0o644)
        os.replace(self._tmp_path, self._final_path)
        self._tmp_path = None
        self._closed = True
        return os.stat(self._final_path).st_size

    def abort(self) -> None:
        """Discard the temporary output."""
        if self._closed:
            return
        self._closed = True
        self._discard_temp()

    def _discard_temp(self) -> None:
        if not self._file.closed:
            self._file.close()
        if self._tmp_path is not None:
            try:
                os.remove(self._tmp_path)
            except FileNotFoundError:
                pass
            self._tmp_path = None

    def _patch_stream_info(self) -> None:
        min_bs = self._min_block_size or DEFAULT_BLOCK_SIZE
        max_bs = self._max_block_size or DEFAULT_BLOCK_SIZE
        packed = (
            (FLAC_SAMPLE_RATE & 0xFFFFF) << 44
            | ((FLAC_CHANNELS - 1) & 0x7) << 41
            | ((FLAC_BITS_PER_SAMPLE - 1) & 0x1F) << 36
            | (self._total_samples & 0xFFFFFFFFF)
        )
        payload = (
            struct.pack(">HH", min_bs & 0xFFFF, max_bs & 0xFFFF)
            + (self._min_frame_size & 0xFFFFFF).to_bytes(3, "big")
            + (self._max_frame_size & 0xFFFFFF).to_bytes(3, "big")
            + packed.to_bytes(8, "big")
            + self._md5.digest()
        )
        self._file.seek(_STREAMINFO_OFFSET)
        self._file.write(payload)

    def __enter__(self) -> "FLACWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.abort()
        elif not self._closed:
            self.finalize()