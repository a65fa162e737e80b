"""RTP packet parsing, G.711 mu-law decoding and reconnect backoff."""

from __future__ import annotations

import struct

MAX_RECONNECT_DELAY = 30.0
DEFAULT_RECONNECT_DELAY = 2.0

_RTP_HEADER_LEN = 12


class RTPError(ValueError):
    """Raised when an RTP packet cannot be parsed."""


def extract_rtp_timestamp(packet: bytes) -> int:
    """Return the 32-bit RTP timestamp, or 0 for packets too short to hold one."""
    if len(packet) < 8:
        return 0
    return struct.unpack_from(">I", packet, 4)[0]


def parse_rtp_payload(packet: bytes) -> bytes:
    """Return the payload of a version 2, payload type 0 (PCMU) RTP packet."""
    if len(packet) < _RTP_HEADER_LEN:
        raise RTPError("short rtp packet")
    first = packet[0]
    if first >> 6 != 2:
        raise RTPError("unsupported rtp version")
    has_padding = bool(first & 0x20)
    has_ext = bool(first & 0x10)
    csrc_count = first & 0x0F
    payload_type = packet[1] & 0x7F
    if payload_type != 0:
        raise RTPError(f"unsupported payload type: {payload_type}")

    offset = _RTP_HEADER_LEN + csrc_count * 4
    if len(packet) < offset:
        raise RTPError("invalid csrc count")
    if has_ext:
        if len(packet) < offset + 4:
            raise RTPError("invalid extension header")
        (ext_words,) = struct.unpack_from(">H", packet, offset + 2)
        offset += 4 + ext_words * 4
        if len(packet) < offset:
            raise RTPError("invalid extension length")
    if offset >= len(packet):
        raise RTPError("empty payload")

    end = len(packet)
    if has_padding:
        pad_len = packet[-1]
        if pad_len == 0:
            raise RTPError("invalid padding length")
        if pad_len > len(packet) - offset:
            raise RTPError("padding exceeds payload length")
        end -= pad_len
    if offset >= end:
        raise RTPError("empty payload")
    return bytes(packet[offset:end])


def ulaw_to_pcm16(value: int) -> int:
    """Decode one G.711 mu-law byte into a signed 16-bit sample."""
    u = ~value & 0xFF
    sign = u & 0x80
    exponent = (u >> 4) & 0x07
    mantissa = u & 0x0F
    sample = (((mantissa << 3) + 0x84) << exponent) - 0x84
    return -sample if sign else sample


def decode_ulaw(payload: bytes) -> list[int]:
    """Decode a mu-law payload into signed 16-bit samples."""
    return [ulaw_to_pcm16(b) for b in payload]


def reconnect_backoff_delay(base: float, fails: int) -> float:
    """Exponential backoff in seconds, doubling per failure and capped at 30s."""
    if base <= 0:
        base = DEFAULT_RECONNECT_DELAY
    delay = base
    attempt = 1
    while attempt < fails and delay < MAX_RECONNECT_DELAY:
        if delay > MAX_RECONNECT_DELAY / 2:
            return MAX_RECONNECT_DELAY
        delay *= 2
        attempt += 1
    return min(delay, MAX_RECONNECT_DELAY)