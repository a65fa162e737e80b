import hashlib
import os
import struct

import pytest

from sigsentinel.flac import (
    DEFAULT_BLOCK_SIZE,
    FLACWriter,
    crc8,
    crc16,
    encode_utf8_uint64,
    flac_block_size_code,
)


def test_rejects_empty_path():
    with pytest.raises(ValueError) as info:
        FLACWriter("")
    assert str(info.value) == "final path is required"


def test_creates_writer_file(tmp_path):
    out = tmp_path / "clip.flac"
    w = FLACWriter(out)
    pending = w.pending_path()
    assert os.path.dirname(pending) == str(tmp_path)
    assert os.path.exists(pending)
    w.abort()
    assert not os.path.exists(pending)


def test_write_after_finalize_fails(tmp_path):
    w = FLACWriter(tmp_path / "clip.flac")
    w.write_pcm([1, 2, 3, 4])
    w.finalize()
    with pytest.raises(ValueError):
        w.write_pcm([5, 6])


def test_empty_samples_write_nothing(tmp_path):
    w = FLACWriter(tmp_path / "clip.flac")
    pending = w.pending_path()
    w.write_pcm([])
    w.write_pcm(())
    assert os.path.getsize(pending) == 42
    w.abort()


def test_exact_block_size_flushes_frame(tmp_path):
    w = FLACWriter(tmp_path / "clip.flac")
    w.write_pcm([i % 100 for i in range(DEFAULT_BLOCK_SIZE)])
    assert os.path.getsize(w.pending_path()) > 42
    assert w.finalize() > 42


def test_writes_valid_flac(tmp_path):
    out = tmp_path / "clip.flac"
    w = FLACWriter(out)
    w.write_pcm([(i % 400) - 200 for i in range(5000)])
    size = w.finalize()
    assert size > 42
    data = out.read_bytes()
    assert data[:4] == b"fLaC"
    assert size == len(data)


def test_validates_streaminfo_fields(tmp_path):
    out = tmp_path / "clip.flac"
    w = FLACWriter(out)
    samples = [(i % 300) - 150 for i in range(2048)]
    w.write_pcm(samples)
    w.finalize()
    b = out.read_bytes()

    assert b[:4] == b"fLaC"
    assert b[4] & 0x80 == 0x80
    assert b[4] & 0x7F == 0x00

    si = b[8:42]
    assert struct.unpack(">H", si[0:2])[0] == 1024
    assert struct.unpack(">H", si[2:4])[0] == 1024
    sample_rate = (si[10] << 12) | (si[11] << 4) | (si[12] >> 4)
    assert sample_rate == 8000
    assert (si[12] >> 1) & 0x07 == 0
    assert ((si[12] & 0x01) << 4) | (si[13] >> 4) == 15
    total = ((si[13] & 0x0F) << 32) | struct.unpack(">I", si[14:18])[0]
    assert total == 2048

    expected_md5 = hashlib.md5(struct.pack(f"<{len(samples)}h", *samples)).digest()
    assert si[18:34] == expected_md5


def test_finalize_removes_temp_file(tmp_path):
    out = tmp_path / "clip.flac"
    w = FLACWriter(out)
    pending = w.pending_path()
    w.write_pcm([1, 2, 3])
    w.finalize()
    assert not os.path.exists(pending)
    assert out.exists()
    assert w.pending_path() is None


def test_finalize_twice_returns_size(tmp_path):
    out = tmp_path / "clip.flac"
    w = FLACWriter(out)
    w.write_pcm([1, 2, 3])
    first = w.finalize()
    assert w.finalize() == first == out.stat().st_size


def test_partial_final_frame_block_size(tmp_path):
    out = tmp_path / "clip.flac"
    w = FLACWriter(out)
    w.write_pcm([(i % 300) - 150 for i in range(2500)])
    w.finalize()
    b = out.read_bytes()
    si = b[8:42]
    assert struct.unpack(">H", si[0:2])[0] == 452
    assert struct.unpack(">H", si[2:4])[0] == 1024

    first_frame = b[42:]
    assert first_frame[2] == 0xAC
    assert first_frame[3] == 0x08

    full_frame_len = 2058
    final_offset = 42 + 2 * full_frame_len
    final_frame = b[final_offset:]
    assert final_frame[2] == 0x7C
    assert final_frame[3] == 0x08
    assert struct.unpack(">H", final_frame[5:7])[0] == 451


def test_abort_removes_temp_file(tmp_path):
    out = tmp_path / "clip.flac"
    w = FLACWriter(out)
    pending = w.pending_path()
    w.abort()
    assert not os.path.exists(pending)
    assert not out.exists()


def test_context_manager_aborts_on_error(tmp_path):
    out = tmp_path / "clip.flac"
    with pytest.raises(RuntimeError):
        with FLACWriter(out) as w:
            pending = w.pending_path()
            w.write_pcm([1, 2, 3])
            raise RuntimeError("boom")
    assert not os.path.exists(pending)
    assert not out.exists()


def test_context_manager_finalizes_on_success(tmp_path):
    out = tmp_path / "clip.flac"
    with FLACWriter(out) as w:
        w.write_pcm([1, 2, 3])
    assert out.read_bytes()[:4] == b"fLaC"


def test_encode_utf8_extended_lengths():
    assert len(encode_utf8_uint64(0x3FFFFFF)) == 5
    assert len(encode_utf8_uint64(0x7FFFFFFF)) == 6
    encoded = encode_utf8_uint64(0xFFFFFFFFF)
    assert len(encoded) == 7
    assert encoded[0] == 0xFE


def test_encode_utf8_small_values_match_utf8():
    for value in (0, 0x7F, 0x80, 0x7FF, 0x800, 0xFFFF):
        assert encode_utf8_uint64(value) == chr(value).encode("utf-8", "surrogatepass")


def test_encode_utf8_rejects_out_of_range():
    with pytest.raises(ValueError) as info:
        encode_utf8_uint64(0x1000000000)
    assert str(info.value) == "value exceeds FLAC UTF-8 integer range"


def test_block_size_codes():
    assert flac_block_size_code(1024) == (0xA, b"")
    assert flac_block_size_code(256) == (0x6, bytes([255]))
    assert flac_block_size_code(452) == (0x7, struct.pack(">H", 451))
    with pytest.raises(ValueError):
        flac_block_size_code(0)
    with pytest.raises(ValueError):
        flac_block_size_code(65537)


def test_crc_check_values():
    assert crc8(b"123456789") == 0xF4
    assert crc16(b"123456789") == 0x31C3
    assert crc8(b"") == 0
    assert crc16(b"") == 0