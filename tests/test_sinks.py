import subprocess
import sys
from unittest import mock

import pytest

from sigsentinel.sinks import (
    ExecSink,
    SinkError,
    list_output_devices,
    normalize_sink_output_device,
    open_aplay_sink,
    open_default_sink,
    open_ffplay_sink,
    parse_aplay_device_list,
)

APLAY_OUTPUT = """null
    Discard all samples (playback) or generate zero samples (capture)
default
    Default Audio Device
sysdefault:CARD=PCH
    HDA Intel PCH
front:CARD=PCH,DEV=0
    HDA Intel PCH
"""


def _copy_script(out):
    """Return a child-process script that copies its stdin into ``out``."""
    return (
        "import sys\n"
        "data = sys.stdin.buffer.read()\n"
        f"open({str(out)!r}, 'wb').write(data)\n"
    )


def test_parse_aplay_device_list():
    assert parse_aplay_device_list(APLAY_OUTPUT) == [
        "null",
        "default",
        "sysdefault:CARD=PCH",
        "front:CARD=PCH,DEV=0",
    ]


def test_parse_aplay_device_list_skips_blank_and_tab_lines():
    raw = "hw:0\n\t tabbed description\n   \n\nplug extra words\n"
    assert parse_aplay_device_list(raw) == ["hw:0", "plug"]


@pytest.mark.parametrize(
    "value, expected",
    [
        ("", ""),
        ("   ", ""),
        ("system-default", ""),
        ("  SYSTEM-DEFAULT ", ""),
        (" hw:1,0 ", "hw:1,0"),
    ],
)
def test_normalize_sink_output_device(value, expected):
    assert normalize_sink_output_device(value) == expected


def test_list_output_devices_without_aplay():
    with mock.patch("shutil.which", return_value=None):
        assert list_output_devices() == ["system-default"]


def test_list_output_devices_dedupes_and_sorts():
    raw = "zeta\n  desc\nalpha\nsystem-default\nzeta\nmid\n"
    completed = subprocess.CompletedProcess(["aplay", "-L"], 0, stdout=raw, stderr="")
    with mock.patch("shutil.which", return_value="/usr/bin/aplay"), mock.patch(
        "subprocess.run", return_value=completed
    ):
        assert list_output_devices() == ["system-default", "alpha", "mid", "zeta"]


def test_list_output_devices_ignores_failed_listing():
    completed = subprocess.CompletedProcess(["aplay", "-L"], 1, stdout="hw:0\n", stderr="")
    with mock.patch("shutil.which", return_value="/usr/bin/aplay"), mock.patch(
        "subprocess.run", return_value=completed
    ):
        assert list_output_devices() == ["system-default"]


def test_open_sinks_without_players():
    with mock.patch("shutil.which", return_value=None):
        with pytest.raises(SinkError, match="aplay not found"):
            open_aplay_sink("hw:1,0")
        with pytest.raises(SinkError, match="ffplay not found"):
            open_ffplay_sink("")
        with pytest.raises(SinkError, match="no supported monitor output backend"):
            open_default_sink("hw:1,0")


def test_exec_sink_writes_little_endian_pcm(tmp_path):
    out = tmp_path / "pcm.raw"
    sink = ExecSink(sys.executable, "-c", _copy_script(out))
    sink.write_pcm([1, -2, 32767, -32768])
    sink.write_pcm([])
    sink.close()
    assert out.read_bytes() == b"\x01\x00\xfe\xff\xff\x7f\x00\x80"


def test_exec_sink_empty_writes_produce_no_bytes(tmp_path):
    out = tmp_path / "pcm.raw"
    sink = ExecSink(sys.executable, "-c", _copy_script(out))
    sink.write_pcm([])
    sink.write_pcm([])
    sink.close()
    assert out.read_bytes() == b""


def test_exec_sink_write_after_close_fails():
    sink = ExecSink(sys.executable, "-c", "import sys; sys.stdin.buffer.read()")
    sink.close()
    with pytest.raises(SinkError, match="write monitor pcm"):
        sink.write_pcm([1, 2])


def test_exec_sink_missing_program(tmp_path):
    with pytest.raises(OSError):
        ExecSink(str(tmp_path / "no-such-player"))