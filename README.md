# sigsentinel

Audio building blocks for listening to and recording a radio scanner's
RTP audio stream. The package has no third-party dependencies.

## What it provides

- `sigsentinel.rtp`: parse RTP packets carrying G.711 u-law audio
  (`parse_rtp_payload`, `extract_rtp_timestamp`), decode u-law to 16-bit
  PCM (`decode_ulaw`, `ulaw_to_pcm16`), and compute capped exponential
  reconnect delays in seconds (`reconnect_backoff_delay`, doubling per
  failure up to 30 s). Malformed packets raise `RTPError`, a `ValueError`.
- `sigsentinel.flac`: `FLACWriter` writes 8 kHz mono 16-bit PCM into a
  FLAC file using verbatim subframes of 1024 samples. Output goes to a
  temporary file (`pending_path()`) that is moved into place atomically by
  `finalize()`, which returns the final file size, or removed by `abort()`.
  Helpers `crc8`, `crc16`, `encode_utf8_uint64` and `flac_block_size_code`
  are exposed as well.
- `sigsentinel.monitor`: `MonitorManager` plays live audio to a local
  output, reordering frames by RTP timestamp through a `JitterBuffer`,
  with mute and gain control. Gain outside -60 to +24 dB raises
  `ValueError`; using a closed manager raises `MonitorClosedError`.
  `snapshot()` returns a `MonitorStatus`; callbacks for status changes and
  output errors are set on `MonitorConfig`.
- `sigsentinel.sinks`: `ExecSink` pipes PCM into a player process;
  `open_default_sink`, `open_ffplay_sink` and `open_aplay_sink` start
  `ffplay` or `aplay`, raising `SinkError` on failure.
  `list_output_devices()` enumerates ALSA devices via `aplay -L`, with
  `"system-default"` first.
- `sigsentinel.chanutil`: `publish_latest`, a non-blocking put into a
  bounded `queue.Queue` that evicts the oldest item when the queue is full.

## Installing

```
pip install .
```

Live monitoring with the default sink needs `ffplay` or `aplay` on the
`PATH`. A custom sink can be supplied through `MonitorConfig.sink_factory`:
any callable taking the device name and returning an object with
`write_pcm(samples)` and `close()`.

## Examples

Decoding an RTP packet:

```python
from sigsentinel.rtp import parse_rtp_payload, extract_rtp_timestamp, decode_ulaw

packet = bytes([0x80, 0x00, 0, 1, 0, 0, 0, 1, 0, 0, 0, 1, 0xFF, 0x7F, 0x00])
samples = decode_ulaw(parse_rtp_payload(packet))   # [0, 0, -32124]
timestamp = extract_rtp_timestamp(packet)          # 1
```

Writing a FLAC clip:

```python
from sigsentinel.flac import FLACWriter

with FLACWriter("clips/example.flac") as writer:
    writer.write_pcm([0, 100, -100, 200])
```

Leaving the `with` block normally finalizes the file; leaving it through
an exception aborts and removes the temporary file. `finalize()` may also
be called directly to get the file size.

Monitoring live audio:

```python
from sigsentinel.monitor import Frame, MonitorConfig, MonitorManager

manager = MonitorManager(MonitorConfig(gain_db=6.0))
manager.set_listen(True)
manager.push_frame(Frame(samples=[1000, -1000], rtp_timestamp=1))
manager.close()
```

## What it does not do

The package does not connect to a scanner: it has no RTSP client, no
UDP receive loop and no reconnect session, only the packet parsing,
decoding and backoff calculation such a loop would use. It has no
activity-driven recording logic deciding when clips start and stop;
`FLACWriter` writes whatever samples it is given. There is no command-line
program or user interface.

## Running the tests

```
pip install .[test]
pytest
```