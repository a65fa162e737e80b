"""Scanner audio tools: RTP decoding, live monitor playback and FLAC clip writing."""

__version__ = "0.1.0"
__all__ = ["chanutil", "rtp", "flac", "sinks", "monitor"]