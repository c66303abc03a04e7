"""PCM to WAV container encoding for TTS output."""

from __future__ import annotations

import struct

SAMPLE_RATE = 24000
CHANNELS = 1
BITS_PER_SAMPLE = 16
WAV_HEADER_SIZE = 44

# RIFF header, fmt subchunk (PCM, 16 bytes), data subchunk header. Little-endian.
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


def pcm_to_wav(
    pcm: bytes,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
    bits_per_sample: int = BITS_PER_SAMPLE,
) -> bytes:
    """Wrap raw little-endian PCM samples in a canonical 44-byte WAV header."""
    bytes_per_sample = bits_per_sample // 8
    data_size = len(pcm)
    header = _HEADER.pack(
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,  # fmt subchunk size
        1,  # PCM
        channels,
        sample_rate,
        sample_rate * channels * bytes_per_sample,  # byte rate
        channels * bytes_per_sample,  # block align
        bits_per_sample,
        b"data",
        data_size,
    )
    return header + pcm
