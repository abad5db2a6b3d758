"""
Shared fixtures: in-memory PCM WAV streams built from amplitude lists.
Run from project root: python -m pytest tests -v
"""
import io
import os
import struct
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest

from pcm_reader import HEADER_SIZE, PcmHeader, channel_skip_stride


def encode_amplitude(amplitude, bits=16):
    """Raw sample bytes that decode back to ``amplitude``."""
    if bits == 8:
        return bytes([amplitude])
    high = amplitude - 128 if amplitude >= 128 else amplitude | 0x80
    return bytes([0, high])


def wav_bytes(data, channels=1, bits=16, rate=44100):
    header = PcmHeader(
        format_tag=1,
        channel_count=channels,
        sample_rate=rate,
        bytes_per_second=rate * channels * bits // 8,
        block_align=channels * bits // 8,
        bits_per_sample=bits,
    )
    riff = b"RIFF" + struct.pack("<I", 36 + len(data)) + b"WAVE"
    fmt = b"fmt " + struct.pack("<I", 16) + header.pack()
    chunk = b"data" + struct.pack("<I", len(data))
    blob = riff + fmt + chunk + data
    assert len(blob) == HEADER_SIZE + len(data)
    return blob


def point_data(amplitudes, channels=1, bits=16):
    """Sample data with one readable sample at the start of every point."""
    width = bits // 8
    gap = bytes(channel_skip_stride(channels))
    parts = []
    for position, amplitude in enumerate(amplitudes):
        parts.append(encode_amplitude(amplitude, bits))
        if position < len(amplitudes) - 1:
            parts.append(gap)
    data = b"".join(parts)
    assert len(data) == (len(amplitudes) - 1) * (len(gap) + width) + width
    return data


@pytest.fixture
def make_stream():
    """Factory: amplitudes -> seekable WAV stream with one point per amplitude."""

    def factory(amplitudes, channels=1, bits=16, rate=44100):
        return io.BytesIO(wav_bytes(point_data(amplitudes, channels, bits), channels, bits, rate))

    return factory


@pytest.fixture
def make_wav_file(tmp_path, make_stream):
    """Factory: amplitudes -> path of a WAV file on disk."""

    def factory(name, amplitudes, **kwargs):
        path = tmp_path / name
        path.write_bytes(make_stream(amplitudes, **kwargs).getvalue())
        return path

    return factory
