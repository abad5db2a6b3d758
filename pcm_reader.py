"""Read amplitude points out of canonical PCM (WAV) streams.

The stream layout is the plain 44-byte RIFF header followed by sample data.
Only the ``fmt`` block is parsed; everything else in the header is skipped.
Points are read with a fixed byte stride so long files can be walked without
decoding every sample.
"""
from __future__ import annotations

import logging
import os
import struct
from dataclasses import dataclass
from typing import BinaryIO, Iterator

logger = logging.getLogger("waveform_builder.pcm_reader")

HEADER_OFFSET = 20
HEADER_SIZE = 44
FMT_BLOCK = struct.Struct("<HHIIHH")
SUPPORTED_BITS = (8, 16)

# Bytes jumped between two points; mono files are walked twice as coarsely.
STEREO_SKIP = 40
MONO_SKIP = 80


class MalformedHeader(ValueError):
    """Raised when the PCM ``fmt`` block cannot be used."""


@dataclass(frozen=True)
class PcmHeader:
    format_tag: int
    channel_count: int
    sample_rate: int
    bytes_per_second: int
    block_align: int
    bits_per_sample: int

    @property
    def sample_width(self) -> int:
        return self.bits_per_sample // 8

    @property
    def skip_stride(self) -> int:
        return channel_skip_stride(self.channel_count)

    @property
    def point_stride(self) -> int:
        """Bytes covered by one point, skipped or not."""

        return self.skip_stride + self.sample_width

    @classmethod
    def from_bytes(cls, raw: bytes) -> "PcmHeader":
        if len(raw) < FMT_BLOCK.size:
            raise MalformedHeader(
                f"PCM header needs {FMT_BLOCK.size} bytes, got {len(raw)}"
            )
        header = cls(*FMT_BLOCK.unpack(raw[: FMT_BLOCK.size]))
        if header.bits_per_sample not in SUPPORTED_BITS:
            raise MalformedHeader(
                f"Unsupported bits per sample: {header.bits_per_sample}"
            )
        return header

    def pack(self) -> bytes:
        return FMT_BLOCK.pack(
            self.format_tag,
            self.channel_count,
            self.sample_rate,
            self.bytes_per_second,
            self.block_align,
            self.bits_per_sample,
        )


@dataclass(frozen=True)
class SamplePoint:
    index: int
    drawn: int
    amplitude: int
    time_seconds: float


def channel_skip_stride(channel_count: int) -> int:
    return STEREO_SKIP if channel_count == 2 else MONO_SKIP


def parse_pcm_header(stream: BinaryIO) -> PcmHeader:
    """Parse the 16-byte ``fmt`` block at the current stream position."""

    return PcmHeader.from_bytes(stream.read(FMT_BLOCK.size))


def read_pcm_header(stream: BinaryIO) -> PcmHeader:
    """Parse the header of a whole WAV stream and seek to the sample data."""

    stream.seek(HEADER_OFFSET)
    header = parse_pcm_header(stream)
    stream.seek(HEADER_SIZE)
    return header


def stream_size(stream: BinaryIO) -> int:
    position = stream.tell()
    size = stream.seek(0, os.SEEK_END)
    stream.seek(position)
    return size


def data_point_count(file_size: int, header: PcmHeader) -> int:
    """Number of points the downsampler walks for a file of ``file_size`` bytes."""

    return max(0, (file_size - HEADER_SIZE) // header.point_stride + 1)


def decode_sample(raw: bytes, bits_per_sample: int) -> int:
    """Turn raw sample bytes into an unsigned amplitude in ``[0, 255]``.

    The 8-bit path keeps the two-byte composite of the 16-bit path; a true
    8-bit read supplies a single byte and the missing high byte counts as 0.
    """

    low = raw[0]
    high = raw[1] if len(raw) > 1 else 0
    if bits_per_sample == 8:
        return low + high * 256

    # signed -> offset binary
    high = (high & 0x7F) + (0 if high & 0x80 else 128)
    return (low + high * 256) // 256


def elapsed_seconds(bytes_read: int, header: PcmHeader) -> float:
    bits = header.bits_per_sample
    channels = header.channel_count
    rate = header.sample_rate
    if bits == 0 or channels == 0 or rate == 0:
        return 0
    return (bytes_read - HEADER_SIZE) / (bits / 8) / channels / rate


def iter_sample_points(
    stream: BinaryIO,
    header: PcmHeader,
    detail: int,
    data_points: int,
) -> Iterator[SamplePoint]:
    """Yield one :class:`SamplePoint` for every ``detail``-th point.

    ``stream`` must be positioned at the start of the sample data. Points
    whose index is not a multiple of ``detail`` are seeked over without being
    read. A short read ends the sequence early; the points yielded so far are
    the whole result.
    """

    if detail < 1:
        raise ValueError(f"detail must be >= 1, got {detail}")

    width = header.sample_width
    drawn = 0
    for index in range(data_points):
        if index % detail:
            stream.seek(header.point_stride, os.SEEK_CUR)
            continue

        raw = stream.read(width)
        if len(raw) < width:
            logger.debug(
                "PCM stream ended at point %s after %s retained points", index, drawn
            )
            return

        yield SamplePoint(
            index=index,
            drawn=drawn,
            amplitude=decode_sample(raw, header.bits_per_sample),
            time_seconds=elapsed_seconds(stream.tell(), header),
        )
        drawn += 1
        stream.seek(header.skip_stride, os.SEEK_CUR)
