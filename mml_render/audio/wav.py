from __future__ import annotations

import struct
import sys
import wave
from array import array
from dataclasses import dataclass
from pathlib import Path

WAVE_FORMAT_PCM = 0x0001
WAVE_FORMAT_IEEE_FLOAT = 0x0003
WAVE_FORMAT_EXTENSIBLE = 0xFFFE


@dataclass(frozen=True)
class WavSpec:
    format_tag: int
    channels: int
    sample_rate: int
    bits_per_sample: int
    # Effective tag for EXTENSIBLE headers (taken from the sub-format guid).
    sub_format: int | None = None
    # Byte offset and length of the sample payload.
    data_offset: int = 0
    data_size: int = 0

    @property
    def is_int_pcm(self) -> bool:
        if self.format_tag == WAVE_FORMAT_PCM:
            return True
        return self.format_tag == WAVE_FORMAT_EXTENSIBLE and self.sub_format == WAVE_FORMAT_PCM

    @property
    def block_align(self) -> int:
        return self.channels * max(1, self.bits_per_sample // 8)


def _parse_fmt(payload: bytes, p: Path) -> dict[str, int | None]:
    if len(payload) < 16:
        raise ValueError(f"invalid fmt chunk in WAV: {p}")
    fmt_tag, ch, sr, _byte_rate, _block_align, bits = struct.unpack("<HHIIHH", payload[:16])
    sub_format = None
    # cbSize(2) validBits(2) channelMask(4) subFormat(16)
    if fmt_tag == WAVE_FORMAT_EXTENSIBLE and len(payload) >= 40:
        sub_format = struct.unpack("<H", payload[24:26])[0]
    return {
        "format_tag": int(fmt_tag),
        "channels": int(ch),
        "sample_rate": int(sr),
        "bits_per_sample": int(bits),
        "sub_format": sub_format,
    }


def read_wav_header(path: str | Path) -> WavSpec:
    """Walk the RIFF chunks of a WAV file and locate its fmt and data chunks.

    No samples are decoded. A data chunk that claims more bytes than the file
    holds is clamped to what is there. Raises ValueError for files that are not
    RIFF/WAVE or lack a fmt or data chunk.
    """

    p = Path(path)
    with p.open("rb") as f:
        header = f.read(12)
        if len(header) < 12 or header[0:4] != b"RIFF" or header[8:12] != b"WAVE":
            raise ValueError(f"not a RIFF/WAVE file: {p}")
        file_size = p.stat().st_size

        fmt: dict[str, int | None] | None = None
        data: tuple[int, int] | None = None
        while fmt is None or data is None:
            chunk_hdr = f.read(8)
            if len(chunk_hdr) < 8:
                break
            cid = chunk_hdr[0:4]
            size = struct.unpack("<I", chunk_hdr[4:8])[0]
            if cid == b"fmt ":
                fmt = _parse_fmt(f.read(size), p)
                if size % 2:
                    f.seek(1, 1)
            elif cid == b"data":
                offset = f.tell()
                data = (offset, min(size, file_size - offset))
                f.seek(size + (size % 2), 1)
            else:
                f.seek(size + (size % 2), 1)

    if fmt is None:
        raise ValueError(f"missing fmt chunk in WAV: {p}")
    if data is None:
        raise ValueError(f"missing data chunk in WAV: {p}")
    return WavSpec(data_offset=data[0], data_size=data[1], **fmt)  # type: ignore[arg-type]


class WavWriter:
    """Append-only 16-bit PCM WAV container.

    Channel count and sample rate are fixed at creation. `finalize()` patches
    the header sizes; it is safe to call more than once.
    """

    def __init__(self, path: str | Path, *, channels: int = 2, sample_rate: int = 44100) -> None:
        self.path = Path(path)
        self.channels = int(channels)
        self.sample_rate = int(sample_rate)
        self.frames_written = 0
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._wf: wave.Wave_write | None = wave.open(str(self.path), "wb")
        self._wf.setnchannels(self.channels)
        self._wf.setsampwidth(2)
        self._wf.setframerate(self.sample_rate)

    @property
    def closed(self) -> bool:
        return self._wf is None

    def write_samples(self, samples: array) -> None:
        """Append interleaved native-endian int16 samples."""
        if self._wf is None:
            raise ValueError(f"WAV writer already finalized: {self.path}")
        if len(samples) % self.channels:
            raise ValueError("sample count is not a multiple of the channel count")
        if sys.byteorder == "big":
            samples = array("h", samples)
            samples.byteswap()
        self._wf.writeframesraw(samples.tobytes())
        self.frames_written += len(samples) // self.channels

    def finalize(self) -> None:
        if self._wf is None:
            return
        wf, self._wf = self._wf, None
        wf.close()

    def __enter__(self) -> "WavWriter":
        return self

    def __exit__(self, *exc: object) -> None:
        self.finalize()


def write_wav_samples(path: str | Path, samples: list[int], *, channels: int, sample_rate: int = 44100) -> Path:
    """Write interleaved int16 samples in one go (fixtures, small files)."""
    with WavWriter(path, channels=channels, sample_rate=sample_rate) as w:
        w.write_samples(array("h", samples))
    return Path(path)
