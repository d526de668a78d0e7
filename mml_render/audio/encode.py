from __future__ import annotations

import logging
import sys
from array import array
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Protocol

from mml_render.audio.lame import CodecError, LameCodec
from mml_render.audio.wav import WavSpec, read_wav_header
from mml_render.errors import CodecFailure, IoFailure, UnsupportedFormat

logger = logging.getLogger(__name__)

# Samples per channel consumed by one MP3 encode call.
FRAME = 1152
# Worst-case output of one encode call: 1.25 * samples + 7200 bytes.
MP3_BUFFER_SIZE = int(1.25 * FRAME + 7200)

BITRATE = 192
QUALITY = 2


class Mp3Codec(Protocol):
    def encode(self, left: array, right: array) -> bytes:
        ...

    def flush(self) -> bytes:
        ...

    def close(self) -> None:
        ...


CodecFactory = Callable[..., Mp3Codec]


@dataclass
class EncodeResult:
    path: str
    sample_rate: int
    channels: int
    blocks: int
    padded_samples: int
    bytes_written: int


def _iter_blocks(f: BinaryIO, spec: WavSpec) -> Iterator[tuple[array, array, int]]:
    """Yield (left, right, padding) blocks of exactly FRAME samples per channel.

    Samples come straight from the data chunk. Mono blocks are duplicated into
    both channels. Only the final block can be short; it is zero-padded up to
    FRAME.
    """

    channels = spec.channels
    frame_bytes = spec.block_align
    f.seek(spec.data_offset)
    # A dangling partial frame at the end of the chunk is ignored.
    remaining = spec.data_size - spec.data_size % frame_bytes

    while remaining > 0:
        raw = f.read(min(FRAME * frame_bytes, remaining))
        if not raw:
            return
        remaining -= len(raw)
        raw = raw[: len(raw) - len(raw) % frame_bytes]
        samples = array("h")
        samples.frombytes(raw)
        if sys.byteorder == "big":
            samples.byteswap()

        if channels == 1:
            left = samples
        else:
            left = samples[0::2]
            right = samples[1::2]

        pad = FRAME - len(left)
        if pad > 0:
            left.extend(array("h", bytes(2 * pad)))
            if channels == 2:
                right.extend(array("h", bytes(2 * pad)))

        if channels == 1:
            right = array("h", left)
        yield left, right, max(0, pad)


def _checked(data: bytes, what: str) -> bytes:
    if len(data) > MP3_BUFFER_SIZE:
        raise CodecFailure(f"{what} produced {len(data)} bytes, more than the {MP3_BUFFER_SIZE}-byte output buffer")
    return data


def _write(out: BinaryIO, data: bytes, path: Path) -> None:
    try:
        out.write(data)
    except OSError as e:
        raise IoFailure(f"failed to write MP3 data: {e}", path=path) from e


def encode_wav_to_mp3(
    in_wav: str | Path,
    out_mp3: str | Path,
    *,
    bitrate: int = BITRATE,
    quality: int = QUALITY,
    codec_factory: CodecFactory | None = None,
) -> EncodeResult:
    """Encode a 16-bit PCM WAV (mono or stereo) to MP3, one FRAME at a time.

    The format is checked before any codec call. A partial output file is
    removed when encoding fails.
    """

    src = Path(in_wav)
    dst = Path(out_mp3)

    try:
        spec = read_wav_header(src)
    except ValueError as e:
        raise UnsupportedFormat(str(e), path=src) from e
    except OSError as e:
        raise IoFailure(f"failed to open WAV file: {e}", path=src) from e

    if not spec.is_int_pcm or spec.bits_per_sample != 16:
        raise UnsupportedFormat(
            f"only 16-bit integer WAV files are supported (format={spec.format_tag:#06x}, bits={spec.bits_per_sample})",
            path=src,
        )
    if spec.channels not in (1, 2):
        raise UnsupportedFormat(f"only mono and stereo WAV files are supported (channels={spec.channels})", path=src)

    factory = codec_factory or LameCodec
    blocks = 0
    padded = 0
    written = 0

    with ExitStack() as stack:
        try:
            wf = stack.enter_context(src.open("rb"))
        except OSError as e:
            raise IoFailure(f"failed to open WAV file: {e}", path=src) from e

        try:
            codec = factory(sample_rate=spec.sample_rate, channels=spec.channels, bitrate=bitrate, quality=quality)
        except (CodecError, ImportError, OSError) as e:
            raise CodecFailure(f"failed to initialise MP3 encoder: {e}") from e
        stack.callback(codec.close)

        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            out = stack.enter_context(dst.open("wb"))
        except OSError as e:
            raise IoFailure(f"failed to create MP3 file: {e}", path=dst) from e

        try:
            for left, right, pad in _iter_blocks(wf, spec):
                try:
                    data = _checked(codec.encode(left, right), "encode")
                except CodecError as e:
                    raise CodecFailure(f"encode failed at block {blocks}: {e}") from e
                blocks += 1
                padded += pad
                if data:
                    _write(out, data, dst)
                    written += len(data)

            try:
                data = _checked(codec.flush(), "flush")
            except CodecError as e:
                raise CodecFailure(f"flush failed: {e}") from e
            if data:
                _write(out, data, dst)
                written += len(data)
        except (OSError, ValueError) as e:
            stack.close()
            dst.unlink(missing_ok=True)
            raise IoFailure(f"failed to read samples: {e}", path=src) from e
        except (CodecFailure, IoFailure):
            stack.close()
            dst.unlink(missing_ok=True)
            raise

    logger.info(
        "MP3 written: %s (%d blocks, %d padded samples, %d bytes, %d Hz, %d ch)",
        dst,
        blocks,
        padded,
        written,
        spec.sample_rate,
        spec.channels,
    )
    return EncodeResult(
        path=str(dst),
        sample_rate=spec.sample_rate,
        channels=spec.channels,
        blocks=blocks,
        padded_samples=padded,
        bytes_written=written,
    )
