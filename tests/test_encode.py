from __future__ import annotations

import struct
import wave
from pathlib import Path

import pytest

from mml_render.audio.encode import FRAME, MP3_BUFFER_SIZE, encode_wav_to_mp3
from mml_render.audio.wav import WAVE_FORMAT_EXTENSIBLE, WAVE_FORMAT_IEEE_FLOAT, read_wav_header, write_wav_samples
from mml_render.errors import CodecFailure, IoFailure, UnsupportedFormat


def _raw_wav(path: Path, *, fmt_tag: int, channels: int, bits: int, extra: bytes = b"", data: bytes = b"") -> Path:
    rate = 44100
    block_align = channels * bits // 8
    fmt = struct.pack("<HHIIHH", fmt_tag, channels, rate, rate * block_align, block_align, bits) + extra
    body = b"WAVE" + b"fmt " + struct.pack("<I", len(fmt)) + fmt + b"data" + struct.pack("<I", len(data)) + data
    path.write_bytes(b"RIFF" + struct.pack("<I", len(body)) + body)
    return path


def _extensible_extra(sub_format: int) -> bytes:
    guid = struct.pack("<H", sub_format) + b"\x00\x00\x00\x00\x10\x00\x80\x00\x00\xaa\x00\x38\x9b\x71"
    return struct.pack("<HHI", 22, 16, 3) + guid


def test_exact_multiple_has_no_padding(tmp_path: Path, codec_factory, codecs) -> None:
    wav = write_wav_samples(tmp_path / "in.wav", [1, -1] * (2 * FRAME), channels=2)
    res = encode_wav_to_mp3(wav, tmp_path / "out.mp3", codec_factory=codec_factory())

    assert res.blocks == 2
    assert res.padded_samples == 0
    c = codecs[0]
    assert len(c.calls) == 2
    assert c.flushes == 1
    assert c.closed
    assert all(len(l) == FRAME and len(r) == FRAME for l, r in c.calls)
    assert c.calls[0][0][0] == 1 and c.calls[0][1][0] == -1


def test_stereo_tail_block_is_zero_padded(tmp_path: Path, codec_factory, codecs) -> None:
    samples = []
    for i in range(3 * FRAME + 10):
        samples += [i % 100 + 1, -(i % 100 + 1)]
    wav = write_wav_samples(tmp_path / "in.wav", samples, channels=2)
    out = tmp_path / "out.mp3"
    res = encode_wav_to_mp3(wav, out, codec_factory=codec_factory())

    c = codecs[0]
    assert res.blocks == 4
    assert len(c.calls) == 4
    assert c.flushes == 1
    assert res.padded_samples == FRAME - 10
    left, right = c.calls[-1]
    assert len(left) == FRAME
    assert all(v != 0 for v in left[:10])
    assert set(left[10:]) == {0}
    assert set(right[10:]) == {0}
    # first block produced nothing, then 16 bytes per block, then the flush
    assert res.bytes_written == 3 * 16 + len(b"FLUSH")
    assert out.read_bytes().endswith(b"FLUSH")


def test_single_mono_sample_is_duplicated_and_padded(tmp_path: Path, codec_factory, codecs) -> None:
    wav = write_wav_samples(tmp_path / "in.wav", [1234], channels=1, sample_rate=22050)
    res = encode_wav_to_mp3(wav, tmp_path / "out.mp3", codec_factory=codec_factory())

    c = codecs[0]
    assert (c.sample_rate, c.channels) == (22050, 1)
    assert res.blocks == 1
    assert res.padded_samples == FRAME - 1
    left, right = c.calls[0]
    assert left[0] == right[0] == 1234
    assert list(left) == list(right)


def test_empty_wav_only_flushes(tmp_path: Path, codec_factory, codecs) -> None:
    wav = write_wav_samples(tmp_path / "in.wav", [], channels=2)
    out = tmp_path / "out.mp3"
    res = encode_wav_to_mp3(wav, out, codec_factory=codec_factory())

    assert res.blocks == 0
    assert codecs[0].calls == []
    assert codecs[0].flushes == 1
    assert out.read_bytes() == b"FLUSH"


def test_silence_is_not_an_error(tmp_path: Path, codec_factory) -> None:
    wav = write_wav_samples(tmp_path / "in.wav", [0] * (2 * FRAME * 3), channels=2)
    res = encode_wav_to_mp3(wav, tmp_path / "out.mp3", codec_factory=codec_factory())
    assert res.blocks == 3


def test_rejects_8_bit_before_codec(tmp_path: Path, codec_factory, codecs) -> None:
    p = tmp_path / "in.wav"
    with wave.open(str(p), "wb") as wf:
        wf.setnchannels(2)
        wf.setsampwidth(1)
        wf.setframerate(44100)
        wf.writeframes(b"\x80" * 64)
    with pytest.raises(UnsupportedFormat):
        encode_wav_to_mp3(p, tmp_path / "out.mp3", codec_factory=codec_factory())
    assert codecs == []
    assert not (tmp_path / "out.mp3").exists()


def test_rejects_float_wav(tmp_path: Path, codec_factory, codecs) -> None:
    p = _raw_wav(tmp_path / "in.wav", fmt_tag=WAVE_FORMAT_IEEE_FLOAT, channels=2, bits=32, data=bytes(64))
    with pytest.raises(UnsupportedFormat):
        encode_wav_to_mp3(p, tmp_path / "out.mp3", codec_factory=codec_factory())
    assert codecs == []


def test_rejects_three_channels(tmp_path: Path, codec_factory, codecs) -> None:
    p = tmp_path / "in.wav"
    with wave.open(str(p), "wb") as wf:
        wf.setnchannels(3)
        wf.setsampwidth(2)
        wf.setframerate(44100)
        wf.writeframes(bytes(6 * 10))
    with pytest.raises(UnsupportedFormat):
        encode_wav_to_mp3(p, tmp_path / "out.mp3", codec_factory=codec_factory())
    assert codecs == []


def test_not_a_wav(tmp_path: Path, codec_factory) -> None:
    p = tmp_path / "in.wav"
    p.write_bytes(b"ID3 definitely not riff")
    with pytest.raises(UnsupportedFormat):
        encode_wav_to_mp3(p, tmp_path / "out.mp3", codec_factory=codec_factory())


def test_missing_input_is_io_failure(tmp_path: Path, codec_factory) -> None:
    with pytest.raises(IoFailure) as ei:
        encode_wav_to_mp3(tmp_path / "nope.wav", tmp_path / "out.mp3", codec_factory=codec_factory())
    assert ei.value.stage == "encode"


def test_codec_failure_removes_partial_output(tmp_path: Path, codec_factory, codecs) -> None:
    wav = write_wav_samples(tmp_path / "in.wav", [7, 7] * (FRAME * 4), channels=2)
    out = tmp_path / "out.mp3"
    with pytest.raises(CodecFailure):
        encode_wav_to_mp3(wav, out, codec_factory=codec_factory(fail_at=2))
    assert not out.exists()
    assert codecs[0].closed
    assert codecs[0].flushes == 0


def test_oversized_codec_output_is_a_codec_failure(tmp_path: Path) -> None:
    class Chatty:
        def __init__(self, **kwargs) -> None:
            pass

        def encode(self, left, right) -> bytes:
            return bytes(MP3_BUFFER_SIZE + 1)

        def flush(self) -> bytes:
            return b""

        def close(self) -> None:
            pass

    wav = write_wav_samples(tmp_path / "in.wav", [1, 1] * FRAME, channels=2)
    with pytest.raises(CodecFailure):
        encode_wav_to_mp3(wav, tmp_path / "out.mp3", codec_factory=Chatty)
    assert not (tmp_path / "out.mp3").exists()


def test_codec_settings_forwarded(tmp_path: Path, codec_factory, codecs) -> None:
    wav = write_wav_samples(tmp_path / "in.wav", [1, 1], channels=2, sample_rate=48000)
    encode_wav_to_mp3(wav, tmp_path / "out.mp3", bitrate=128, quality=5, codec_factory=codec_factory())
    c = codecs[0]
    assert (c.sample_rate, c.channels, c.bitrate, c.quality) == (48000, 2, 128, 5)


def test_read_wav_header_extensible(tmp_path: Path) -> None:
    pcm = _raw_wav(tmp_path / "a.wav", fmt_tag=WAVE_FORMAT_EXTENSIBLE, channels=2, bits=16, extra=_extensible_extra(1))
    flt = _raw_wav(tmp_path / "b.wav", fmt_tag=WAVE_FORMAT_EXTENSIBLE, channels=2, bits=32, extra=_extensible_extra(3))
    assert read_wav_header(pcm).is_int_pcm
    assert not read_wav_header(flt).is_int_pcm

    junk = tmp_path / "c.wav"
    junk.write_bytes(b"RIFF\x04\x00\x00\x00WAVE")
    with pytest.raises(ValueError):
        read_wav_header(junk)


def test_empty_wav_with_lame_gives_flush_only_mp3(tmp_path: Path) -> None:
    pytest.importorskip("lameenc")
    wav = write_wav_samples(tmp_path / "in.wav", [], channels=2)
    out = tmp_path / "out.mp3"
    res = encode_wav_to_mp3(wav, out)

    assert res.blocks == 0
    assert res.bytes_written > 0
    assert out.stat().st_size == res.bytes_written


def test_lame_encodes_short_mono_file(tmp_path: Path) -> None:
    pytest.importorskip("lameenc")
    wav = write_wav_samples(tmp_path / "in.wav", [1000, -1000] * 300, channels=1)
    res = encode_wav_to_mp3(wav, tmp_path / "out.mp3")
    assert res.blocks == 1
    assert res.padded_samples == FRAME - 600
    assert res.bytes_written > 0


def test_extensible_pcm_wav_is_encoded(tmp_path: Path, codec_factory, codecs) -> None:
    frames = [(i % 50, -(i % 50)) for i in range(FRAME + 3)]
    data = b"".join(struct.pack("<hh", l, r) for l, r in frames)
    p = tmp_path / "ext.wav"
    fmt = struct.pack("<HHIIHH", WAVE_FORMAT_EXTENSIBLE, 2, 44100, 44100 * 4, 4, 16) + _extensible_extra(1)
    body = (
        b"WAVE"
        + b"fmt "
        + struct.pack("<I", len(fmt))
        + fmt
        # unrelated chunk (odd size, padded) between fmt and data
        + b"LIST"
        + struct.pack("<I", 3)
        + b"abc\x00"
        + b"data"
        + struct.pack("<I", len(data))
        + data
    )
    p.write_bytes(b"RIFF" + struct.pack("<I", len(body)) + body)

    res = encode_wav_to_mp3(p, tmp_path / "out.mp3", codec_factory=codec_factory())
    assert res.blocks == 2
    assert res.padded_samples == FRAME - 3
    left, right = codecs[0].calls[0]
    assert list(left[:3]) == [0, 1, 2]
    assert list(right[:3]) == [0, -1, -2]
    tail_left, _ = codecs[0].calls[1]
    assert list(tail_left[:3]) == [(FRAME + i) % 50 for i in range(3)]
    assert set(tail_left[3:]) == {0}


def test_data_chunk_longer_than_file_is_clamped(tmp_path: Path, codec_factory) -> None:
    data = struct.pack("<10h", *range(10))
    p = _raw_wav(tmp_path / "in.wav", fmt_tag=1, channels=2, bits=16, data=data)
    raw = bytearray(p.read_bytes())
    # claim 1 MiB of samples in the data chunk header
    at = raw.index(b"data") + 4
    raw[at : at + 4] = struct.pack("<I", 1 << 20)
    p.write_bytes(bytes(raw))

    spec = read_wav_header(p)
    assert spec.data_size == len(data)
    res = encode_wav_to_mp3(p, tmp_path / "out.mp3", codec_factory=codec_factory())
    assert res.blocks == 1
    assert res.padded_samples == FRAME - 5


def test_missing_data_chunk_is_unsupported(tmp_path: Path, codec_factory, codecs) -> None:
    fmt = struct.pack("<HHIIHH", 1, 2, 44100, 44100 * 4, 4, 16)
    body = b"WAVE" + b"fmt " + struct.pack("<I", len(fmt)) + fmt
    p = tmp_path / "in.wav"
    p.write_bytes(b"RIFF" + struct.pack("<I", len(body)) + body)
    with pytest.raises(UnsupportedFormat):
        encode_wav_to_mp3(p, tmp_path / "out.mp3", codec_factory=codec_factory())
    assert codecs == []
