from __future__ import annotations

from array import array
from pathlib import Path

import pytest

from mml_render.audio.synth import PcmFrameBuffer, SynthSettings


class FakePlayer:
    """Plays for `blocks` iterations; block k is filled with value k+1 (left) and -(k+1) (right)."""

    def __init__(self, engine: "FakeEngine") -> None:
        self.engine = engine
        self.midi_path: str | None = None
        self.started = False
        self.rendered = 0
        self.closed = False
        self.buffer_sizes: list[int] = []

    def add(self, midi_path: str) -> bool:
        if not self.engine.queue_ok:
            return False
        self.midi_path = midi_path
        return True

    def play(self) -> None:
        self.started = True

    def is_playing(self) -> bool:
        return self.started and self.rendered < self.engine.blocks

    def render(self, buffer: PcmFrameBuffer) -> bool:
        self.buffer_sizes.append(buffer.size)
        if self.engine.fail_at is not None and self.rendered == self.engine.fail_at:
            return False
        v = self.rendered + 1
        for i in range(buffer.size):
            buffer.left[i] = v
            buffer.right[i] = -v
        self.rendered += 1
        return True

    def close(self) -> None:
        self.closed = True


class FakeEngine:
    def __init__(
        self,
        settings: SynthSettings,
        *,
        blocks: int = 2,
        fail_at: int | None = None,
        queue_ok: bool = True,
        player_ok: bool = True,
    ) -> None:
        self.settings = settings
        self.blocks = blocks
        self.fail_at = fail_at
        self.queue_ok = queue_ok
        self.player_ok = player_ok
        self.loaded: list[str] = []
        self.programs: list[tuple[int, int]] = []
        self.players: list[FakePlayer] = []
        self.deleted = 0

    def sfload(self, path: str) -> int:
        if not Path(path).is_file():
            return -1
        self.loaded.append(path)
        return len(self.loaded)

    def program_change(self, channel: int, program: int) -> bool:
        self.programs.append((channel, program))
        return program != 99  # 99 plays the role of a preset missing from the bank

    def new_player(self) -> FakePlayer | None:
        if not self.player_ok:
            return None
        p = FakePlayer(self)
        self.players.append(p)
        return p

    def delete(self) -> None:
        self.deleted += 1


class FakeCodec:
    """Records every encode call; emits nothing for the first block, then 16 bytes per block."""

    def __init__(self, *, sample_rate: int, channels: int, bitrate: int, quality: int, fail_at: int | None = None) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.bitrate = bitrate
        self.quality = quality
        self.fail_at = fail_at
        self.calls: list[tuple[array, array]] = []
        self.flushes = 0
        self.closed = False

    def encode(self, left: array, right: array) -> bytes:
        from mml_render.audio.lame import CodecError

        if self.fail_at is not None and len(self.calls) == self.fail_at:
            raise CodecError("simulated codec failure")
        self.calls.append((array("h", left), array("h", right)))
        if len(self.calls) == 1:
            return b""
        return b"\xff\xfb" + bytes(14)

    def flush(self) -> bytes:
        self.flushes += 1
        return b"FLUSH"

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def engines() -> list[FakeEngine]:
    return []


@pytest.fixture
def engine_factory(engines: list[FakeEngine]):
    def make(**kwargs):
        def factory(settings: SynthSettings) -> FakeEngine:
            e = FakeEngine(settings, **kwargs)
            engines.append(e)
            return e

        return factory

    return make


@pytest.fixture
def codecs() -> list[FakeCodec]:
    return []


@pytest.fixture
def codec_factory(codecs: list[FakeCodec]):
    def make(**extra):
        def factory(**kwargs) -> FakeCodec:
            c = FakeCodec(**kwargs, **extra)
            codecs.append(c)
            return c

        return factory

    return make


@pytest.fixture
def soundfont(tmp_path: Path) -> Path:
    p = tmp_path / "bank.sf2"
    p.write_bytes(b"RIFF\x00\x00\x00\x00sfbk")
    return p
