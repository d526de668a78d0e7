from __future__ import annotations

import logging
from array import array
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

from mml_render.audio.wav import WavWriter
from mml_render.errors import (
    EngineInitFailed,
    EventQueueFailed,
    FinalizeFailed,
    InvalidBank,
    PlayerCreateFailed,
    ProgramChangeFailed,
    ValidationFailed,
    WriteFailed,
)

logger = logging.getLogger(__name__)

# Frames requested from the engine per render call.
BUFFER_SIZE = 4096


@dataclass(frozen=True)
class SynthSettings:
    sample_rate: int = 44100
    channels: int = 2
    polyphony: int = 256
    reverb: bool = True
    chorus: bool = True
    gain: float = 1.0


class PcmFrameBuffer:
    """Fixed-size left/right int16 blocks reused across render calls."""

    def __init__(self, size: int = BUFFER_SIZE) -> None:
        self.size = int(size)
        self._zeros = array("h", bytes(2 * self.size))
        self.left = array("h", self._zeros)
        self.right = array("h", self._zeros)
        self._interleaved = array("h", bytes(4 * self.size))

    def clear(self) -> None:
        self.left[:] = self._zeros
        self.right[:] = self._zeros

    def interleaved(self) -> array:
        """Return L0,R0,L1,R1,... in the shared scratch array."""
        if len(self.left) != self.size or len(self.right) != self.size:
            raise ValueError(f"engine filled {len(self.left)}/{len(self.right)} frames, expected {self.size}")
        out = self._interleaved
        out[0::2] = self.left
        out[1::2] = self.right
        return out


class EnginePlayer(Protocol):
    def add(self, midi_path: str) -> bool:
        ...

    def play(self) -> None:
        ...

    def is_playing(self) -> bool:
        ...

    def render(self, buffer: PcmFrameBuffer) -> bool:
        """Fill exactly buffer.size frames; False on engine failure."""
        ...

    def close(self) -> None:
        ...


class SynthEngine(Protocol):
    def sfload(self, path: str) -> int:
        """Load a SoundFont; returns its id or -1."""
        ...

    def program_change(self, channel: int, program: int) -> bool:
        ...

    def new_player(self) -> EnginePlayer | None:
        ...

    def delete(self) -> None:
        ...


EngineFactory = Callable[[SynthSettings], SynthEngine]


def _default_engine_factory(settings: SynthSettings) -> SynthEngine:
    from mml_render.audio.fluid import FluidSynthEngine

    return FluidSynthEngine(settings)


@dataclass
class SynthesisResult:
    path: str
    frames_written: int
    blocks: int
    stopped_on_engine_failure: bool = False


class SynthesisSession:
    """Engine handle plus the loaded instrument bank for one pipeline run."""

    def __init__(self, engine: SynthEngine, settings: SynthSettings) -> None:
        self.engine = engine
        self.settings = settings
        self.bank_id: int | None = None
        self.bank_path: str | None = None
        self._closed = False

    @property
    def has_bank(self) -> bool:
        return self.bank_id is not None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.engine.delete()

    def __enter__(self) -> "SynthesisSession":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def create_session(
    settings: SynthSettings | None = None,
    *,
    engine_factory: EngineFactory | None = None,
) -> SynthesisSession:
    settings = settings or SynthSettings()
    if settings.channels != 2:
        raise EngineInitFailed(f"synthesis output must be stereo, got {settings.channels} channels")
    factory = engine_factory or _default_engine_factory
    try:
        engine = factory(settings)
    except (OSError, ImportError, RuntimeError) as e:
        raise EngineInitFailed(f"could not create synthesizer: {e}") from e
    if engine is None:
        raise EngineInitFailed("could not create synthesizer")
    return SynthesisSession(engine, settings)


def load_instrument_bank(session: SynthesisSession, path: str | Path) -> None:
    sf = str(Path(path).expanduser())
    sfid = session.engine.sfload(sf)
    if sfid is None or sfid < 0:
        raise InvalidBank("failed to load soundfont", path=sf)
    session.bank_id = int(sfid)
    session.bank_path = sf
    logger.info("soundfont loaded: %s (id=%d)", sf, session.bank_id)


def select_program(session: SynthesisSession, program: int, *, channel: int = 0) -> None:
    if not (0 <= int(program) <= 127):
        raise ValidationFailed(f"program out of range: {program}")
    if not session.engine.program_change(int(channel), int(program)):
        raise ProgramChangeFailed(f"failed to change instrument to program {program}")


def _stream_blocks(player: EnginePlayer, writer: WavWriter) -> tuple[int, bool]:
    buffer = PcmFrameBuffer(BUFFER_SIZE)
    blocks = 0
    while player.is_playing():
        buffer.clear()
        if not player.render(buffer):
            logger.warning("synthesis stopped early after %d blocks (engine failure)", blocks)
            return blocks, True
        try:
            writer.write_samples(buffer.interleaved())
        except (OSError, ValueError) as e:
            raise WriteFailed(f"failed to write samples: {e}", path=writer.path) from e
        blocks += 1
        logger.debug("rendered block %d", blocks)
    return blocks, False


def synthesize(session: SynthesisSession, event_path: str | Path, wav_path: str | Path) -> SynthesisResult:
    """Drive the engine over one MIDI file, streaming PCM into a WAV.

    The engine decides when playback ends. A render failure stops the loop
    and keeps everything written so far. The WAV is always finalized and the
    player is released on every exit path.
    """

    if not session.has_bank:
        raise InvalidBank("no soundfont loaded into the synthesis session")

    midi = str(event_path)
    out = Path(wav_path)

    player = session.engine.new_player()
    if player is None:
        raise PlayerCreateFailed("failed to create MIDI player")

    try:
        if not player.add(midi):
            raise EventQueueFailed("failed to add MIDI file to player", path=midi)

        try:
            writer = WavWriter(out, channels=session.settings.channels, sample_rate=session.settings.sample_rate)
        except (OSError, EOFError) as e:
            raise WriteFailed(f"failed to create WAV writer: {e}", path=out) from e

        player.play()
        try:
            blocks, engine_failed = _stream_blocks(player, writer)
        except WriteFailed:
            # The write failure is the first error; finalize is best-effort here.
            try:
                writer.finalize()
            except (OSError, EOFError) as e:
                logger.warning("could not finalize %s after write failure: %s", out, e)
            raise

        try:
            writer.finalize()
        except (OSError, EOFError) as e:
            raise FinalizeFailed(f"failed to finalize WAV: {e}", path=out) from e
    finally:
        player.close()

    logger.info("WAV written: %s (%d frames, %d blocks)", out, writer.frames_written, blocks)
    return SynthesisResult(
        path=str(out),
        frames_written=writer.frames_written,
        blocks=blocks,
        stopped_on_engine_failure=engine_failed,
    )
