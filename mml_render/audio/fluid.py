from __future__ import annotations

import logging
from array import array
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from mml_render.audio.synth import PcmFrameBuffer, SynthSettings

logger = logging.getLogger(__name__)

FLUID_OK = 0
FLUID_FAILED = -1


def dispatch_message(synth: Any, msg: Any) -> None:
    """Forward one channel-voice message to a pyfluidsynth-style synth."""
    kind = msg.type
    if kind == "note_on":
        synth.noteon(msg.channel, msg.note, msg.velocity)
    elif kind == "note_off":
        synth.noteoff(msg.channel, msg.note)
    elif kind == "control_change":
        synth.cc(msg.channel, msg.control, msg.value)
    elif kind == "program_change":
        synth.program_change(msg.channel, msg.program)
    elif kind == "pitchwheel":
        # pyfluidsynth takes the signed value and re-centres it itself.
        synth.pitch_bend(msg.channel, msg.pitch)


_DISPATCHED = {"note_on", "note_off", "control_change", "program_change", "pitchwheel"}


class MidiSequencer:
    """Sample-accurate schedule of a MIDI file.

    Events are (frame_offset, message) pairs in playback order. The sequence
    is finished once the play position reaches the end of the last track.
    """

    def __init__(self, events: list[tuple[int, Any]], end_frame: int) -> None:
        self.events = events
        self.end_frame = max(int(end_frame), events[-1][0] if events else 0)
        self.position = 0
        self._index = 0

    @classmethod
    def from_file(cls, midi_path: str | Path, sample_rate: int) -> "MidiSequencer":
        import mido  # type: ignore

        mf = mido.MidiFile(str(midi_path))
        t = 0.0
        events: list[tuple[int, Any]] = []
        # Iterating a MidiFile merges tracks and yields tempo-aware deltas in seconds.
        for msg in mf:
            t += msg.time
            if msg.is_meta or msg.type not in _DISPATCHED:
                continue
            events.append((int(round(t * sample_rate)), msg))
        return cls(events, int(round(t * sample_rate)))

    @property
    def finished(self) -> bool:
        return self._index >= len(self.events) and self.position >= self.end_frame

    def dispatch_due(self, synth: Any) -> int:
        n = 0
        while self._index < len(self.events) and self.events[self._index][0] <= self.position:
            dispatch_message(synth, self.events[self._index][1])
            self._index += 1
            n += 1
        return n

    def frames_until_next(self, limit: int) -> int:
        if self._index >= len(self.events):
            return limit
        return max(1, min(limit, self.events[self._index][0] - self.position))

    def advance(self, frames: int) -> None:
        self.position += int(frames)


class FluidPlayer:
    """MIDI file player bound to one FluidSynthEngine."""

    def __init__(self, synth: Any, sample_rate: int) -> None:
        self._synth = synth
        self._sample_rate = int(sample_rate)
        self._sequencer: MidiSequencer | None = None
        self._playing = False

    def add(self, midi_path: str) -> bool:
        try:
            self._sequencer = MidiSequencer.from_file(midi_path, self._sample_rate)
        except (OSError, EOFError, ValueError) as e:
            logger.error("could not queue MIDI file %s: %s", midi_path, e)
            return False
        logger.debug("queued %s: %d events", midi_path, len(self._sequencer.events))
        return True

    def play(self) -> None:
        self._playing = self._sequencer is not None

    def is_playing(self) -> bool:
        return self._playing and self._sequencer is not None and not self._sequencer.finished

    def render(self, buffer: "PcmFrameBuffer") -> bool:
        seq = self._sequencer
        if seq is None:
            return False

        raw = bytearray()
        done = 0
        while done < buffer.size:
            seq.dispatch_due(self._synth)
            step = seq.frames_until_next(buffer.size - done)
            chunk = self._synth.get_samples(step)
            if chunk is None or len(chunk) != 2 * step:
                return False
            raw += chunk.tobytes()
            seq.advance(step)
            done += step

        block = array("h", bytes(raw))
        buffer.left[:] = block[0::2]
        buffer.right[:] = block[1::2]
        return True

    def close(self) -> None:
        self._playing = False
        self._sequencer = None


class FluidSynthEngine:
    """Synthesis engine backed by pyfluidsynth.

    The native library is loaded lazily so the rest of the package imports
    on machines without FluidSynth.
    """

    def __init__(self, settings: "SynthSettings") -> None:
        import fluidsynth  # type: ignore

        self.settings = settings
        opts = {
            "synth.polyphony": int(settings.polyphony),
            "synth.reverb.active": 1 if settings.reverb else 0,
            "synth.chorus.active": 1 if settings.chorus else 0,
        }
        self._synth = fluidsynth.Synth(gain=float(settings.gain), samplerate=float(settings.sample_rate), **opts)
        if not getattr(self._synth, "synth", None):
            raise RuntimeError("new_fluid_synth returned NULL")

    def sfload(self, path: str) -> int:
        return int(self._synth.sfload(str(path), update_midi_preset=1))

    def program_change(self, channel: int, program: int) -> bool:
        return self._synth.program_change(int(channel), int(program)) == FLUID_OK

    def new_player(self) -> FluidPlayer:
        return FluidPlayer(self._synth, self.settings.sample_rate)

    def delete(self) -> None:
        if self._synth is None:
            return
        synth, self._synth = self._synth, None
        synth.delete()
