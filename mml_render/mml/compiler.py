from __future__ import annotations

import io
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from mml_render.io.midi import MidiExportResult, save_midifile, timed_events_to_track

PPQ = 480
WHOLE_NOTE = PPQ * 4

DEFAULT_TEMPO = 120
DEFAULT_OCTAVE = 4
DEFAULT_LENGTH = 4
DEFAULT_VOLUME = 8

# Melody plus chord tracks; MIDI channel 9 (GM drums) is skipped.
MAX_TRACKS = 15

_SEMITONES = {"c": 0, "d": 2, "e": 4, "f": 5, "g": 7, "a": 9, "b": 11}


class MmlSyntaxError(ValueError):
    def __init__(self, message: str, *, track: int, position: int) -> None:
        self.track = track
        self.position = position
        super().__init__(f"track {track + 1}, position {position + 1}: {message}")


@dataclass
class MmlNote:
    start: int
    duration: int
    pitch: int
    velocity: int

    @property
    def end(self) -> int:
        return self.start + self.duration


@dataclass
class MmlTrack:
    notes: list[MmlNote] = field(default_factory=list)
    length: int = 0


@dataclass
class MmlScore:
    tracks: list[MmlTrack]
    # (tick, bpm), in the order they appear
    tempos: list[tuple[int, int]]

    @property
    def note_count(self) -> int:
        return sum(len(t.notes) for t in self.tracks)

    @property
    def length_ticks(self) -> int:
        return max([0] + [t.length for t in self.tracks])


def split_tracks(text: str) -> list[str]:
    """Strip the MML@ ... ; wrapper and split into per-track sources."""
    s = text.strip()
    if s[:4].upper() == "MML@":
        s = s[4:]
    s = s.split(";", 1)[0]
    return s.split(",")


def velocity_for_volume(volume: int) -> int:
    return int(round(volume * 127 / 15))


class _TrackParser:
    def __init__(self, src: str, index: int) -> None:
        self.src = src.lower()
        self.index = index
        self.pos = 0
        self.octave = DEFAULT_OCTAVE
        self.length = WHOLE_NOTE // DEFAULT_LENGTH
        self.volume = DEFAULT_VOLUME
        self.tick = 0
        self.tie = False
        self.track = MmlTrack()
        self.tempos: list[tuple[int, int]] = []

    def error(self, message: str, pos: int | None = None) -> MmlSyntaxError:
        return MmlSyntaxError(message, track=self.index, position=self.pos if pos is None else pos)

    def peek(self) -> str:
        return self.src[self.pos] if self.pos < len(self.src) else ""

    def read_int(self) -> int | None:
        start = self.pos
        while self.peek().isdigit():
            self.pos += 1
        if start == self.pos:
            return None
        return int(self.src[start : self.pos])

    def read_ranged(self, cmd: str, lo: int, hi: int) -> int:
        at = self.pos
        v = self.read_int()
        if v is None:
            raise self.error(f"'{cmd}' needs a number", at)
        if not (lo <= v <= hi):
            raise self.error(f"'{cmd}{v}' out of range {lo}-{hi}", at)
        return v

    def read_length(self, default: int) -> int:
        at = self.pos
        n = self.read_int()
        if n is None:
            base = default
        elif 1 <= n <= 64:
            base = WHOLE_NOTE // n
        else:
            raise self.error(f"note length {n} out of range 1-64", at)
        total = base
        add = base
        while self.peek() == ".":
            self.pos += 1
            add //= 2
            total += add
        return total

    def add_note(self, pitch: int, duration: int, at: int) -> None:
        if not (0 <= pitch <= 127):
            raise self.error(f"note out of MIDI range: {pitch}", at)
        vel = velocity_for_volume(self.volume)
        prev = self.track.notes[-1] if self.track.notes else None
        if self.tie and prev is not None and prev.pitch == pitch and prev.end == self.tick:
            prev.duration += duration
        elif vel > 0:
            self.track.notes.append(MmlNote(start=self.tick, duration=duration, pitch=pitch, velocity=vel))
        self.tie = False
        self.tick += duration

    def parse(self) -> MmlTrack:
        while self.pos < len(self.src):
            at = self.pos
            ch = self.src[self.pos]
            self.pos += 1

            if ch.isspace():
                continue
            if ch in _SEMITONES:
                semi = _SEMITONES[ch]
                while self.peek() in ("+", "#", "-"):
                    semi += -1 if self.peek() == "-" else 1
                    self.pos += 1
                pitch = 12 * (self.octave + 1) + semi
                self.add_note(pitch, self.read_length(self.length), at)
            elif ch == "n":
                self.add_note(self.read_ranged("n", 0, 96) + 12, self.length, at)
            elif ch == "r":
                self.tick += self.read_length(self.length)
                self.tie = False
            elif ch == "l":
                if not self.peek().isdigit():
                    raise self.error("'l' needs a number", at)
                self.length = self.read_length(self.length)
            elif ch == "o":
                self.octave = self.read_ranged("o", 0, 8)
            elif ch == "<":
                self.octave = max(0, self.octave - 1)
            elif ch == ">":
                self.octave = min(8, self.octave + 1)
            elif ch == "v":
                self.volume = self.read_ranged("v", 0, 15)
            elif ch == "t":
                self.tempos.append((self.tick, self.read_ranged("t", 32, 255)))
            elif ch == "&":
                self.tie = True
            else:
                raise self.error(f"unexpected character {ch!r}", at)

        self.track.length = self.tick
        return self.track


def parse_mml(text: str) -> MmlScore:
    sources = split_tracks(text)
    if len(sources) > MAX_TRACKS:
        raise MmlSyntaxError(f"too many tracks ({len(sources)} > {MAX_TRACKS})", track=MAX_TRACKS, position=0)
    tracks: list[MmlTrack] = []
    tempos: list[tuple[int, int]] = []
    for i, src in enumerate(sources):
        p = _TrackParser(src, i)
        tracks.append(p.parse())
        tempos.extend(p.tempos)
    return MmlScore(tracks=tracks, tempos=tempos)


def _channel_for_track(index: int) -> int:
    return index if index < 9 else index + 1


def score_to_midifile(score: MmlScore, *, program: int = 0, name: str = "mml") -> Any:
    import mido  # type: ignore

    if not (0 <= int(program) <= 127):
        raise ValueError(f"program out of range: {program}")

    mf = mido.MidiFile(type=1, ticks_per_beat=PPQ)

    # Tempo is global; later changes at the same tick win.
    tempo_at: dict[int, int] = {}
    for tick, bpm in score.tempos:
        tempo_at[tick] = bpm
    tempo_at.setdefault(0, DEFAULT_TEMPO)
    tempo_events = [
        (tick, mido.MetaMessage("set_tempo", tempo=mido.bpm2tempo(bpm), time=0)) for tick, bpm in sorted(tempo_at.items())
    ]
    mf.tracks.append(timed_events_to_track(tempo_events, name=name, end_tick=score.length_ticks))

    for idx, track in enumerate(score.tracks):
        ch = _channel_for_track(idx)
        events: list[tuple[int, Any]] = []
        if track.notes:
            events.append((0, mido.Message("program_change", program=int(program), channel=ch)))
        for n in track.notes:
            events.append((n.start, mido.Message("note_on", note=n.pitch, velocity=n.velocity, channel=ch)))
            events.append((n.end, mido.Message("note_off", note=n.pitch, velocity=0, channel=ch)))
        # note_off before note_on at the same tick so repeated pitches retrigger.
        events.sort(key=lambda x: (x[0], 0 if x[1].type == "program_change" else 1 if x[1].type == "note_off" else 2))
        mf.tracks.append(timed_events_to_track(events, name=f"track {idx + 1}", end_tick=track.length))

    return mf


def compile_mml(text: str, program: int = 0) -> Any:
    """Compile MML text to a mido.MidiFile using `program` on every track."""
    return score_to_midifile(parse_mml(text), program=program)


def compile_mml_to_bytes(text: str, program: int = 0) -> bytes:
    buf = io.BytesIO()
    compile_mml(text, program).save(file=buf)
    return buf.getvalue()


def write_mml_midi(text: str, path: str | Path, program: int = 0) -> MidiExportResult:
    return save_midifile(compile_mml(text, program), path)
