from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    import mido

MIDI_SUFFIXES = {".mid", ".midi"}


@dataclass
class MidiExportResult:
    path: str
    ticks_per_beat: int
    tracks: int


def is_midi_path(path: str | Path) -> bool:
    return Path(path).suffix.lower() in MIDI_SUFFIXES


def timed_events_to_track(
    events: list[tuple[int, Any]], *, name: str | None = None, end_tick: int | None = None
) -> "mido.MidiTrack":
    """Build a MidiTrack from (absolute_tick, message) pairs, already sorted.

    `end_tick` places end_of_track explicitly so trailing silence survives.
    """
    import mido  # type: ignore

    mt = mido.MidiTrack()
    if name:
        mt.append(mido.MetaMessage("track_name", name=name, time=0))
    last_t = 0
    for t, msg in events:
        delta = t - last_t
        last_t = t
        mt.append(msg.copy(time=delta))
    if end_tick is not None:
        mt.append(mido.MetaMessage("end_of_track", time=max(0, int(end_tick) - last_t)))
    return mt


def save_midifile(mf: Any, path: str | Path) -> MidiExportResult:
    out = Path(path).expanduser()
    out.parent.mkdir(parents=True, exist_ok=True)
    mf.save(str(out))
    return MidiExportResult(path=str(out), ticks_per_beat=int(mf.ticks_per_beat), tracks=len(mf.tracks))
