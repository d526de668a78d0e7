from __future__ import annotations

from mml_render.errors import ValidationFailed

# Common General MIDI programs (0-based, as sent in program_change).
GM_PROGRAMS: dict[str, int] = {
    "piano": 0,
    "acoustic_grand_piano": 0,
    "bright_piano": 1,
    "electric_piano": 4,
    "harpsichord": 6,
    "celesta": 8,
    "glockenspiel": 9,
    "music_box": 10,
    "vibraphone": 11,
    "marimba": 12,
    "xylophone": 13,
    "organ": 16,
    "church_organ": 19,
    "accordion": 21,
    "harmonica": 22,
    "guitar": 24,
    "nylon_guitar": 24,
    "steel_guitar": 25,
    "electric_guitar": 27,
    "bass": 32,
    "acoustic_bass": 32,
    "electric_bass": 33,
    "violin": 40,
    "viola": 41,
    "cello": 42,
    "harp": 46,
    "timpani": 47,
    "strings": 48,
    "choir": 52,
    "trumpet": 56,
    "trombone": 57,
    "tuba": 58,
    "horn": 60,
    "sax": 65,
    "oboe": 68,
    "clarinet": 71,
    "piccolo": 72,
    "flute": 73,
    "recorder": 74,
    "pan_flute": 75,
    "ocarina": 79,
    "lute": 24,
    "mandolin": 25,
    "bagpipe": 109,
    "shamisen": 106,
    "lead": 80,
    "pad": 88,
}


def validate_program(program: int) -> int:
    try:
        n = int(program)
    except (TypeError, ValueError) as e:
        raise ValidationFailed(f"invalid instrument number: {program!r}") from e
    if not (0 <= n <= 127):
        raise ValidationFailed(f"instrument number must be between 0-127, got {n}")
    return n


def parse_program(token: str) -> int:
    """Parse a program token: an integer 0-127 or a GM name (case-insensitive)."""

    t = token.strip().lower().replace(" ", "_").replace("-", "_")
    if t in GM_PROGRAMS:
        return GM_PROGRAMS[t]
    if not t.isdigit():
        raise ValidationFailed(f"invalid instrument number: {token!r}")
    return validate_program(int(t))
