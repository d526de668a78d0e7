"""Mabinogi-style MML (Music Macro Language) to MIDI."""

from mml_render.mml.compiler import (
    MmlScore,
    MmlSyntaxError,
    compile_mml,
    compile_mml_to_bytes,
    parse_mml,
    write_mml_midi,
)
from mml_render.mml.validate import MmlInfo, mml_info, validate_mml

__all__ = [
    "MmlInfo",
    "MmlScore",
    "MmlSyntaxError",
    "compile_mml",
    "compile_mml_to_bytes",
    "mml_info",
    "parse_mml",
    "validate_mml",
    "write_mml_midi",
]
