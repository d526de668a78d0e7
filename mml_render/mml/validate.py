from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path

# Characters that can start an MML command.
_COMMAND_CHARS = set("ABCDEFGRLTVNOabcdefgrltvno0123456789<>")


def validate_mml(text: str) -> None:
    """Cheap pre-flight check before compiling.

    Rejects empty input and input with no recognisable MML command. The
    compiler still does the real syntax checking.
    """

    if not text.strip():
        raise ValueError("MML content is empty")
    if not any(c in _COMMAND_CHARS for c in text):
        raise ValueError("Invalid MML format: no recognizable MML commands found")


@dataclass(frozen=True)
class MmlInfo:
    file_size: int
    lines: int
    characters: int

    @property
    def complexity(self) -> str:
        if self.characters > 1000:
            return "High"
        if self.characters > 500:
            return "Medium"
        return "Low"

    @classmethod
    def from_text(cls, text: str) -> "MmlInfo":
        return cls(file_size=len(text.encode("utf-8")), lines=len(text.splitlines()), characters=len(text))

    def summary(self) -> str:
        return (
            "MML file info:\n"
            f"- file size: {self.file_size} bytes\n"
            f"- lines: {self.lines}\n"
            f"- characters: {self.characters}\n"
            f"- estimated complexity: {self.complexity}"
        )


def mml_info(path: str | Path) -> MmlInfo:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"MML file not found: {p}")
    info = MmlInfo.from_text(p.read_text(encoding="utf-8"))
    return replace(info, file_size=p.stat().st_size)
