from __future__ import annotations

import os
import sys
from pathlib import Path

from mml_render.errors import InvalidBank
from mml_render.util.config import ENV_SOUNDFONT, AppConfig

# General MIDI banks shipped by common distro packages, per platform.
_SYSTEM_BANKS: dict[str, list[str]] = {
    "win32": [r"C:\Program Files\Common Files\Sounds\Banks\default.sf2"],
    "darwin": ["/Library/Audio/Sounds/Banks/default.sf2", "/opt/homebrew/share/soundfonts/default.sf2"],
    "linux": [
        "/usr/share/sounds/sf2/FluidR3_GM.sf2",
        "/usr/share/sounds/sf2/default-GM.sf2",
        "/usr/share/sounds/sf2/GeneralUser-GS.sf2",
        "/usr/share/soundfonts/FluidR3_GM.sf2",
        "/usr/share/soundfonts/default.sf2",
    ],
}


def user_bank_dir() -> Path:
    """Per-user directory searched for `*.sf2` banks."""
    if sys.platform == "win32":
        base = os.environ.get("LOCALAPPDATA") or str(Path.home() / "AppData" / "Local")
        return Path(base) / "mml-render" / "soundfonts"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "mml-render" / "soundfonts"
    base = os.environ.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / "mml-render" / "soundfonts"


def soundfont_candidates(cfg: AppConfig | None = None) -> list[Path]:
    """Banks to try, in order: config, environment, user dir, system paths."""
    out: list[Path] = []
    if cfg is not None and cfg.soundfont_path:
        out.append(Path(cfg.soundfont_path).expanduser())
    env_sf = os.environ.get(ENV_SOUNDFONT)
    if env_sf:
        out.append(Path(env_sf).expanduser())

    user_dir = user_bank_dir()
    if user_dir.is_dir():
        out.extend(sorted(user_dir.glob("*.sf2")))

    key = sys.platform if sys.platform in ("win32", "darwin") else "linux"
    out.extend(Path(p) for p in _SYSTEM_BANKS[key])

    seen: set[Path] = set()
    uniq: list[Path] = []
    for p in out:
        if p not in seen:
            seen.add(p)
            uniq.append(p)
    return uniq


def find_default_soundfont(cfg: AppConfig | None = None) -> str | None:
    for p in soundfont_candidates(cfg):
        if p.is_file():
            return str(p)
    return None


def resolve_soundfont(arg: str | None, cfg: AppConfig | None = None) -> str:
    """Explicit bank path, or the first installed candidate when `arg` is empty or '-'."""
    if arg and arg != "-":
        return arg
    found = find_default_soundfont(cfg)
    if not found:
        raise InvalidBank("no SoundFont given, configured or installed (see: mml-render paths)")
    return found
