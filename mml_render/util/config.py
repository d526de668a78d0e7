from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

ENV_SOUNDFONT = "MML_RENDER_SOUNDFONT"
ENV_WORK_DIR = "MML_RENDER_WORK_DIR"
ENV_LOG_LEVEL = "MML_RENDER_LOG_LEVEL"


def default_config_dir() -> Path:
    return Path.home() / ".config" / "mml-render"


def default_config_path() -> Path:
    return default_config_dir() / "config.json"


@dataclass
class AppConfig:
    soundfont_path: str | None = None
    work_dir: str | None = None  # temp artifacts; system temp dir when unset
    temp_prefix: str = "mml-render"
    keep_temp: bool = False
    bitrate: int = 192
    log_level: str = "INFO"

    def resolved_work_dir(self) -> Path:
        return Path(self.work_dir).expanduser() if self.work_dir else Path(tempfile.gettempdir())

    def to_dict(self) -> dict[str, Any]:
        return {
            "soundfont_path": self.soundfont_path,
            "work_dir": self.work_dir,
            "temp_prefix": self.temp_prefix,
            "keep_temp": self.keep_temp,
            "bitrate": self.bitrate,
            "log_level": self.log_level,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "AppConfig":
        return AppConfig(
            soundfont_path=d.get("soundfont_path") or None,
            work_dir=d.get("work_dir") or None,
            temp_prefix=str(d.get("temp_prefix") or "mml-render"),
            keep_temp=bool(d.get("keep_temp", False)),
            bitrate=int(d.get("bitrate") or 192),
            log_level=str(d.get("log_level") or "INFO").upper(),
        )


def apply_env(cfg: AppConfig, env: dict[str, str] | None = None) -> AppConfig:
    e = os.environ if env is None else env
    out = cfg
    if e.get(ENV_SOUNDFONT):
        out = replace(out, soundfont_path=e[ENV_SOUNDFONT])
    if e.get(ENV_WORK_DIR):
        out = replace(out, work_dir=e[ENV_WORK_DIR])
    if e.get(ENV_LOG_LEVEL):
        out = replace(out, log_level=e[ENV_LOG_LEVEL].upper())
    return out


def load_config(path: Path | None = None, *, env: dict[str, str] | None = None) -> AppConfig:
    """Load the JSON config file (if any), then apply environment overrides."""
    p = path or default_config_path()
    cfg = AppConfig()
    if p.exists():
        data = json.loads(p.read_text(encoding="utf-8"))
        cfg = AppConfig.from_dict(data)
    return apply_env(cfg, env)


def save_config(cfg: AppConfig, path: Path | None = None) -> Path:
    p = path or default_config_path()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(cfg.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return p
