from __future__ import annotations

import argparse
import importlib.util
import logging
import sys
from dataclasses import dataclass, replace
from pathlib import Path

from mml_render.errors import ConversionError
from mml_render.util.config import AppConfig, default_config_path, load_config
from mml_render.util.soundfont import find_default_soundfont, resolve_soundfont, soundfont_candidates

logger = logging.getLogger("mml_render")


@dataclass
class DoctorResult:
    ok: bool
    notes: list[str]


def _doctor(cfg: AppConfig | None = None) -> DoctorResult:
    notes: list[str] = []
    ok = True

    for module, dist, why in (
        ("fluidsynth", "pyfluidsynth", "MIDI->WAV synthesis"),
        ("lameenc", "lameenc", "MP3 encoding"),
        ("mido", "mido", "MIDI files"),
    ):
        if importlib.util.find_spec(module) is not None:
            notes.append(f"{dist}: OK")
        else:
            ok = False
            notes.append(f"{dist}: MISSING (needed for {why})")

    sf2 = find_default_soundfont(cfg)
    if sf2:
        notes.append(f"soundfont: OK ({sf2})")
    else:
        ok = False
        notes.append("soundfont: MISSING (install a GM .sf2 or pass one explicitly)")

    notes.append(f"python: {sys.version.split()[0]}")
    notes.append(f"platform: {sys.platform}")
    return DoctorResult(ok=ok, notes=notes)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="mml-render",
        formatter_class=argparse.RawTextHelpFormatter,
        description=(
            "mml-render: MML/MIDI to MP3 converter (FluidSynth + LAME)\n\n"
            "examples:\n"
            "  mml-render song.mml soundfont.sf2 output.mp3\n"
            "  mml-render song.mml soundfont.sf2 output.mp3 25\n"
            "  mml-render song.mid soundfont.sf2 output.mp3\n"
            "  mml-render --text 'MML@t120l8cdefgab>c;' soundfont.sf2 scale.mp3\n"
            "  mml-render doctor\n"
            "  mml-render info song.mml\n"
        ),
    )
    p.add_argument("--version", action="store_true", help="Print version and exit.")
    p.add_argument("--config", default=None, help=f"Config file (default: {default_config_path()})")
    p.add_argument("--work-dir", default=None, dest="work_dir", help="Directory for temporary MIDI/WAV files")
    p.add_argument("--keep-temp", action="store_true", dest="keep_temp", help="Do not delete temporary files")
    p.add_argument("--text", action="store_true", help="Treat INPUT as inline MML instead of a file path")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    p.add_argument(
        "args",
        nargs="*",
        metavar="ARG",
        help=(
            "INPUT SOUNDFONT OUTPUT [INSTRUMENT]\n"
            "  INPUT       .mml, .mid or .midi file (or MML text with --text)\n"
            "  SOUNDFONT   .sf2 file ('-' to use the configured or first installed one)\n"
            "  OUTPUT      output .mp3 file\n"
            "  INSTRUMENT  MIDI program 0-127 or GM name (MML input only, default 0)\n"
            "or: doctor | info FILE.mml | paths"
        ),
    )
    return p


def _setup_logging(level: str) -> None:
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _convert(args: argparse.Namespace, cfg: AppConfig) -> int:
    from mml_render.mml.validate import MmlInfo
    from mml_render.pipeline import ConversionPipeline, ConversionSource
    from mml_render.util.gm import parse_program

    if len(args.args) not in (3, 4):
        raise SystemExit("ERROR: expected INPUT SOUNDFONT OUTPUT [INSTRUMENT] (see --help)")

    inp, out = args.args[0], args.args[2]
    program = parse_program(args.args[3]) if len(args.args) == 4 else None
    sf2 = resolve_soundfont(args.args[1], cfg)

    source = ConversionSource.from_text(inp) if args.text else ConversionSource.from_path(inp)
    if source.is_notation and program is None:
        program = 0

    logger.info("input: %s", "<inline MML>" if args.text else inp)
    logger.info("soundfont: %s", sf2)
    if source.is_notation:
        logger.info("instrument: %d", program)
        logger.info("%s", MmlInfo.from_text(source.text or "").summary())
    logger.info("output: %s", out)

    result = ConversionPipeline(cfg).run(source, sf2, out, program)
    print(f"converted: {result.output} ({result.bytes_written} bytes, {result.frames} frames)")
    if result.truncated:
        print("WARNING: synthesis stopped early; the MP3 holds only the audio rendered before the failure")
    return 0


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        try:
            from importlib.metadata import version

            v = version("mml-render")
        except Exception:
            v = "0.0.0"
        print(f"mml-render {v}")
        return 0

    cfg = load_config(Path(args.config).expanduser() if args.config else None)
    if args.work_dir:
        cfg = replace(cfg, work_dir=args.work_dir)
    if args.keep_temp:
        cfg = replace(cfg, keep_temp=True)
    _setup_logging("DEBUG" if args.verbose else cfg.log_level)

    cmd = args.args[0] if args.args else None

    if cmd == "doctor" and len(args.args) == 1:
        res = _doctor(cfg)
        print(f"mml-render doctor: {'OK' if res.ok else 'MISSING_DEPS'}")
        for n in res.notes:
            print(f"- {n}")
        if not res.ok:
            print("\nLinux (Debian/Ubuntu): sudo apt-get install fluidsynth fluid-soundfont-gm")
            print("macOS: brew install fluidsynth")
            print("python: pip install pyfluidsynth lameenc mido")
        return 0 if res.ok else 1

    if cmd == "paths" and len(args.args) == 1:
        print(f"config: {default_config_path()}")
        for pth in soundfont_candidates(cfg):
            print(f"soundfont: {pth}{'' if pth.is_file() else ' (missing)'}")
        return 0

    if cmd == "info" and len(args.args) == 2:
        from mml_render.mml.validate import mml_info

        try:
            print(mml_info(args.args[1]).summary())
        except FileNotFoundError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        return 0

    if not args.args:
        parser.print_help()
        return 1

    try:
        return _convert(args, cfg)
    except ConversionError as e:
        print(f"ERROR: conversion failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
