from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from mml_render.audio.encode import CodecFactory, encode_wav_to_mp3
from mml_render.audio.synth import (
    EngineFactory,
    SynthSettings,
    create_session,
    load_instrument_bank,
    synthesize,
)
from mml_render.errors import CompileFailed, SourceNotFound, ValidationFailed
from mml_render.io.midi import is_midi_path
from mml_render.mml.compiler import compile_mml_to_bytes
from mml_render.mml.validate import validate_mml
from mml_render.util.config import AppConfig
from mml_render.util.gm import validate_program

logger = logging.getLogger(__name__)

MML_SUFFIXES = {".mml"}

# compile(text, program) -> Standard MIDI File bytes
Compiler = Callable[[str, int], bytes]


@dataclass(frozen=True)
class ConversionSource:
    kind: str  # "mml" | "midi"
    text: str | None = None
    path: Path | None = None

    @property
    def is_notation(self) -> bool:
        return self.kind == "mml"

    @staticmethod
    def from_text(text: str) -> "ConversionSource":
        return ConversionSource(kind="mml", text=text)

    @staticmethod
    def from_path(path: str | Path) -> "ConversionSource":
        p = Path(path).expanduser()
        suffix = p.suffix.lower()
        if suffix not in MML_SUFFIXES and not is_midi_path(p):
            raise ValidationFailed(
                f"unsupported file format: {suffix or '(none)'} (supported: .mml, .mid, .midi)", path=p
            )
        if not p.is_file():
            raise SourceNotFound("input file not found", path=p)
        if suffix in MML_SUFFIXES:
            try:
                text = p.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise SourceNotFound(f"failed to read MML file: {e}", path=p) from e
            return ConversionSource(kind="mml", text=text, path=p)
        return ConversionSource(kind="midi", path=p)


@dataclass
class PipelineArtifacts:
    """Temporary files of one run, named after a per-run token."""

    work_dir: Path
    prefix: str
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created: list[Path] = field(default_factory=list)

    def path_for(self, suffix: str) -> Path:
        p = self.work_dir / f"{self.prefix}-{self.run_id}{suffix}"
        self.created.append(p)
        return p

    def cleanup(self) -> list[Path]:
        """Remove every artifact; failures are logged, never raised."""
        removed: list[Path] = []
        for p in self.created:
            if not p.exists():
                continue
            try:
                p.unlink()
            except OSError as e:
                logger.warning("failed to remove temporary file '%s': %s", p, e)
                continue
            removed.append(p)
            logger.debug("cleaned up temporary file: %s", p)
        return removed


@dataclass
class ConversionResult:
    output: str
    source_kind: str
    run_id: str
    frames: int
    blocks: int
    bytes_written: int
    # Synthesis stopped on an engine failure; the output holds only the audio rendered before it.
    truncated: bool = False


class ConversionPipeline:
    """MML/MIDI -> WAV -> MP3, one run at a time.

    Stages run strictly in order and the first failure is raised as-is.
    Temporary files created before the failure are always removed.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        settings: SynthSettings | None = None,
        engine_factory: EngineFactory | None = None,
        codec_factory: CodecFactory | None = None,
        compiler: Compiler = compile_mml_to_bytes,
    ) -> None:
        self.config = config or AppConfig()
        self.settings = settings or SynthSettings()
        self.engine_factory = engine_factory
        self.codec_factory = codec_factory
        self.compiler = compiler

    def _compile(self, source: ConversionSource, program: int, out: Path) -> Path:
        text = source.text or ""
        try:
            validate_mml(text)
        except ValueError as e:
            raise ValidationFailed(str(e), path=source.path) from e
        logger.info("compiling MML to MIDI (instrument %d)", program)
        try:
            data = self.compiler(text, program)
        except ValueError as e:
            raise CompileFailed(f"failed to convert MML to MIDI: {e}", path=source.path) from e
        try:
            out.write_bytes(data)
        except OSError as e:
            raise CompileFailed(f"failed to write MIDI file: {e}", path=out) from e
        return out

    def run(
        self,
        source: ConversionSource | str | Path,
        soundfont: str | Path,
        output: str | Path,
        program: int | None = None,
    ) -> ConversionResult:
        program_n = validate_program(program) if program is not None else None
        src = source if isinstance(source, ConversionSource) else ConversionSource.from_path(source)
        out = Path(output).expanduser()

        work_dir = self.config.resolved_work_dir()
        work_dir.mkdir(parents=True, exist_ok=True)
        artifacts = PipelineArtifacts(work_dir=work_dir, prefix=self.config.temp_prefix)
        logger.info("run %s: %s -> %s", artifacts.run_id, src.path or "<mml text>", out)

        try:
            with create_session(self.settings, engine_factory=self.engine_factory) as session:
                load_instrument_bank(session, soundfont)

                if src.is_notation:
                    event_path = self._compile(src, program_n or 0, artifacts.path_for(".mid"))
                elif src.path is not None:
                    if program_n is not None:
                        logger.info("instrument %d ignored: MIDI input carries its own programs", program_n)
                    event_path = src.path
                else:
                    raise SourceNotFound("MIDI source has no path")

                logger.info("synthesizing MIDI to WAV")
                wav = artifacts.path_for(".wav")
                synth_res = synthesize(session, event_path, wav)
                if synth_res.stopped_on_engine_failure:
                    logger.warning("run %s: synthesis stopped early, output will be truncated", artifacts.run_id)

            logger.info("encoding WAV to MP3")
            enc = encode_wav_to_mp3(
                wav,
                out,
                bitrate=self.config.bitrate,
                codec_factory=self.codec_factory,
            )
        finally:
            if self.config.keep_temp:
                logger.info("keeping temporary files: %s", ", ".join(str(p) for p in artifacts.created))
            else:
                artifacts.cleanup()

        return ConversionResult(
            output=enc.path,
            source_kind=src.kind,
            run_id=artifacts.run_id,
            frames=synth_res.frames_written,
            blocks=enc.blocks,
            bytes_written=enc.bytes_written,
            truncated=synth_res.stopped_on_engine_failure,
        )


def run(
    source: ConversionSource | str | Path,
    soundfont: str | Path,
    output: str | Path,
    program: int | None = None,
    *,
    config: AppConfig | None = None,
    engine_factory: EngineFactory | None = None,
    codec_factory: CodecFactory | None = None,
) -> ConversionResult:
    pipeline = ConversionPipeline(config, engine_factory=engine_factory, codec_factory=codec_factory)
    return pipeline.run(source, soundfont, output, program)
