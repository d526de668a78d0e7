from __future__ import annotations

from pathlib import Path


class ConversionError(RuntimeError):
    """Base class for every terminal failure of a conversion run.

    `stage` names the pipeline stage (compile, synthesize, encode, validate)
    and `path` the file involved, when there is one.
    """

    stage = "pipeline"

    def __init__(self, message: str, *, path: str | Path | None = None) -> None:
        self.path = str(path) if path is not None else None
        self.detail = message
        super().__init__(self._format(message))

    def _format(self, message: str) -> str:
        if self.path:
            return f"[{self.stage}] {message} ({self.path})"
        return f"[{self.stage}] {message}"


# synthesizer


class SynthesisError(ConversionError):
    stage = "synthesize"


class EngineInitFailed(SynthesisError):
    pass


class InvalidBank(SynthesisError):
    pass


class ProgramChangeFailed(SynthesisError):
    pass


class PlayerCreateFailed(SynthesisError):
    pass


class EventQueueFailed(SynthesisError):
    pass


class WriteFailed(SynthesisError):
    pass


class FinalizeFailed(SynthesisError):
    pass


# encoder


class EncodeError(ConversionError):
    stage = "encode"


class UnsupportedFormat(EncodeError):
    pass


class CodecFailure(EncodeError):
    pass


class IoFailure(EncodeError):
    pass


# compiler / orchestration


class CompileFailed(ConversionError):
    stage = "compile"


class SourceNotFound(ConversionError):
    stage = "source"


class ValidationFailed(ConversionError, ValueError):
    stage = "validate"
