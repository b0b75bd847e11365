"""Exception hierarchy shared by every stage of the patching pipeline."""

from __future__ import annotations

from pathlib import Path


class USSRError(RuntimeError):
    """Base class for recoverable errors raised while patching a build.

    ``path`` names the file or directory that caused the failure and
    ``stage`` is filled in by the pipeline once it knows where the error was
    raised.
    """

    def __init__(self, message: str, *, path: Path | str | None = None, stage: object = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = Path(path) if path is not None else None
        self.stage = stage

    def __str__(self) -> str:
        parts = []
        if self.stage is not None:
            parts.append(f"[{getattr(self.stage, 'value', self.stage)}]")
        parts.append(self.message)
        if self.path is not None:
            parts.append(f"({self.path})")
        return " ".join(parts)


class NotFound(USSRError):
    """Raised when an archive, container or target file does not exist."""


class UnknownFormat(USSRError):
    """Raised when no known signature matches the selected file."""


class CompressionError(USSRError):
    """Raised when a compressed stream is corrupt or truncated."""


class ArchiveIOError(USSRError):
    """Raised on read, write or seek failures while handling an archive."""


class WebDataParsingError(ArchiveIOError):
    """Raised when a UnityWebData table does not match its own layout."""


class TargetNotFound(USSRError):
    """Raised when an unpacked container holds none of the known target files."""


class MutationUnsupported(USSRError):
    """Raised when the record editor cannot locate or parse the settings records."""


class PipelineError(USSRError):
    """Wraps an unexpected exception with the stage it escaped from."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | str | None = None,
        stage: object = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, path=path, stage=stage)
        self.cause = cause
