"""Run one patch over a selected file, whatever layers it is wrapped in.

The stages are::

    detect -> [decompress] -> [unpack -> resolve] -> mutate
           -> backup -> write -> [repack] -> [recompress] -> cleanup

Bracketed stages only run for inputs that need them: a compressed WebGL
container is decompressed and unpacked, a plain ``.data`` container is only
unpacked, and an asset or bundle file is handed to the record editor as is.
Repacking and recompression mirror what was undone on the way in, and only
happen when the mutation actually changed something.

Every intermediate file or directory created during the run is removed on
the way out, on success and on failure alike.  The ``<selected>.bak`` backup
is taken once, right before the first write, and is never removed.

A run is not locked against other runs: two pipelines must never target the
same file at the same time.
"""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

from .compression import filter_for
from .detect import BROTLI_EXTENSIONS, Classification, CompressionKind, FileKind, classify, derived_container_path
from .editor import RecordEditor
from .errors import ArchiveIOError, NotFound, PipelineError, TargetNotFound, UnknownFormat, USSRError
from .mutations import LogoChooser, Mutation
from .staging import StagingArea, backup_only_once, clean_up, clone_file
from .webdata import default_unpack_directory, pack_webdata, unpack_webdata

logger = logging.getLogger(__name__)

TARGET_FILENAMES = ("data.unity3d", "globalgamemanagers")

TEMP_SUFFIX = ".temp"
UNPACKED_SUFFIX = ".unpacked"
RECOMPRESS_SUFFIX = ".tmp"


class Stage(enum.Enum):
    DETECT = "detect"
    DECOMPRESS = "decompress"
    UNPACK = "unpack"
    RESOLVE = "resolve"
    MUTATE = "mutate"
    BACKUP = "backup"
    WRITE = "write"
    REPACK = "repack"
    RECOMPRESS = "recompress"
    CLEANUP = "cleanup"


@dataclass
class PipelineResult:
    selected: Path
    classification: Classification
    changed: bool = False
    backup: Optional[Path] = None
    stages: List[Stage] = field(default_factory=list)


def resolve_target(directory: Path) -> Path:
    """Return the first well-known asset file inside ``directory``."""

    directory = Path(directory)
    for name in TARGET_FILENAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    raise TargetNotFound(
        f"none of {', '.join(TARGET_FILENAMES)} found in unpacked container",
        path=directory,
    )


def _sibling(path: Path, suffix: str) -> Path:
    return path.with_name(path.name + suffix)


def _refuse_existing(path: Path) -> None:
    if path.exists():
        raise ArchiveIOError("refusing to overwrite an existing file or directory", path=path)


class Pipeline:
    """State of a single run; use :func:`run_pipeline` instead of this class."""

    def __init__(
        self,
        selected: Path,
        editor: RecordEditor,
        mutation: Mutation,
        chooser: Optional[LogoChooser] = None,
    ) -> None:
        self.selected = Path(selected)
        self.editor = editor
        self.mutation = mutation
        self.chooser = chooser
        self.staging = StagingArea()
        self.stage = Stage.DETECT
        self.stage_path = self.selected
        self.result: Optional[PipelineResult] = None
        self._stages: List[Stage] = []

    def _enter(self, stage: Stage, path: Path) -> None:
        logger.debug("Stage %s: %s", stage.value, path)
        self.stage = stage
        self.stage_path = Path(path)
        self._stages.append(stage)

    # -------------------------------------------------------------- stages --
    def _detect(self) -> Classification:
        self._enter(Stage.DETECT, self.selected)
        classification = classify(self.selected)
        if not classification.is_known:
            raise UnknownFormat("Unknown/Unsupported file type!", path=self.selected)
        logger.info("Detected %s file: %s", classification.describe(), self.selected)
        return classification

    def _decompress(self, classification: Classification) -> Path:
        container = derived_container_path(self.selected)
        self._enter(Stage.DECOMPRESS, self.selected)
        _refuse_existing(container)
        self.staging.track(container)
        filter_for(classification.compression).decompress_file(self.selected, container)

        inner = classify(container)
        if inner.kind is not FileKind.WEBDATA:
            raise UnknownFormat(
                "decompressed data is not a UnityWebData container; try a different compression type",
                path=self.selected,
            )
        return container

    def _unpack(self, container: Path) -> Path:
        unpacked_dir = default_unpack_directory(container)
        self._enter(Stage.UNPACK, container)
        _refuse_existing(unpacked_dir)
        self.staging.track(unpacked_dir)
        return unpack_webdata(container, unpacked_dir)

    def _resolve(self, unpacked_dir: Path) -> Classification:
        self._enter(Stage.RESOLVE, unpacked_dir)
        target = resolve_target(unpacked_dir)
        classification = classify(target)
        if classification.kind not in (FileKind.ASSET, FileKind.BUNDLE):
            raise UnknownFormat("unsupported asset file inside container", path=target)
        return classification

    def _mutate(self, target: Classification) -> bool:
        temp_file = self.staging.track(_sibling(target.path, TEMP_SUFFIX))
        working_copies = [temp_file, self.staging.track(_sibling(temp_file, UNPACKED_SUFFIX))]

        self._enter(Stage.MUTATE, target.path)
        clone_file(target.path, temp_file)
        if not temp_file.is_file():
            raise NotFound("unable to create a working copy", path=target.path)

        handle: Any = self.editor.open(temp_file, target.kind)
        try:
            tokens = self.mutation(self.editor, handle, chooser=self.chooser)
            if not tokens:
                logger.info("Nothing to change in %s", target.path)
                return False

            self._enter(Stage.BACKUP, self.selected)
            backup = self.staging.protect(backup_only_once(self.selected))
            self.result.backup = backup

            self._enter(Stage.WRITE, target.path)
            self.editor.write_changes(handle, tokens, target.path)
            return True
        finally:
            self.editor.close(handle)
            # Working copies live beside the target and must not be repacked.
            clean_up(working_copies)

    def _repack(self, unpacked_dir: Path, container: Path) -> None:
        self._enter(Stage.REPACK, container)
        pack_webdata(unpacked_dir, container)

    def _recompress(self, classification: Classification, container: Path) -> None:
        self._enter(Stage.RECOMPRESS, self.selected)
        if classification.compression is CompressionKind.BROTLI and not self.selected.name.lower().endswith(
            BROTLI_EXTENSIONS
        ):
            logger.warning(
                "%s will not be recognised as brotli data on the next run; rename it with a .br suffix",
                self.selected,
            )
        staged = self.staging.track(_sibling(self.selected, RECOMPRESS_SUFFIX))
        filter_for(classification.compression).compress_file(container, staged)
        os.replace(staged, self.selected)

    # ----------------------------------------------------------------- run --
    def _run(self) -> PipelineResult:
        classification = self._detect()
        self.result = PipelineResult(
            selected=self.selected, classification=classification, stages=self._stages
        )

        container: Optional[Path] = None
        unpacked_dir: Optional[Path] = None
        if classification.kind is FileKind.COMPRESSED:
            container = self._decompress(classification)
        elif classification.kind is FileKind.WEBDATA:
            container = self.selected

        if container is not None:
            unpacked_dir = self._unpack(container)
            target = self._resolve(unpacked_dir)
        else:
            target = classification

        changed = self._mutate(target)
        self.result.changed = changed
        if not changed:
            return self.result

        if unpacked_dir is not None and container is not None:
            self._repack(unpacked_dir, container)
        if classification.kind is FileKind.COMPRESSED and container is not None:
            self._recompress(classification, container)

        logger.info("Changes written to %s", self.selected)
        return self.result

    def _clean_up(self, *, failed: bool) -> None:
        self._stages.append(Stage.CLEANUP)
        if not failed:
            self.stage = Stage.CLEANUP
            self.staging.close()
            return
        try:
            self.staging.close()
        except OSError:
            # The stage that failed is the error worth reporting.
            logger.exception("Error cleaning up temporary files!")

    def run(self) -> PipelineResult:
        try:
            try:
                result = self._run()
            except BaseException:
                self._clean_up(failed=True)
                raise
            self._clean_up(failed=False)
            return result
        except USSRError as exc:
            if exc.stage is None:
                exc.stage = self.stage
            if exc.path is None:
                exc.path = self.stage_path
            raise
        except Exception as exc:
            raise PipelineError(
                f"{self.stage.value} failed: {exc}",
                path=self.stage_path,
                stage=self.stage,
                cause=exc,
            ) from exc


def run_pipeline(
    selected: Path,
    editor: RecordEditor,
    mutation: Mutation,
    *,
    chooser: Optional[LogoChooser] = None,
) -> PipelineResult:
    """Detect, unwrap, mutate, rewrap and clean up ``selected``.

    Raises a :class:`~ussr.errors.USSRError` tagged with the failing stage;
    cleanup has already run by the time it propagates.
    """

    return Pipeline(selected, editor, mutation, chooser).run()
