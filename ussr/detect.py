"""Classify a selected file by its leading bytes.

The magic table mirrors what Unity itself writes: asset bundles start with
one of the ``Unity*`` archive signatures, WebGL data containers with
``UnityWebData1.0``, gzip streams with the usual two byte magic.  Brotli
streams have no mandatory magic, so Unity's embedded comment is checked first
and the file extension is used only when no magic matched.  Serialized files
(``globalgamemanagers``) carry no magic at all; their header fields are
sanity checked instead.
"""

from __future__ import annotations

import enum
import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from .errors import NotFound

logger = logging.getLogger(__name__)

SIGNATURE_READ_SIZE = 64

WEBDATA_MAGIC = b"UnityWebData1.0\x00"
GZIP_MAGIC = b"\x1f\x8b"
BROTLI_UNITY_MARKER = b"UnityWeb Compressed Content (brotli)"

BUNDLE_SIGNATURES = (
    b"UnityFS\x00",
    b"UnityWeb\x00",
    b"UnityRaw\x00",
    b"UnityArchive\x00",
)

BROTLI_EXTENSIONS = (".br", ".unityweb")

# Serialized file header: metadata size, file size, format version and data
# offset as big-endian u32, the endianness flag and three reserved bytes.
SERIALIZED_HEADER = struct.Struct(">IIIIB3x")
SERIALIZED_MIN_VERSION = 9
SERIALIZED_MAX_VERSION = 50
# From format 22 onwards the legacy 32-bit size fields are unreliable and the
# real sizes follow the header as 64-bit values.
SERIALIZED_LARGE_FILES_VERSION = 22


class FileKind(enum.Enum):
    ASSET = "asset"
    BUNDLE = "bundle"
    WEBDATA = "webdata"
    COMPRESSED = "compressed"
    UNKNOWN = "unknown"


class CompressionKind(enum.Enum):
    BROTLI = "brotli"
    GZIP = "gzip"


@dataclass(frozen=True)
class Classification:
    """Outcome of :func:`classify`, passed explicitly through the pipeline."""

    kind: FileKind
    path: Path
    compression: Optional[CompressionKind] = None

    @property
    def is_known(self) -> bool:
        return self.kind is not FileKind.UNKNOWN

    def describe(self) -> str:
        if self.compression is not None:
            return f"{self.kind.value} ({self.compression.value})"
        return self.kind.value


def read_signature(path: Path, size: int = SIGNATURE_READ_SIZE) -> bytes:
    """Return up to ``size`` leading bytes of ``path``."""

    with Path(path).open("rb") as handle:
        return handle.read(size)


def _looks_like_serialized_file(prefix: bytes, file_size: int) -> bool:
    if len(prefix) < SERIALIZED_HEADER.size:
        return False

    metadata_size, stored_size, version, data_offset, endianness = SERIALIZED_HEADER.unpack_from(
        prefix, 0
    )
    if not SERIALIZED_MIN_VERSION <= version <= SERIALIZED_MAX_VERSION:
        return False
    if endianness not in (0, 1):
        return False

    if version >= SERIALIZED_LARGE_FILES_VERSION:
        return True
    return 0 < stored_size <= file_size and metadata_size < stored_size and data_offset <= stored_size


def classify_bytes(prefix: bytes, *, name: str = "", file_size: Optional[int] = None) -> Tuple[FileKind, Optional[CompressionKind]]:
    """Classify a leading byte sequence; ``name`` is only used for brotli."""

    if prefix.startswith(WEBDATA_MAGIC):
        return FileKind.WEBDATA, None

    for signature in BUNDLE_SIGNATURES:
        if prefix.startswith(signature):
            return FileKind.BUNDLE, None

    if prefix.startswith(GZIP_MAGIC):
        return FileKind.COMPRESSED, CompressionKind.GZIP

    if BROTLI_UNITY_MARKER in prefix:
        return FileKind.COMPRESSED, CompressionKind.BROTLI

    # Serialized files never carry a compression suffix, so the suffix wins
    # over the header heuristic below.
    if name.lower().endswith(BROTLI_EXTENSIONS) and prefix:
        return FileKind.COMPRESSED, CompressionKind.BROTLI

    if _looks_like_serialized_file(prefix, file_size if file_size is not None else len(prefix)):
        return FileKind.ASSET, None

    return FileKind.UNKNOWN, None


def classify(path: Path) -> Classification:
    """Classify ``path`` into one of the :class:`FileKind` values.

    ``FileKind.UNKNOWN`` is a hard stop for callers; nothing may be attempted
    on a file that did not match a signature.
    """

    path = Path(path)
    if not path.is_file():
        raise NotFound("selected file does not exist", path=path)

    prefix = read_signature(path)
    kind, compression = classify_bytes(prefix, name=path.name, file_size=path.stat().st_size)
    classification = Classification(kind=kind, path=path, compression=compression)
    logger.debug("Classified %s as %s", path, classification.describe())
    return classification


def derived_container_path(path: Path) -> Path:
    """Return where the decompressed copy of ``path`` is written.

    ``Build/game.data.br`` becomes ``Build/game.data``.
    """

    path = Path(path)
    return path.with_name(path.stem) if path.suffix else path.with_name(path.name + ".unpacked")
