"""Reading and writing Unity WebGL ``.data`` containers (UnityWebData).

A container is a flat list of named files preceded by an offset table::

    magic              null-terminated string ("UnityWebData1.0")
    begin_offset       u32 LE, absolute offset of the first payload
    repeated until the cursor reaches ``begin_offset``:
        offset         u32 LE, absolute payload offset
        size           u32 LE, payload length
        name_size      u32 LE
        name           ``name_size`` bytes of UTF-8, not terminated
    payloads

There is no entry count; the table ends where the first payload begins.  That
is why :func:`build_webdata` writes the table with placeholder offsets first
and patches them once every payload position is known.

The WebGL loader expects the files that live in sub directories to come
first, in descending path order, followed by the files at the root of the
tree.  :func:`collect_source_files` preserves that ordering.
"""

from __future__ import annotations

import logging
import os
import struct
import tempfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Sequence, Tuple

from .errors import ArchiveIOError, NotFound, WebDataParsingError

logger = logging.getLogger(__name__)

WEBDATA_MAGIC = b"UnityWebData1.0\x00"
OFFSET_STRUCT = struct.Struct("<I")
ENTRY_STRUCT = struct.Struct("<III")  # offset, size, name_size

MAX_OFFSET = 0xFFFFFFFF


@dataclass
class WebDataEntry:
    name: str
    offset: int
    size: int

    @property
    def name_size(self) -> int:
        return len(self.name.encode("utf-8"))

    @property
    def end(self) -> int:
        return self.offset + self.size


@dataclass
class WebDataArchive:
    magic: bytes
    begin_offset: int
    entries: List[WebDataEntry] = field(default_factory=list)

    def names(self) -> List[str]:
        return [entry.name for entry in self.entries]


def normalize_relative_path(name: str) -> str:
    """Return a normalised relative path using forward slashes."""

    normalised = name.replace("\\", "/")
    return normalised.lstrip("/")


def _safe_relative_target(name: str) -> Path:
    relative = PurePosixPath(normalize_relative_path(name))
    if not relative.parts or any(part in ("..", "") for part in relative.parts):
        raise WebDataParsingError(f"entry name escapes the output directory: {name!r}")
    return Path(*relative.parts)


def parse_webdata(data: bytes) -> WebDataArchive:
    """Parse the table of a UnityWebData container held in memory.

    Entries are returned in table order.  Their payloads are not required to
    be sorted or contiguous; only their bounds are checked.
    """

    terminator = data.find(b"\x00")
    if terminator < 0:
        raise WebDataParsingError("unterminated magic string in UnityWebData header")
    magic = bytes(data[: terminator + 1])
    cursor = terminator + 1

    if cursor + OFFSET_STRUCT.size > len(data):
        raise WebDataParsingError("truncated UnityWebData header")
    (begin_offset,) = OFFSET_STRUCT.unpack_from(data, cursor)
    cursor += OFFSET_STRUCT.size

    if begin_offset > len(data):
        raise WebDataParsingError("first payload offset lies beyond the end of the container")

    entries: List[WebDataEntry] = []
    while cursor < begin_offset:
        if cursor + ENTRY_STRUCT.size > begin_offset:
            raise WebDataParsingError("truncated UnityWebData table entry")
        offset, size, name_size = ENTRY_STRUCT.unpack_from(data, cursor)
        cursor += ENTRY_STRUCT.size

        if cursor + name_size > begin_offset:
            raise WebDataParsingError("UnityWebData entry name overruns the table")
        raw_name = bytes(data[cursor : cursor + name_size])
        cursor += name_size
        try:
            name = raw_name.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise WebDataParsingError(f"entry name is not valid UTF-8: {raw_name!r}") from exc

        if offset + size > len(data):
            raise WebDataParsingError(f"entry {name} points outside of the container")
        entries.append(WebDataEntry(name=name, offset=offset, size=size))

    if cursor != begin_offset:
        raise WebDataParsingError("UnityWebData table does not end at the first payload offset")
    if entries and entries[0].offset != begin_offset:
        raise WebDataParsingError(
            "first payload offset does not match the first entry of the table"
        )

    return WebDataArchive(magic=magic, begin_offset=begin_offset, entries=entries)


def load_webdata(archive_path: Path) -> Tuple[bytes, WebDataArchive]:
    """Read a container from disk and return its bytes and parsed table."""

    archive_path = Path(archive_path)
    if not archive_path.is_file():
        raise NotFound("UnityWebData container does not exist", path=archive_path)
    try:
        data = archive_path.read_bytes()
    except OSError as exc:
        raise ArchiveIOError(f"unable to read container: {exc}", path=archive_path) from exc
    return data, parse_webdata(data)


def default_unpack_directory(archive_path: Path) -> Path:
    """Return the sibling directory named after the container's stem."""

    archive_path = Path(archive_path)
    return archive_path.parent / archive_path.stem


def unpack_webdata(archive_path: Path, output_dir: Path | None = None) -> Path:
    """Extract every entry of ``archive_path`` and return the output directory.

    A failure aborts the extraction; files written so far are left for the
    caller to clean up.
    """

    archive_path = Path(archive_path)
    data, archive = load_webdata(archive_path)
    output_dir = Path(output_dir) if output_dir is not None else default_unpack_directory(archive_path)

    logger.info("Extracting %d file(s) from %s", len(archive.entries), archive_path)
    seen = set()
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        for entry, payload in iter_payloads(data, archive):
            relative_target = _safe_relative_target(entry.name)
            key = relative_target.as_posix()
            if key in seen:
                raise WebDataParsingError(f"duplicate entry name in container: {entry.name}")
            seen.add(key)

            target_path = output_dir / relative_target
            target_path.parent.mkdir(parents=True, exist_ok=True)
            target_path.write_bytes(payload)
    except OSError as exc:
        raise ArchiveIOError(f"unable to extract container: {exc}", path=archive_path) from exc

    logger.info("Extraction complete: %s", output_dir)
    return output_dir


def collect_source_files(source_dir: Path) -> List[Tuple[str, Path]]:
    """Return ``(entry_name, path)`` pairs in the order the loader expects.

    Files inside sub directories come first, sorted by full path in
    descending order, followed by the files at the root of ``source_dir``.
    """

    source_dir = Path(source_dir)
    if not source_dir.is_dir():
        raise NotFound("source directory does not exist", path=source_dir)

    nested: List[Path] = []
    root_level: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(source_dir):
        dirnames.sort()
        current = Path(dirpath)
        bucket = root_level if current == source_dir else nested
        for filename in sorted(filenames):
            bucket.append(current / filename)

    nested.sort(key=lambda path: str(path), reverse=True)

    ordered: List[Tuple[str, Path]] = []
    for path in nested + root_level:
        name = normalize_relative_path(path.relative_to(source_dir).as_posix())
        ordered.append((name, path))
    return ordered


def build_webdata(
    files: Sequence[Tuple[str, bytes]],
    *,
    magic: bytes = WEBDATA_MAGIC,
) -> bytes:
    """Return a complete container for ``files`` in the given order."""

    if not magic.endswith(b"\x00"):
        magic += b"\x00"

    buffer = bytearray(magic)
    begin_offset_position = len(buffer)
    buffer.extend(OFFSET_STRUCT.pack(0))

    record_positions: List[int] = []
    for name, payload in files:
        encoded = name.encode("utf-8")
        record_positions.append(len(buffer))
        buffer.extend(ENTRY_STRUCT.pack(0, len(payload), len(encoded)))
        buffer.extend(encoded)

    table_end = len(buffer)
    payload_positions: List[int] = []
    for name, payload in files:
        position = len(buffer)
        if position > MAX_OFFSET:
            raise WebDataParsingError(f"{name} exceeds 32-bit offset capacity")
        payload_positions.append(position)
        buffer.extend(payload)

    begin_offset = payload_positions[0] if payload_positions else table_end
    OFFSET_STRUCT.pack_into(buffer, begin_offset_position, begin_offset)
    for record_position, payload_position in zip(record_positions, payload_positions):
        OFFSET_STRUCT.pack_into(buffer, record_position, payload_position)

    return bytes(buffer)


def _commit_bytes(output_path: Path, data: bytes) -> None:
    """Write ``data`` next to ``output_path`` and move it into place."""

    output_path.parent.mkdir(parents=True, exist_ok=True)
    fd, staging_name = tempfile.mkstemp(prefix=f".{output_path.name}.", suffix=".tmp", dir=output_path.parent)
    staging_path = Path(staging_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(staging_path, output_path)
    except BaseException:
        try:
            staging_path.unlink()
        except FileNotFoundError:
            pass
        raise


def pack_webdata(source_dir: Path, output_path: Path, *, magic: bytes = WEBDATA_MAGIC) -> Path:
    """Pack every file below ``source_dir`` into a container at ``output_path``.

    The container is assembled in memory and committed in a single write, so
    an existing ``output_path`` is either fully replaced or left untouched.
    """

    source_dir = Path(source_dir)
    output_path = Path(output_path)
    sources = collect_source_files(source_dir)

    logger.info("Packing %d file(s) from %s", len(sources), source_dir)
    try:
        files = [(name, path.read_bytes()) for name, path in sources]
        data = build_webdata(files, magic=magic)
        _commit_bytes(output_path, data)
    except OSError as exc:
        raise ArchiveIOError(f"unable to pack container: {exc}", path=output_path) from exc

    logger.info("Packed container written to %s", output_path)
    return output_path


def iter_payloads(data: bytes, archive: WebDataArchive) -> Iterable[Tuple[WebDataEntry, bytes]]:
    """Yield every entry with its payload slice."""

    for entry in archive.entries:
        yield entry, data[entry.offset : entry.end]
