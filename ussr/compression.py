"""Brotli and gzip filters used to unwrap compressed WebGL containers.

Both filters share one contract so the pipeline can pick either based on the
detected :class:`~ussr.detect.CompressionKind`.  Each operates on in-memory
buffers, on whole files (by path, producing a new file) or on a pair of
binary streams.  Output is always produced at the strongest setting the
runtime supports; a corrupt or truncated input never yields partial data and
is reported as :class:`~ussr.errors.CompressionError` instead.

The ``brotli`` bindings cannot write metadata blocks, so brotli output never
carries Unity's ``UnityWeb Compressed Content (brotli)`` comment.  A stream
recompressed here is recognised again only through its ``.br`` or
``.unityweb`` extension.
"""

from __future__ import annotations

import gzip
import logging
import zlib
from pathlib import Path
from typing import BinaryIO, Dict

import brotli

from .detect import CompressionKind
from .errors import CompressionError, NotFound

logger = logging.getLogger(__name__)

STREAM_CHUNK_SIZE = 1024 * 1024

BROTLI_QUALITY = 11  # strongest
BROTLI_LGWIN = 24
GZIP_LEVEL = getattr(zlib, "Z_BEST_COMPRESSION", 9)
GZIP_FALLBACK_LEVEL = 6


class CompressionFilter:
    """Common behaviour of the byte-stream filters.

    Subclasses implement :meth:`compress_stream` and
    :meth:`decompress_stream`; everything else is derived from those two.
    """

    name = "none"

    def compress_bytes(self, data: bytes) -> bytes:
        raise NotImplementedError

    def decompress_bytes(self, data: bytes) -> bytes:
        raise NotImplementedError

    def compress_stream(self, source: BinaryIO, target: BinaryIO) -> int:
        raise NotImplementedError

    def decompress_stream(self, source: BinaryIO, target: BinaryIO) -> int:
        raise NotImplementedError

    def compress_file(self, source: Path, target: Path) -> Path:
        """Compress ``source`` into a new file at ``target`` and return it."""

        return self._transform_file(self.compress_stream, source, target, "compress")

    def decompress_file(self, source: Path, target: Path) -> Path:
        """Decompress ``source`` into a new file at ``target`` and return it."""

        return self._transform_file(self.decompress_stream, source, target, "decompress")

    def _transform_file(self, transform, source: Path, target: Path, action: str) -> Path:
        source = Path(source)
        target = Path(target)
        if not source.is_file():
            raise NotFound(f"cannot {action} missing file", path=source)

        logger.info("%s %s data: %s", action.capitalize() + "ing", self.name, source)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            with source.open("rb") as reader, target.open("wb") as writer:
                transform(reader, writer)
        except BaseException:
            try:
                target.unlink()
            except FileNotFoundError:
                pass
            raise
        return target

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class BrotliFilter(CompressionFilter):
    """Brotli filter backed by the ``brotli`` bindings."""

    name = "brotli"

    def _compressor(self):
        try:
            return brotli.Compressor(quality=BROTLI_QUALITY, lgwin=BROTLI_LGWIN)
        except (TypeError, brotli.error):
            logger.debug("brotli quality %d unavailable, using library default", BROTLI_QUALITY)
            return brotli.Compressor()

    def compress_bytes(self, data: bytes) -> bytes:
        try:
            return brotli.compress(bytes(data), quality=BROTLI_QUALITY, lgwin=BROTLI_LGWIN)
        except (TypeError, brotli.error):
            logger.debug("brotli quality %d unavailable, using library default", BROTLI_QUALITY)
            return brotli.compress(bytes(data))

    def decompress_bytes(self, data: bytes) -> bytes:
        try:
            return brotli.decompress(bytes(data))
        except brotli.error as exc:
            raise CompressionError(f"failed to decompress brotli data: {exc}") from exc

    def compress_stream(self, source: BinaryIO, target: BinaryIO) -> int:
        compressor = self._compressor()
        written = 0
        while True:
            chunk = source.read(STREAM_CHUNK_SIZE)
            if not chunk:
                break
            written += target.write(compressor.process(chunk))
        written += target.write(compressor.finish())
        return written

    def decompress_stream(self, source: BinaryIO, target: BinaryIO) -> int:
        decompressor = brotli.Decompressor()
        written = 0
        try:
            while True:
                chunk = source.read(STREAM_CHUNK_SIZE)
                if not chunk:
                    break
                written += target.write(decompressor.process(chunk))
        except brotli.error as exc:
            raise CompressionError(f"failed to decompress brotli stream: {exc}") from exc

        is_finished = getattr(decompressor, "is_finished", None)
        if callable(is_finished) and not is_finished():
            raise CompressionError("truncated brotli stream")
        return written


class GzipFilter(CompressionFilter):
    """Gzip filter backed by the standard library ``gzip`` module."""

    name = "gzip"

    def _level(self) -> int:
        if 0 <= GZIP_LEVEL <= 9:
            return GZIP_LEVEL
        logger.debug("gzip level %d unavailable, using %d", GZIP_LEVEL, GZIP_FALLBACK_LEVEL)
        return GZIP_FALLBACK_LEVEL

    def compress_bytes(self, data: bytes) -> bytes:
        return gzip.compress(bytes(data), compresslevel=self._level())

    def decompress_bytes(self, data: bytes) -> bytes:
        try:
            return gzip.decompress(bytes(data))
        except (OSError, EOFError, zlib.error) as exc:
            raise CompressionError(f"failed to decompress gzip data: {exc}") from exc

    def compress_stream(self, source: BinaryIO, target: BinaryIO) -> int:
        written = 0
        with gzip.GzipFile(fileobj=target, mode="wb", compresslevel=self._level()) as writer:
            while True:
                chunk = source.read(STREAM_CHUNK_SIZE)
                if not chunk:
                    break
                written += writer.write(chunk)
        return written

    def decompress_stream(self, source: BinaryIO, target: BinaryIO) -> int:
        written = 0
        try:
            with gzip.GzipFile(fileobj=source, mode="rb") as reader:
                while True:
                    chunk = reader.read(STREAM_CHUNK_SIZE)
                    if not chunk:
                        break
                    written += target.write(chunk)
        except (gzip.BadGzipFile, EOFError, zlib.error) as exc:
            raise CompressionError(f"failed to decompress gzip stream: {exc}") from exc
        return written


BROTLI = BrotliFilter()
GZIP = GzipFilter()

_FILTERS: Dict[CompressionKind, CompressionFilter] = {
    CompressionKind.BROTLI: BROTLI,
    CompressionKind.GZIP: GZIP,
}


def filter_for(kind: CompressionKind) -> CompressionFilter:
    """Return the filter registered for ``kind``."""

    try:
        return _FILTERS[kind]
    except KeyError:
        raise CompressionError(f"unsupported compression kind: {kind!r}") from None
